"""Tests for context tracing."""

import logging

import pytest

from krm_functions.context import trace, trace_context


def test_trace_context(caplog: pytest.LogCaptureFixture) -> None:
    """Test nested traces are logged and restored."""
    caplog.set_level(logging.DEBUG, logger="krm_functions.context")
    assert trace.get([]) == []
    with trace_context("Fleet 'example'"):
        with trace_context("Fetch package foo"):
            assert trace.get([]) == ["Fleet 'example'", "Fetch package foo"]
        assert trace.get([]) == ["Fleet 'example'"]
    assert trace.get([]) == []
    assert "[Trace] > Fleet 'example' > Fetch package foo" in caplog.text


def test_trace_context_exception() -> None:
    """Test the trace is restored when the operation fails."""
    with pytest.raises(ValueError):
        with trace_context("failing"):
            raise ValueError("failure")
    assert trace.get([]) == []

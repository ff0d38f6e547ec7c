"""Exceptions related to krm-functions."""

__all__ = [
    "KrmException",
    "InputException",
    "CommandException",
    "HelmException",
    "UpgradeException",
    "FetchException",
    "FleetException",
    "MalformedInput",
    "MissingReference",
    "ReservedKeyConflict",
    "DuplicateName",
    "TemplateEvaluationError",
]


class KrmException(Exception):
    """Generic base exception used for this library."""


class InputException(KrmException):
    """Raised when the input files or values are not formatted as expected."""


class CommandException(KrmException):
    """Raised when there is a failure running a subcommand."""


class HelmException(CommandException):
    """Raised when there is a failure running a helm command."""


class UpgradeException(KrmException):
    """Raised when no chart version satisfies an upgrade constraint."""


class FetchException(KrmException):
    """Raised when package content could not be fetched from an upstream."""


class FleetException(InputException):
    """Raised when a Fleet document cannot be resolved.

    The `path` identifies the offending package node, e.g. `zap/zap2`, and
    is empty for errors that are not tied to a single package.
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        if path:
            message = f"package {path}: {message}"
        super().__init__(message)
        self.path = path


class MalformedInput(FleetException):
    """Raised when a Fleet document does not parse or is structurally invalid."""


class MissingReference(FleetException):
    """Raised when a content package has no resolvable source reference."""


class ReservedKeyConflict(FleetException):
    """Raised when Fleet defaults declare the reserved metadata key `name`."""


class DuplicateName(FleetException):
    """Raised when sibling packages or upstreams share a name."""


class TemplateEvaluationError(FleetException):
    """Raised when a templated metadata value references an unknown field."""

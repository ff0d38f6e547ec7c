"""Structural checks on a Fleet that do not depend on resolution order."""

from collections import Counter
from collections.abc import Iterable
import logging

from krm_functions.exceptions import (
    DuplicateName,
    MalformedInput,
    ReservedKeyConflict,
)

from .model import Defaults, FleetSpec, PackageNode, RESERVED_NAME_KEY

__all__ = [
    "validate_fleet",
    "validate_defaults",
    "validate_upstreams",
    "validate_siblings",
    "validate_package",
]

_LOGGER = logging.getLogger(__name__)


def _duplicates(names: Iterable[str]) -> list[str]:
    return [name for name, count in Counter(names).items() if count > 1]


def validate_defaults(defaults: Defaults | None) -> None:
    """Check that defaults do not define the reserved `name` key."""
    if defaults is None or defaults.metadata is None:
        return
    for what, values in (
        ("spec", defaults.metadata.spec),
        ("templated", defaults.metadata.templated),
    ):
        if RESERVED_NAME_KEY in values:
            raise ReservedKeyConflict(
                f"defaults metadata.{what} cannot define reserved key "
                f"'{RESERVED_NAME_KEY}'"
            )


def validate_upstreams(fleet: FleetSpec) -> None:
    """Check that upstream names are unique and defaults name a known upstream."""
    if dupes := _duplicates(upstream.name for upstream in fleet.upstreams):
        raise DuplicateName(f"duplicate upstream names: {', '.join(dupes)}")
    if (
        fleet.defaults is not None
        and fleet.defaults.upstream
        and fleet.upstream(fleet.defaults.upstream) is None
    ):
        raise MalformedInput(
            f"defaults reference unknown upstream '{fleet.defaults.upstream}'"
        )


def validate_siblings(nodes: list[PackageNode], parent_path: str = "") -> None:
    """Check that sibling packages have unique names."""
    if dupes := _duplicates(node.name for node in nodes):
        raise DuplicateName(
            f"duplicate package names: {', '.join(dupes)}", parent_path or None
        )


def validate_package(node: PackageNode, fleet: FleetSpec, path: str) -> None:
    """Check a single package independent of its ancestors."""
    if node.upstream and fleet.upstream(node.upstream) is None:
        raise MalformedInput(f"unknown upstream '{node.upstream}'", path)
    if node.stub and node.source_path:
        _LOGGER.warning("Ignoring sourcePath of stub package %s", path)


def validate_fleet(fleet: FleetSpec) -> None:
    """Run the checks that apply to the Fleet as a whole."""
    validate_upstreams(fleet)
    validate_defaults(fleet.defaults)
    validate_siblings(fleet.packages)

"""Flattening of a resolved package tree into a list of packages to fetch."""

from collections.abc import Generator
from dataclasses import dataclass, field
import logging
from typing import Any

from .model import FleetSpec, PackageNode, Upstream

__all__ = [
    "ResolvedPackage",
    "flatten",
]

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedPackage:
    """A content package with all inherited values resolved."""

    name: str
    """The name of the package."""

    path: str
    """Names of the package and its ancestors joined with `/`."""

    ref: str
    """The effective source reference."""

    source_path: str
    """Path of the package content within the upstream."""

    upstream: Upstream
    """The upstream the package content is fetched from."""

    metadata: dict[str, str] = field(default_factory=dict)
    """The merged metadata of the package."""

    def to_dict(self) -> dict[str, Any]:
        """Return a dictionary representation for output."""
        return {
            "name": self.name,
            "path": self.path,
            "ref": self.ref,
            "sourcePath": self.source_path,
            "upstream": self.upstream.name,
            "repo": self.upstream.location,
            "metadata": dict(sorted(self.metadata.items())),
        }


def _walk(
    nodes: list[PackageNode], parent_path: str
) -> Generator[tuple[str, PackageNode], None, None]:
    """Pre-order traversal preserving sibling order."""
    for node in nodes:
        path = f"{parent_path}/{node.name}" if parent_path else node.name
        yield path, node
        yield from _walk(node.packages, path)


def flatten(fleet: FleetSpec) -> list[ResolvedPackage]:
    """Return the content packages of a resolved Fleet in document order.

    Stub packages are not emitted but their descendants are.
    """
    packages: list[ResolvedPackage] = []
    for path, node in _walk(fleet.packages, ""):
        if node.merged_metadata is None:
            raise ValueError(f"Fleet {fleet.name} has not been resolved")
        if not node.is_content:
            _LOGGER.debug("Skipping stub package %s", path)
            continue
        if (
            node.effective_ref is None
            or node.source_path is None
            or node.effective_upstream is None
            or (upstream := fleet.upstream(node.effective_upstream)) is None
        ):
            raise ValueError(f"Package {path} has not been resolved")
        packages.append(
            ResolvedPackage(
                name=node.name,
                path=path,
                ref=node.effective_ref,
                source_path=node.source_path,
                upstream=upstream,
                metadata=dict(node.merged_metadata),
            )
        )
    return packages

"""Library for resolving a Fleet package tree.

Resolution is a single pre-order traversal starting from a synthetic root
built from the Fleet defaults. Each package receives from its parent the
effective ref, the effective upstream and the merged metadata, and attaches
its own resolved values before visiting its children.

Example usage:

```python
from krm_functions import fleet

spec = fleet.parse_fleet_spec(content)
for package in fleet.flatten(spec):
    print(f"{package.path} {package.upstream.location}@{package.ref}")
```
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
import logging

from krm_functions.context import trace_context
from krm_functions.exceptions import MalformedInput, MissingReference

from .flatten import ResolvedPackage, flatten
from .metadata import merge_metadata, seed_metadata
from .model import FleetSpec, PackageNode, parse_fleet_doc
from .validator import validate_fleet, validate_package, validate_siblings

__all__ = [
    "parse_fleet_spec",
    "resolve_fleet",
]

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Scope:
    """Values a package inherits from its parent."""

    path: str
    ref: str | None
    upstream: str | None
    metadata: Mapping[str, str] = field(default_factory=dict)

    def child_path(self, name: str) -> str:
        return f"{self.path}/{name}" if self.path else name


def _root_scope(fleet: FleetSpec) -> _Scope:
    """Return the scope of the defaults, the implicit parent of the top level."""
    ref: str | None = None
    upstream: str | None = None
    metadata: dict[str, str] = {}
    if fleet.defaults is not None:
        ref = fleet.defaults.ref or None
        upstream = fleet.defaults.upstream or None
        metadata = seed_metadata(fleet.defaults.metadata)
    if upstream is None and len(fleet.upstreams) == 1:
        upstream = fleet.upstreams[0].name
    return _Scope(path="", ref=ref, upstream=upstream, metadata=metadata)


def _template_fields(node: PackageNode, path: str) -> dict[str, str]:
    fields = {"name": node.name, "path": path}
    if node.source_path:
        fields["sourcePath"] = node.source_path
    if node.effective_ref:
        fields["ref"] = node.effective_ref
    if node.effective_upstream:
        fields["upstream"] = node.effective_upstream
    return fields


def _resolve_node(node: PackageNode, parent: _Scope, fleet: FleetSpec) -> None:
    path = parent.child_path(node.name)
    validate_package(node, fleet, path)

    node.effective_ref = node.ref or parent.ref
    node.effective_upstream = node.upstream or parent.upstream
    if not node.stub:
        if not node.effective_ref:
            raise MissingReference(
                "no ref set on the package, its ancestors or the defaults", path
            )
        if not node.source_path:
            raise MalformedInput("package has no sourcePath and is not a stub", path)
        if not node.effective_upstream:
            raise MalformedInput(
                "no upstream set on the package, its ancestors or the defaults "
                f"and {len(fleet.upstreams)} upstreams declared",
                path,
            )

    node.merged_metadata = merge_metadata(
        node.name,
        node.metadata,
        parent.metadata,
        _template_fields(node, path),
        path,
    )
    _LOGGER.debug(
        "Resolved package %s ref=%s upstream=%s metadata=%s",
        path,
        node.effective_ref,
        node.effective_upstream,
        node.merged_metadata,
    )

    validate_siblings(node.packages, path)
    scope = _Scope(
        path=path,
        ref=node.effective_ref,
        upstream=node.effective_upstream,
        metadata=node.merged_metadata,
    )
    for child in node.packages:
        _resolve_node(child, scope, fleet)


def resolve_fleet(fleet: FleetSpec) -> list[ResolvedPackage]:
    """Validate and resolve the package tree, returning the flattened packages.

    The resolved values are also attached to each `PackageNode`.
    """
    with trace_context(f"Fleet '{fleet.name}'"):
        validate_fleet(fleet)
        root = _root_scope(fleet)
        for node in fleet.packages:
            _resolve_node(node, root, fleet)
        return flatten(fleet)


def parse_fleet_spec(content: str | bytes) -> FleetSpec:
    """Parse, validate and resolve a Fleet document.

    Any error aborts the parse so a returned FleetSpec is always fully resolved.
    """
    fleet = parse_fleet_doc(content)
    resolve_fleet(fleet)
    return fleet

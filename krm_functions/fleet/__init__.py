"""Resolution of Fleet documents into a flat list of source packages."""

from .flatten import ResolvedPackage, flatten
from .metadata import merge_metadata, render_template
from .model import (
    Defaults,
    FleetSpec,
    GitUpstream,
    PackageMetadata,
    PackageNode,
    Upstream,
)
from .resolver import parse_fleet_spec, resolve_fleet

__all__ = [
    "Defaults",
    "FleetSpec",
    "GitUpstream",
    "PackageMetadata",
    "PackageNode",
    "ResolvedPackage",
    "Upstream",
    "flatten",
    "merge_metadata",
    "parse_fleet_spec",
    "render_template",
    "resolve_fleet",
]

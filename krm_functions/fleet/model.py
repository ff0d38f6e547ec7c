"""Representation of a Fleet document.

A Fleet describes a tree of packages sourced from git upstreams:

```yaml
apiVersion: fn.kpt.dev/v1alpha1
kind: Fleet
metadata:
  name: example-fleet
spec:
  upstreams:
  - name: example
    type: git
    git:
      repo: https://github.com/krm-functions/catalog.git
  defaults:
    ref: main
    metadata:
      spec:
        k1: v1
  packages:
  - name: foo
    sourcePath: examples/source-packages/pkg1
```

The objects here only carry what was written in the document. The values
computed by resolution (effective ref, effective upstream and merged metadata)
are attached to each `PackageNode` by `krm_functions.fleet.resolver`.
"""

from dataclasses import dataclass, field
import logging
from typing import Any

import yaml
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from krm_functions.exceptions import MalformedInput

__all__ = [
    "FleetSpec",
    "Upstream",
    "GitUpstream",
    "Defaults",
    "PackageNode",
    "PackageMetadata",
    "parse_fleet_doc",
]

_LOGGER = logging.getLogger(__name__)

FLEET_DOMAIN = "fn.kpt.dev"
FLEET_KIND = "Fleet"
UPSTREAM_TYPE_GIT = "git"
RESERVED_NAME_KEY = "name"


def _check_mapping(value: Any, what: str, path: str | None = None) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedInput(f"expected a mapping for {what}: {value!r}", path)
    return value


def _check_list(value: Any, what: str, path: str | None = None) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedInput(f"expected a list for {what}: {value!r}", path)
    return value


def _optional_str(value: Any, what: str, path: str | None = None) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise MalformedInput(f"expected a string for {what}: {value!r}", path)
    return str(value)


def _string_map(value: Any, what: str, path: str | None = None) -> dict[str, str]:
    """Convert a mapping of scalars into a mapping of strings."""
    result: dict[str, str] = {}
    for key, item in _check_mapping(value, what, path).items():
        if isinstance(item, bool):
            result[str(key)] = "true" if item else "false"
        elif isinstance(item, (str, int, float)):
            result[str(key)] = str(item)
        elif item is None:
            result[str(key)] = ""
        else:
            raise MalformedInput(
                f"expected a string value for {what}.{key}: {item!r}", path
            )
    return result


@dataclass
class BaseModel(DataClassDictMixin):
    """Base class for all Fleet model objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class GitUpstream(BaseModel):
    """Location of a git upstream."""

    repo: str
    """The repository URL."""


@dataclass
class Upstream(BaseModel):
    """A named source of package content."""

    name: str
    """Unique name, referenced by packages."""

    type: str = UPSTREAM_TYPE_GIT
    """The kind of source, only `git` is supported."""

    git: GitUpstream | None = None
    """Git source details for `git` upstreams."""

    @property
    def location(self) -> str:
        """Return the repository URL of the upstream."""
        if self.git is None:
            return ""
        return self.git.repo

    @classmethod
    def parse_doc(cls, doc: Any) -> "Upstream":
        """Parse an Upstream from a `spec.upstreams` entry."""
        doc = _check_mapping(doc, "upstream")
        if not (name := _optional_str(doc.get("name"), "upstream name")):
            raise MalformedInput(f"Invalid upstream missing name: {doc}")
        upstream_type = doc.get("type", UPSTREAM_TYPE_GIT)
        if upstream_type != UPSTREAM_TYPE_GIT:
            raise MalformedInput(
                f"Invalid upstream {name}: unsupported type {upstream_type!r}"
            )
        git = _check_mapping(doc.get("git"), f"upstream {name} git")
        if not (repo := _optional_str(git.get("repo"), f"upstream {name} repo")):
            raise MalformedInput(f"Invalid upstream {name} missing git.repo: {doc}")
        return cls(name=name, type=upstream_type, git=GitUpstream(repo=repo))


@dataclass
class PackageMetadata(BaseModel):
    """Metadata fragment of a package or of the Fleet defaults."""

    spec: dict[str, str] = field(default_factory=dict)
    """Literal key/value pairs."""

    templated: dict[str, str] = field(default_factory=dict)
    """Key/value pairs where the value is evaluated as a template."""

    inherit_from_parent: bool = field(
        metadata=field_options(alias="inheritFromParent"), default=True
    )
    """When false, merging starts from an empty map instead of the parent's."""

    @classmethod
    def parse_doc(cls, doc: Any, path: str | None = None) -> "PackageMetadata":
        """Parse a `metadata` block."""
        doc = _check_mapping(doc, "metadata", path)
        inherit = doc.get("inheritFromParent", True)
        if not isinstance(inherit, bool):
            raise MalformedInput(
                f"expected a boolean for metadata.inheritFromParent: {inherit!r}", path
            )
        return cls(
            spec=_string_map(doc.get("spec"), "metadata.spec", path),
            templated=_string_map(doc.get("templated"), "metadata.templated", path),
            inherit_from_parent=inherit,
        )


@dataclass
class Defaults(BaseModel):
    """Settings applied as the implicit parent of the top level packages."""

    ref: str | None = None
    """Default source reference e.g. a branch or tag."""

    upstream: str | None = None
    """Default upstream name."""

    metadata: PackageMetadata | None = None
    """Metadata seeding inheritance of the top level packages."""

    @classmethod
    def parse_doc(cls, doc: Any) -> "Defaults":
        """Parse the `spec.defaults` block."""
        doc = _check_mapping(doc, "defaults")
        metadata = None
        if doc.get("metadata") is not None:
            metadata = PackageMetadata.parse_doc(doc["metadata"], "defaults")
        return cls(
            ref=_optional_str(doc.get("ref"), "defaults.ref"),
            upstream=_optional_str(doc.get("upstream"), "defaults.upstream"),
            metadata=metadata,
        )


@dataclass
class PackageNode(BaseModel):
    """A node in the package tree."""

    name: str
    """Name of the package, unique among its siblings."""

    source_path: str | None = field(
        metadata=field_options(alias="sourcePath"), default=None
    )
    """Path of the package content within the upstream."""

    ref: str | None = None
    """Explicit source reference, inherited by descendants."""

    upstream: str | None = None
    """Explicit upstream name, inherited by descendants."""

    stub: bool = False
    """A grouping package with no content of its own."""

    metadata: PackageMetadata = field(default_factory=PackageMetadata)
    """Metadata overrides for this package and its descendants."""

    packages: list["PackageNode"] = field(default_factory=list)
    """Child packages in document order."""

    effective_ref: str | None = field(metadata={"serialize": "omit"}, default=None)
    """The resolved source reference."""

    effective_upstream: str | None = field(
        metadata={"serialize": "omit"}, default=None
    )
    """The resolved upstream name."""

    merged_metadata: dict[str, str] | None = field(
        metadata={"serialize": "omit"}, default=None
    )
    """The resolved metadata map."""

    @property
    def is_content(self) -> bool:
        """Return True if the package has content to fetch."""
        return not self.stub and bool(self.source_path)

    @classmethod
    def parse_doc(cls, doc: Any, parent_path: str = "") -> "PackageNode":
        """Parse a package and its children."""
        doc = _check_mapping(doc, "package", parent_path or None)
        name = _optional_str(doc.get("name"), "package name", parent_path or None)
        if not name:
            raise MalformedInput(
                f"Invalid package missing name: {doc}", parent_path or None
            )
        if "/" in name:
            raise MalformedInput(
                f"Invalid package name '{name}': must not contain '/'",
                parent_path or None,
            )
        path = f"{parent_path}/{name}" if parent_path else name
        stub = doc.get("stub", False)
        if not isinstance(stub, bool):
            raise MalformedInput(f"expected a boolean for stub: {stub!r}", path)
        return cls(
            name=name,
            source_path=_optional_str(doc.get("sourcePath"), "sourcePath", path),
            ref=_optional_str(doc.get("ref"), "ref", path),
            upstream=_optional_str(doc.get("upstream"), "upstream", path),
            stub=stub,
            metadata=PackageMetadata.parse_doc(doc.get("metadata"), path),
            packages=[
                cls.parse_doc(child, path)
                for child in _check_list(doc.get("packages"), "packages", path)
            ],
        )


@dataclass
class FleetSpec(BaseModel):
    """Root of a Fleet document."""

    name: str
    """The name of the Fleet object."""

    upstreams: list[Upstream] = field(default_factory=list)
    """Declared package sources."""

    defaults: Defaults | None = None
    """Implicit parent of the top level packages."""

    packages: list[PackageNode] = field(default_factory=list)
    """Top level packages in document order."""

    def upstream(self, name: str) -> Upstream | None:
        """Return the upstream with the specified name."""
        return next((u for u in self.upstreams if u.name == name), None)

    @classmethod
    def parse_doc(cls, doc: Any) -> "FleetSpec":
        """Build the model from a decoded Fleet object.

        This only checks the document structure, use `parse_fleet_doc` to also
        validate and resolve the package tree.
        """
        if not isinstance(doc, dict):
            raise MalformedInput(f"Fleet document is not a mapping: {doc!r}")
        if not (api_version := doc.get("apiVersion")):
            raise MalformedInput(f"Invalid object missing apiVersion: {doc}")
        if not str(api_version).startswith(f"{FLEET_DOMAIN}/"):
            raise MalformedInput(f"Invalid object expected '{FLEET_DOMAIN}': {doc}")
        if doc.get("kind") != FLEET_KIND:
            raise MalformedInput(f"Invalid object expected kind {FLEET_KIND}: {doc}")
        metadata = _check_mapping(doc.get("metadata"), "metadata")
        if not (name := metadata.get("name")):
            raise MalformedInput(f"Invalid {FLEET_KIND} missing metadata.name: {doc}")
        spec = _check_mapping(doc.get("spec"), "spec")
        defaults = None
        if spec.get("defaults") is not None:
            defaults = Defaults.parse_doc(spec["defaults"])
        return cls(
            name=str(name),
            upstreams=[
                Upstream.parse_doc(upstream)
                for upstream in _check_list(spec.get("upstreams"), "spec.upstreams")
            ],
            defaults=defaults,
            packages=[
                PackageNode.parse_doc(package)
                for package in _check_list(spec.get("packages"), "spec.packages")
            ],
        )


def load_fleet_doc(content: str | bytes) -> dict[str, Any]:
    """Decode the YAML content of a Fleet document."""
    try:
        doc = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise MalformedInput(f"Unable to parse Fleet document: {err}") from err
    if not isinstance(doc, dict):
        raise MalformedInput(f"Fleet document is not a mapping: {doc!r}")
    return doc


def parse_fleet_doc(content: str | bytes) -> FleetSpec:
    """Parse the structure of a Fleet document without resolving it."""
    fleet = FleetSpec.parse_doc(load_fleet_doc(content))
    _LOGGER.debug(
        "Parsed Fleet %s with %d upstreams, %d top level packages",
        fleet.name,
        len(fleet.upstreams),
        len(fleet.packages),
    )
    return fleet

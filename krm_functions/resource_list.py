"""Representation of the KRM function input and output stream.

A KRM function reads a `ResourceList` on stdin, modifies its items and
writes it back to stdout together with a list of results:

```yaml
apiVersion: config.kubernetes.io/v1
kind: ResourceList
functionConfig:
  apiVersion: v1
  kind: ConfigMap
  data: {}
items:
- apiVersion: fn.kpt.dev/v1alpha1
  kind: RenderHelmChart
  ...
results:
- message: ...
  severity: info
```

Items are kept as plain dictionaries as parsed from yaml and the helpers in
this module operate on them in place.
"""

from dataclasses import dataclass, field
import logging
from typing import Any, Optional

import yaml
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from .exceptions import InputException

__all__ = [
    "ResourceList",
    "Result",
    "ResourceRef",
    "is_gvk",
    "get_annotation",
    "set_annotation",
    "get_nested",
    "set_nested_field",
]

_LOGGER = logging.getLogger(__name__)

RESOURCE_LIST_API_VERSION = "config.kubernetes.io/v1"
RESOURCE_LIST_KIND = "ResourceList"

SEVERITY_ERROR = "error"
SEVERITY_INFO = "info"

# The path of an item in the output package, honored by kpt and kustomize
PATH_ANNOTATION = "internal.config.kubernetes.io/path"


def api_group(obj: dict[str, Any]) -> str:
    """Return the API group of an object, empty for the core group."""
    api_version = str(obj.get("apiVersion", ""))
    if "/" not in api_version:
        return ""
    return api_version.split("/", 1)[0]


def is_gvk(obj: dict[str, Any], group: str, kind: str) -> bool:
    """Return True if the object has the specified group and kind."""
    return api_group(obj) == group and obj.get("kind") == kind


def object_name(obj: dict[str, Any]) -> str:
    """Return the `metadata.name` of an object."""
    return str(get_nested(obj, "metadata", "name") or "")


def get_nested(obj: dict[str, Any], *keys: str) -> Any:
    """Return the value at the nested path or None if not present."""
    value: Any = obj
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def set_nested_field(obj: dict[str, Any], value: Any, *keys: str) -> None:
    """Set a value at the nested path, creating intermediate mappings."""
    if not keys:
        raise ValueError("At least one key is required")
    current = obj
    for key in keys[:-1]:
        child = current.get(key)
        if child is None:
            child = current[key] = {}
        elif not isinstance(child, dict):
            raise InputException(
                f"Cannot set {'.'.join(keys)} on {object_name(obj)}: "
                f"{key} is not a mapping"
            )
        current = child
    current[keys[-1]] = value


def get_annotation(obj: dict[str, Any], name: str) -> str:
    """Return the value of an annotation or an empty string."""
    annotations = get_nested(obj, "metadata", "annotations") or {}
    return str(annotations.get(name, ""))


def set_annotation(obj: dict[str, Any], name: str, value: str) -> None:
    """Set an annotation on the object."""
    set_nested_field(obj, value, "metadata", "annotations", name)


@dataclass
class ResourceRef(DataClassDictMixin):
    """Identifies the object a result applies to."""

    api_version: str = field(metadata=field_options(alias="apiVersion"))
    kind: str
    name: str
    namespace: Optional[str] = None

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> "ResourceRef":
        """Build a reference to a kubernetes object."""
        return cls(
            api_version=str(obj.get("apiVersion", "")),
            kind=str(obj.get("kind", "")),
            name=object_name(obj),
            namespace=get_nested(obj, "metadata", "namespace"),
        )

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class Result(DataClassDictMixin):
    """A message reported by the function."""

    message: str
    """Human readable message."""

    severity: str = SEVERITY_INFO
    """One of error, warning or info."""

    resource_ref: Optional[ResourceRef] = field(
        metadata=field_options(alias="resourceRef"), default=None
    )
    """The object the result applies to, if any."""

    tags: Optional[dict[str, str]] = None
    """Additional key/value pairs for machine consumption."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


def general_result(message: str, severity: str = SEVERITY_INFO) -> Result:
    """Return a result not tied to an object."""
    return Result(message=message, severity=severity)


def config_object_result(
    message: str, obj: dict[str, Any], severity: str = SEVERITY_INFO
) -> Result:
    """Return a result for a specific object."""
    return Result(
        message=message, severity=severity, resource_ref=ResourceRef.from_object(obj)
    )


@dataclass
class ResourceList:
    """The input and output of a KRM function."""

    items: list[dict[str, Any]] = field(default_factory=list)
    """The objects in the stream."""

    function_config: dict[str, Any] | None = None
    """The function configuration object."""

    results: list[Result] = field(default_factory=list)
    """Results reported by the function."""

    @classmethod
    def parse_yaml(cls, content: str) -> "ResourceList":
        """Parse a ResourceList, or a plain stream of objects, from yaml."""
        try:
            docs = [doc for doc in yaml.safe_load_all(content) if doc is not None]
        except yaml.YAMLError as err:
            raise InputException(f"Unable to parse input: {err}") from err
        if (
            len(docs) == 1
            and isinstance(docs[0], dict)
            and docs[0].get("kind") == RESOURCE_LIST_KIND
        ):
            doc = docs[0]
            items = doc.get("items") or []
            if not isinstance(items, list):
                raise InputException("Invalid ResourceList: items is not a list")
            return cls(
                items=items,
                function_config=doc.get("functionConfig"),
                results=[Result.from_dict(r) for r in doc.get("results") or []],
            )
        for doc in docs:
            if not isinstance(doc, dict):
                raise InputException(f"Invalid object in input stream: {doc!r}")
        _LOGGER.debug("Read %d objects from a plain input stream", len(docs))
        return cls(items=docs)

    @property
    def function_config_data(self) -> dict[str, Any]:
        """Return the `data` of a ConfigMap function config."""
        if not self.function_config:
            return {}
        return self.function_config.get("data") or {}

    @property
    def has_errors(self) -> bool:
        """Return True if an error result was reported."""
        return any(result.severity == SEVERITY_ERROR for result in self.results)

    def to_dict(self) -> dict[str, Any]:
        """Return the ResourceList object."""
        doc: dict[str, Any] = {
            "apiVersion": RESOURCE_LIST_API_VERSION,
            "kind": RESOURCE_LIST_KIND,
            "items": self.items,
        }
        if self.function_config is not None:
            doc["functionConfig"] = self.function_config
        if self.results:
            doc["results"] = [result.to_dict() for result in self.results]
        return doc

    def yaml(self) -> str:
        """Return the yaml representation of the ResourceList."""
        return yaml.dump(self.to_dict(), sort_keys=False)

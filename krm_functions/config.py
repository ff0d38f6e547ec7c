"""Configuration objects for krm-functions.

Functions are configured through the `data` of a ConfigMap function config,
where all values are strings.
"""

from dataclasses import dataclass, fields
import logging
from typing import Any

from .exceptions import InputException

_LOGGER = logging.getLogger(__name__)

_TRUE = ("true", "yes", "1", "on")
_FALSE = ("false", "no", "0", "off", "")


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise InputException(f"Invalid boolean for function config {key}: {value!r}")


def _camel_case(name: str) -> str:
    first, *rest = name.split("_")
    return first + "".join(part.capitalize() for part in rest)


@dataclass
class UpgraderConfig:
    """Configuration for the helm-upgrader function."""

    annotate_on_upgrade_available: bool = True
    """Annotate objects with the available upgrade."""

    upgrade_on_upgrade_available: bool = False
    """Update the chart version to the available upgrade."""

    annotate_sum_on_upgrade_available: bool = False
    """Annotate objects with the sha256 sum of the upgraded chart."""

    annotate_current_sum: bool = False
    """Annotate objects with the sha256 sum of the current chart if missing."""

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> "UpgraderConfig":
        """Build the config from ConfigMap data with camelCase keys."""
        values = {}
        for config_field in fields(cls):
            key = _camel_case(config_field.name)
            if key in data:
                values[config_field.name] = _parse_bool(key, data[key])
        _LOGGER.debug("Upgrader config: %s", values)
        return cls(**values)


@dataclass
class SourcePackagesConfig:
    """Configuration for the source-packages function."""

    fetch: bool = True
    """Fetch the content of resolved packages into the output."""

    annotate_metadata: bool = False
    """Set merged package metadata as annotations on fetched objects."""

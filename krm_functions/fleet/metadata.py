"""Library for computing the merged metadata of Fleet packages.

Each package's metadata is built from its parent's merged metadata in a fixed
order, where later steps overwrite keys from earlier ones:

1. The parent's merged map (or nothing when `inheritFromParent` is false)
2. Literal `spec` values
3. Rendered `templated` values
4. The package `name`

Templates are not a general purpose template language. A template may only
substitute fields describing the package itself, written as `{{.name}}`.
"""

from collections.abc import Mapping
import logging
import re

from krm_functions.exceptions import TemplateEvaluationError

from .model import PackageMetadata, RESERVED_NAME_KEY

__all__ = [
    "TEMPLATE_FIELDS",
    "render_template",
    "merge_metadata",
    "seed_metadata",
]

_LOGGER = logging.getLogger(__name__)

TEMPLATE_FIELDS = ("name", "path", "sourcePath", "ref", "upstream")

_ACTION = re.compile(r"{{(.*?)}}", re.DOTALL)
_FIELD = re.compile(r"^\s*\.([A-Za-z][A-Za-z0-9_]*)\s*$")


def render_template(
    template: str, fields: Mapping[str, str], path: str | None = None
) -> str:
    """Substitute `{{.field}}` references in the template.

    Every reference must name a known field that has a value in `fields`,
    anything else raises `TemplateEvaluationError`.
    """

    def replace(match: re.Match[str]) -> str:
        if not (field_match := _FIELD.match(match.group(1))):
            raise TemplateEvaluationError(
                f"unsupported template action {match.group(0)!r} in {template!r}",
                path,
            )
        name = field_match.group(1)
        if name not in TEMPLATE_FIELDS:
            raise TemplateEvaluationError(
                f"unknown template field {name!r} in {template!r}", path
            )
        if name not in fields:
            raise TemplateEvaluationError(
                f"template field {name!r} has no value in {template!r}", path
            )
        return fields[name]

    if "{{" in _ACTION.sub("", template):
        raise TemplateEvaluationError(
            f"unterminated template action in {template!r}", path
        )
    return _ACTION.sub(replace, template)


def merge_metadata(
    name: str,
    metadata: PackageMetadata,
    parent: Mapping[str, str],
    fields: Mapping[str, str] | None = None,
    path: str | None = None,
) -> dict[str, str]:
    """Compute the merged metadata of a package.

    The `fields` are available to templates, the package `name` is always
    available even when not present in `fields`.
    """
    merged = dict(parent) if metadata.inherit_from_parent else {}
    merged.update(metadata.spec)
    identity = {**(fields or {}), "name": name}
    for key, template in metadata.templated.items():
        merged[key] = render_template(template, identity, path)
    merged[RESERVED_NAME_KEY] = name
    return merged


def seed_metadata(metadata: PackageMetadata | None) -> dict[str, str]:
    """Return the metadata contributed by the Fleet defaults.

    Defaults have no identity, so templates here may not reference any field.
    """
    if metadata is None:
        return {}
    seed = dict(metadata.spec)
    for key, template in metadata.templated.items():
        seed[key] = render_template(template, {}, "defaults")
    return seed

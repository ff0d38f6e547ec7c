"""The source-packages function.

Resolves a `Fleet` into the list of packages to fetch and, when a fetcher is
provided, adds the objects of each package to the output. Each fetched object
is placed below the package path in the output, e.g. the file
`deployment.yaml` of package `bar1` nested in `bar` is written to
`bar/bar1/deployment.yaml`.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import aiofiles
import yaml

from .config import SourcePackagesConfig
from .context import trace_context
from .exceptions import FetchException, InputException
from .fetch import Fetcher
from .fleet import FleetSpec, ResolvedPackage, resolve_fleet
from .fleet.model import FLEET_DOMAIN, FLEET_KIND
from .resource_list import (
    PATH_ANNOTATION,
    ResourceList,
    config_object_result,
    is_gvk,
    set_annotation,
)

__all__ = [
    "find_fleet",
    "read_package",
    "run",
]

_LOGGER = logging.getLogger(__name__)

METADATA_ANNOTATION_PREFIX = "fleet.fn.kpt.dev/"
INDEX_ANNOTATION = "internal.config.kubernetes.io/index"
PACKAGE_FILE_SUFFIXES = (".yaml", ".yml")
KPTFILE = "Kptfile"


def find_fleet(resource_list: ResourceList) -> dict[str, Any]:
    """Return the Fleet from the function config, else the first Fleet item."""
    config = resource_list.function_config
    if config is not None and is_gvk(config, FLEET_DOMAIN, FLEET_KIND):
        return config
    for item in resource_list.items:
        if is_gvk(item, FLEET_DOMAIN, FLEET_KIND):
            return item
    raise InputException("No Fleet found in the function config or input items")


def _package_files(root: Path) -> list[Path]:
    """Return the object files of a package, skipping hidden files and links."""
    files = []
    for path in root.rglob("*"):
        if not path.is_file() or (
            path.suffix not in PACKAGE_FILE_SUFFIXES and path.name != KPTFILE
        ):
            continue
        relative = path.relative_to(root)
        if any(part.startswith(".") for part in relative.parts):
            continue
        if path.is_symlink() or not path.resolve().is_relative_to(root):
            _LOGGER.warning("Skipping linked file %s in package", relative)
            continue
        files.append(path)
    return sorted(files)


async def read_package(
    upstream_dir: Path, package: ResolvedPackage, annotate_metadata: bool = False
) -> list[dict[str, Any]]:
    """Read the objects of a package from a fetched upstream."""
    root = upstream_dir.resolve()
    package_dir = (root / package.source_path).resolve()
    if not package_dir.is_relative_to(root):
        raise InputException(
            f"Package {package.path} sourcePath {package.source_path} is outside "
            "of the upstream"
        )
    if not package_dir.is_dir():
        raise FetchException(
            f"Package {package.path} sourcePath {package.source_path} not found in "
            f"upstream {package.upstream.name} at {package.ref}"
        )
    objects: list[dict[str, Any]] = []
    for path in await asyncio.to_thread(_package_files, package_dir):
        relative = path.relative_to(package_dir).as_posix()
        async with aiofiles.open(path, mode="r") as package_file:
            content = await package_file.read()
        try:
            docs = [doc for doc in yaml.safe_load_all(content) if doc is not None]
        except yaml.YAMLError as err:
            raise InputException(
                f"Unable to parse {relative} of package {package.path}: {err}"
            ) from err
        for index, doc in enumerate(docs):
            if not isinstance(doc, dict):
                _LOGGER.debug("Skipping non-object document in %s", relative)
                continue
            set_annotation(doc, PATH_ANNOTATION, f"{package.path}/{relative}")
            set_annotation(doc, INDEX_ANNOTATION, str(index))
            if annotate_metadata:
                for key, value in sorted(package.metadata.items()):
                    set_annotation(doc, f"{METADATA_ANNOTATION_PREFIX}{key}", value)
            objects.append(doc)
    _LOGGER.debug("Read %d objects from package %s", len(objects), package.path)
    return objects


async def run(
    resource_list: ResourceList,
    fetcher: Fetcher | None = None,
    config: SourcePackagesConfig | None = None,
) -> list[ResolvedPackage]:
    """Run the source-packages function over the resource list."""
    if config is None:
        config = SourcePackagesConfig()
    doc = find_fleet(resource_list)
    fleet = FleetSpec.parse_doc(doc)
    packages = resolve_fleet(fleet)
    _LOGGER.info("Fleet %s resolved to %d packages", fleet.name, len(packages))

    fetched: list[dict[str, Any]] = []
    for package in packages:
        resource_list.results.append(
            config_object_result(json.dumps(package.to_dict()), doc)
        )
        if fetcher is None or not config.fetch:
            continue
        with trace_context(f"Fetch package {package.path}"):
            upstream_dir = await fetcher.fetch(package.upstream, package.ref)
            fetched.extend(
                await read_package(upstream_dir, package, config.annotate_metadata)
            )
    resource_list.items.extend(fetched)
    return packages

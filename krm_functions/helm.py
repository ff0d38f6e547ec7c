"""Library for running the `helm` binary to source and render charts.

Each `Helm` instance uses its own helm configuration, data and cache
directories so repositories added while searching never leak into the user's
helm configuration:

```python
from krm_functions.helm import helm_context
from krm_functions.helm_specs import HelmChartArgs

async with helm_context() as helm:
    args = HelmChartArgs(name="cert-manager", repo="https://charts.jetstack.io")
    versions = await helm.versions(args)
    tarball, sha256sum = await helm.pull_chart(args, dest)
```

Rendering a sourced chart:
```python
async with helm_context() as helm:
    objects = await helm.template(chart)
    for obj in objects:
        print(f"Found object {obj['apiVersion']} {obj['kind']}")
```
"""

import asyncio
import base64
import binascii
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
import hashlib
import io
import json
import logging
from pathlib import Path, PurePosixPath
import tarfile
import tempfile
from typing import Any

import aiofiles
import yaml
from oras.client import OrasClient
from slugify import slugify

from . import command
from .exceptions import HelmException, InputException
from .helm_specs import AuthSecretRef, HelmChart, HelmChartArgs, HelmTemplateOptions
from .resource_list import get_nested, is_gvk

__all__ = [
    "Helm",
    "ChartVersion",
    "helm_context",
    "template_args",
    "lookup_auth_secret",
]

_LOGGER = logging.getLogger(__name__)

HELM_BIN = "helm"
MAX_CHART_FILE_LENGTH = 1024 * 1024


@dataclass(frozen=True)
class ChartVersion:
    """A chart version found in a repository."""

    name: str
    """The chart name, prefixed with the repository name for `helm search`."""

    version: str
    """The chart version."""

    app_version: str = ""
    """The version of the application packaged by the chart."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ChartVersion":
        """Parse an entry of `helm search repo -o json`."""
        return cls(
            name=str(doc.get("name", "")),
            version=str(doc.get("version", "")),
            app_version=str(doc.get("app_version", "")),
        )


def template_args(options: HelmTemplateOptions) -> list[str]:
    """Return the `helm template` arguments for the options."""
    args = ["template"]
    if options.release_name:
        args.append(options.release_name)
    if options.namespace:
        args.extend(["--namespace", options.namespace])
    if options.name_template:
        args.extend(["--name-template", options.name_template])
    for api_version in options.api_versions:
        args.extend(["--api-versions", api_version])
    if options.description:
        args.extend(["--description", options.description])
    if options.include_crds:
        args.append("--include-crds")
    if options.skip_tests:
        args.append("--skip-tests")
    return args


def _auth_args(username: str | None, password: str | None) -> list[str]:
    if username is None or password is None:
        return []
    return ["--username", username, "--password", password]


def lookup_auth_secret(
    ref: AuthSecretRef, items: list[dict[str, Any]]
) -> tuple[str, str]:
    """Return the username and password from a Secret in the stream."""
    for item in items:
        if not is_gvk(item, "", "Secret"):
            continue
        if get_nested(item, "metadata", "name") != ref.name:
            continue
        if ref.namespace and get_nested(item, "metadata", "namespace") != ref.namespace:
            continue
        data = item.get("data") or {}
        string_data = item.get("stringData") or {}
        try:
            values = {
                key: (
                    base64.b64decode(data[key]).decode("utf-8")
                    if key in data
                    else str(string_data[key])
                )
                for key in ("username", "password")
            }
        except KeyError as err:
            raise InputException(
                f"Secret {ref.name} is missing key {err} for chart authentication"
            ) from err
        except (binascii.Error, UnicodeDecodeError) as err:
            raise InputException(
                f"Secret {ref.name} has invalid base64 data: {err}"
            ) from err
        return values["username"], values["password"]
    raise InputException(
        f"Auth secret {ref.namespace or ''}/{ref.name} not found in input"
    )


def extract_chart(data: bytes, dest: Path) -> None:
    """Extract a chart tarball, refusing entries that escape the destination."""
    root = dest.resolve()
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
            for member in tar.getmembers():
                name = PurePosixPath(member.name)
                if name.is_absolute():
                    raise HelmException(
                        f"Chart contains file with absolute path: {member.name}"
                    )
                target = (root / name).resolve()
                if not target.is_relative_to(root):
                    raise HelmException(
                        f"Chart contains file outside of the chart: {member.name}"
                    )
                if not member.isfile():
                    continue
                if member.size > MAX_CHART_FILE_LENGTH:
                    raise HelmException(
                        f"Chart file {member.name} exceeds {MAX_CHART_FILE_LENGTH} bytes"
                    )
                if (fileobj := tar.extractfile(member)) is None:
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(fileobj.read(MAX_CHART_FILE_LENGTH))
    except tarfile.TarError as err:
        raise HelmException(f"Unable to extract chart: {err}") from err


class Helm:
    """Runs helm with an isolated configuration."""

    def __init__(self, tmp_dir: Path, cache_dir: Path) -> None:
        """Initialize Helm."""
        self._tmp_dir = tmp_dir
        self._env = {
            "HELM_CONFIG_HOME": str(tmp_dir / "config"),
            "HELM_DATA_HOME": str(tmp_dir / "data"),
            "HELM_CACHE_HOME": str(cache_dir),
        }

    def _command(self, args: list[str]) -> command.Command:
        return command.Command([HELM_BIN] + args, env=self._env, exc=HelmException)

    async def search_repo(
        self,
        args: HelmChartArgs,
        username: str | None = None,
        password: str | None = None,
    ) -> list[ChartVersion]:
        """Return all versions of charts in the repository matching the chart name."""
        if args.is_oci:
            tags = await self._oci_tags(args, username, password)
            return [ChartVersion(name=args.name, version=tag) for tag in tags]
        repo_name = slugify(args.repo, max_length=50)
        await command.run(
            self._command(
                ["repo", "add", repo_name, args.repo, "--force-update"]
                + _auth_args(username, password)
            )
        )
        out = await command.run(
            self._command(
                [
                    "search",
                    "repo",
                    f"{repo_name}/{args.name}",
                    "--versions",
                    "--output",
                    "json",
                ]
            )
        )
        try:
            docs = json.loads(out or "[]")
        except json.JSONDecodeError as err:
            raise HelmException(f"Unable to parse helm search output: {err}") from err
        return [
            ChartVersion(
                name=result.name.removeprefix(f"{repo_name}/"),
                version=result.version,
                app_version=result.app_version,
            )
            for result in (ChartVersion.parse_doc(doc) for doc in docs)
        ]

    async def _oci_tags(
        self, args: HelmChartArgs, username: str | None, password: str | None
    ) -> list[str]:
        target = args.chart_ref.removeprefix("oci://")
        client = OrasClient()

        def get_tags() -> list[str]:
            if username is not None and password is not None:
                client.login(
                    hostname=target.split("/")[0],
                    username=username,
                    password=password,
                )
            return list(client.get_tags(target))

        _LOGGER.debug("Listing tags of OCI repository %s", target)
        try:
            return await asyncio.to_thread(get_tags)
        except Exception as err:
            raise HelmException(f"Unable to list tags of {target}: {err}") from err

    async def versions(
        self,
        args: HelmChartArgs,
        username: str | None = None,
        password: str | None = None,
    ) -> list[str]:
        """Return the available versions of the chart."""
        results = await self.search_repo(args, username, password)
        return [result.version for result in filter_by_chart_name(results, args)]

    async def pull_chart(
        self,
        args: HelmChartArgs,
        dest: Path,
        username: str | None = None,
        password: str | None = None,
    ) -> tuple[str, str]:
        """Download the chart tarball into dest, returning its name and sha256 sum."""
        pull_args = ["pull", args.chart_ref, "--destination", str(dest)]
        if not args.is_oci:
            pull_args.extend(["--repo", args.repo])
        if args.version:
            pull_args.extend(["--version", args.version])
        pull_args.extend(_auth_args(username, password))
        await command.run(self._command(pull_args))
        tarballs = sorted(path for path in dest.iterdir() if path.suffix == ".tgz")
        if len(tarballs) != 1:
            raise HelmException(
                f"Expected one chart tarball for {args.name} but found {len(tarballs)}"
            )
        async with aiofiles.open(tarballs[0], mode="rb") as tarball:
            content = await tarball.read()
        return tarballs[0].name, hashlib.sha256(content).hexdigest()

    async def template(self, chart: HelmChart) -> list[dict[str, Any]]:
        """Render a sourced chart, returning the rendered objects."""
        if not chart.chart:
            raise HelmException(f"Chart {chart.args.name} has not been sourced")
        try:
            data = base64.b64decode(chart.chart, validate=True)
        except binascii.Error as err:
            raise HelmException(
                f"Chart {chart.args.name} has invalid base64 data: {err}"
            ) from err
        with tempfile.TemporaryDirectory(dir=self._tmp_dir) as tmp:
            tmp_dir = Path(tmp)
            extract_chart(data, tmp_dir)
            chart_dir = tmp_dir / chart.args.name
            values_path = tmp_dir / "values.yaml"
            async with aiofiles.open(values_path, mode="w") as values_file:
                await values_file.write(
                    yaml.dump(chart.options.values.values_inline, sort_keys=False)
                )
            args = template_args(chart.options)
            for values_file_name in chart.options.values.values_files:
                args.extend(["--values", str(chart_dir / values_file_name)])
            args.extend(["--values", str(values_path), str(chart_dir)])
            out = await command.run(self._command(args))
        try:
            return [doc for doc in yaml.safe_load_all(out) if doc]
        except yaml.YAMLError as err:
            raise HelmException(f"Unable to parse rendered chart: {err}") from err


def filter_by_chart_name(
    results: list[ChartVersion], args: HelmChartArgs
) -> list[ChartVersion]:
    """Remove search results for other charts with a matching prefix."""
    return [result for result in results if result.name == args.name]


@asynccontextmanager
async def helm_context() -> AsyncGenerator[Helm, None]:
    """Return a Helm using temporary directories removed on exit."""
    with tempfile.TemporaryDirectory(prefix="krm-helm-") as tmp:
        tmp_dir = Path(tmp)
        cache_dir = tmp_dir / "cache"
        cache_dir.mkdir()
        yield Helm(tmp_dir, cache_dir)

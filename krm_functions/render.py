"""The render-helm-chart function.

Rendering happens in two steps so that the network access is separate from
the rendering:

1. A `fn.kpt.dev` `RenderHelmChart` is sourced: each chart is pulled from its
   repository and embedded as a base64 tarball, and the object becomes an
   `experimental.helm.sh` `RenderHelmChart`.
2. An `experimental.helm.sh` `RenderHelmChart` is rendered: each embedded
   chart is expanded with `helm template` and the object is replaced with the
   rendered objects.
"""

import base64
import logging
from pathlib import Path
import tempfile
from typing import Any

import aiofiles

from .context import trace_context
from .exceptions import InputException
from .helm import Helm, lookup_auth_secret
from .helm_specs import (
    EXPERIMENTAL_HELM_DOMAIN,
    KPT_DOMAIN,
    RENDER_HELM_CHART_KIND,
    SOURCED_API_VERSION,
    HelmChart,
    KptHelmSpec,
)
from .resource_list import ResourceList, is_gvk, set_annotation, set_nested_field

__all__ = [
    "source_chart",
    "run",
]

_LOGGER = logging.getLogger(__name__)

ANNOTATION_SHA_SUM = "experimental.helm.sh/chart-sum"


async def source_chart(
    helm: Helm,
    chart: HelmChart,
    username: str | None = None,
    password: str | None = None,
) -> tuple[bytes, str]:
    """Pull a chart, returning the tarball content and its sha256 sum."""
    with tempfile.TemporaryDirectory(prefix="chart-") as tmp:
        tarball, chart_sum = await helm.pull_chart(
            chart.args, Path(tmp), username, password
        )
        async with aiofiles.open(Path(tmp) / tarball, mode="rb") as chart_file:
            content = await chart_file.read()
    return content, chart_sum


async def _source(
    helm: Helm, obj: dict[str, Any], resource_list: ResourceList
) -> dict[str, Any]:
    spec = KptHelmSpec.parse_doc(obj)
    for idx, chart in enumerate(spec.charts):
        username = password = None
        if chart.args.auth is not None:
            username, password = lookup_auth_secret(
                chart.args.auth, resource_list.items
            )
        with trace_context(f"Source chart {chart.args.name}"):
            content, chart_sum = await source_chart(helm, chart, username, password)
        chart.chart = base64.b64encode(content).decode("ascii")
        annotation = ANNOTATION_SHA_SUM
        if idx > 0:
            annotation = f"{ANNOTATION_SHA_SUM}.{idx}"
        set_annotation(obj, annotation, f"sha256:{chart_sum}")
    obj["apiVersion"] = SOURCED_API_VERSION
    set_nested_field(obj, spec.charts_doc(), "helmCharts")
    return obj


async def _render(helm: Helm, obj: dict[str, Any]) -> list[dict[str, Any]]:
    spec = KptHelmSpec.parse_doc(obj)
    for idx, chart in enumerate(spec.charts):
        if not chart.options.release_name:
            raise InputException(
                f"invalid chart spec {spec.name}: releaseName required, index {idx}"
            )
    outputs: list[dict[str, Any]] = []
    for chart in spec.charts:
        with trace_context(f"Render chart {chart.args.name}"):
            objects = await helm.template(chart)
        _LOGGER.debug("Rendered %d objects from %s", len(objects), chart.args.name)
        outputs.extend(objects)
    return outputs


async def run(resource_list: ResourceList, helm: Helm) -> None:
    """Run the render-helm-chart function over the resource list."""
    outputs: list[dict[str, Any]] = []
    for obj in resource_list.items:
        if is_gvk(obj, EXPERIMENTAL_HELM_DOMAIN, RENDER_HELM_CHART_KIND):
            outputs.extend(await _render(helm, obj))
        elif is_gvk(obj, KPT_DOMAIN, RENDER_HELM_CHART_KIND):
            outputs.append(await _source(helm, obj, resource_list))
        else:
            outputs.append(obj)
    resource_list.items = outputs

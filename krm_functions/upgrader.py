"""The helm-upgrader function.

Looks up the versions available for the charts referenced by `RenderHelmChart`
objects and ArgoCD `Application` objects, and selects the highest version that
satisfies the constraint in the `experimental.helm.sh/upgrade-constraint`
annotation (any version when not set). Depending on the `UpgraderConfig` an
available upgrade is annotated on the object, applied to the object, or both.
"""

import dataclasses
from dataclasses import dataclass
import json
import logging
from pathlib import Path
import tempfile
from typing import Any

from . import semver
from .config import UpgraderConfig
from .context import trace_context
from .helm import Helm, lookup_auth_secret
from .helm_specs import (
    APPLICATION_KIND,
    ARGOCD_DOMAIN,
    EXPERIMENTAL_HELM_DOMAIN,
    KPT_DOMAIN,
    RENDER_HELM_CHART_KIND,
    ArgoCDApplication,
    HelmChartArgs,
    KptHelmSpec,
)
from .resource_list import (
    ResourceList,
    config_object_result,
    general_result,
    get_annotation,
    is_gvk,
    set_annotation,
    set_nested_field,
)

__all__ = [
    "UpgradeStats",
    "evaluate_chart_version",
    "handle_new_version",
    "run",
]

_LOGGER = logging.getLogger(__name__)

ANNOTATION_URL = "experimental.helm.sh/"
ANNOTATION_UPGRADE_CONSTRAINT = ANNOTATION_URL + "upgrade-constraint"
ANNOTATION_UPGRADE_AVAILABLE = ANNOTATION_URL + "upgrade-available"
ANNOTATION_SHA_SUM = ANNOTATION_URL + "chart-sum"
ANNOTATION_UPGRADE_SHA_SUM = ANNOTATION_URL + "upgrade-chart-sum"


@dataclass
class UpgradeStats:
    """Counts of upgrades seen during a single run."""

    upgrades_done: int = 0
    upgrades_available: int = 0

    @property
    def upgrades_skipped(self) -> int:
        return self.upgrades_available - self.upgrades_done

    def summary(self) -> str:
        """Return the counts as a JSON object."""
        return json.dumps(
            {
                "upgradesDone": self.upgrades_done,
                "upgradesAvailable": self.upgrades_available,
                "upgradesSkipped": self.upgrades_skipped,
            }
        )


@dataclass
class _Credentials:
    username: str | None = None
    password: str | None = None


def _credentials(args: HelmChartArgs, resource_list: ResourceList) -> _Credentials:
    if args.auth is None:
        return _Credentials()
    username, password = lookup_auth_secret(args.auth, resource_list.items)
    return _Credentials(username=username, password=password)


def _indexed(annotation: str, idx: int | None) -> str:
    if idx is None:
        return annotation
    return f"{annotation}.{idx}"


async def _chart_sum(helm: Helm, args: HelmChartArgs, creds: _Credentials) -> str:
    with tempfile.TemporaryDirectory() as tmp:
        _, chart_sum = await helm.pull_chart(
            args, Path(tmp), creds.username, creds.password
        )
    return f"sha256:{chart_sum}"


async def evaluate_chart_version(
    helm: Helm,
    chart: HelmChartArgs,
    constraint: str,
    creds: _Credentials | None = None,
) -> HelmChartArgs:
    """Return the chart args with the version of the best possible upgrade."""
    creds = creds or _Credentials()
    versions = await helm.versions(chart, creds.username, creds.password)
    _LOGGER.debug("Found %d versions of chart %s", len(versions), chart.name)
    new_version = semver.upgrade(versions, constraint or semver.DEFAULT_CONSTRAINT)
    return dataclasses.replace(chart, version=new_version)


async def handle_new_version(
    helm: Helm,
    new_chart: HelmChartArgs,
    current: HelmChartArgs,
    obj: dict[str, Any],
    idx: int | None,
    constraint: str,
    config: UpgraderConfig,
    stats: UpgradeStats,
    creds: _Credentials | None = None,
) -> tuple[HelmChartArgs, str]:
    """Apply the configured actions for a chart, returning the resulting args.

    The returned message describes the upgrade, it is empty when no upgrade is
    available.
    """
    creds = creds or _Credentials()
    if new_chart.version == current.version:
        if config.annotate_current_sum and not get_annotation(obj, ANNOTATION_SHA_SUM):
            set_annotation(obj, ANNOTATION_SHA_SUM, await _chart_sum(helm, current, creds))
        return current, ""

    stats.upgrades_available += 1
    upgraded = current
    if config.annotate_on_upgrade_available:
        set_annotation(
            obj,
            _indexed(ANNOTATION_UPGRADE_AVAILABLE, idx),
            f"{current.repo}/{current.name}:{new_chart.version}",
        )
    if config.upgrade_on_upgrade_available:
        stats.upgrades_done += 1
        upgraded = dataclasses.replace(current, version=new_chart.version)
    if config.annotate_sum_on_upgrade_available:
        set_annotation(
            obj,
            _indexed(ANNOTATION_UPGRADE_SHA_SUM, idx),
            await _chart_sum(helm, new_chart, creds),
        )
    info = json.dumps(
        {
            "current": current.to_dict(),
            "upgraded": upgraded.to_dict(),
            "constraint": constraint,
        }
    )
    return upgraded, info


async def _upgrade_render_helm_chart(
    helm: Helm,
    obj: dict[str, Any],
    resource_list: ResourceList,
    config: UpgraderConfig,
    stats: UpgradeStats,
) -> None:
    constraint = get_annotation(obj, ANNOTATION_UPGRADE_CONSTRAINT)
    spec = KptHelmSpec.parse_doc(obj)
    for idx, chart in enumerate(spec.charts):
        creds = _credentials(chart.args, resource_list)
        new_chart = await evaluate_chart_version(helm, chart.args, constraint, creds)
        upgraded, info = await handle_new_version(
            helm, new_chart, chart.args, obj, idx, constraint, config, stats, creds
        )
        chart.args = upgraded
        if info:
            resource_list.results.append(config_object_result(info, obj))
    set_nested_field(obj, spec.charts_doc(), "helmCharts")


async def _upgrade_application(
    helm: Helm,
    obj: dict[str, Any],
    resource_list: ResourceList,
    config: UpgraderConfig,
    stats: UpgradeStats,
) -> None:
    constraint = get_annotation(obj, ANNOTATION_UPGRADE_CONSTRAINT)
    app = ArgoCDApplication.parse_doc(obj)
    args = app.to_chart_args()
    new_chart = await evaluate_chart_version(helm, args, constraint)
    upgraded, info = await handle_new_version(
        helm, new_chart, args, obj, None, constraint, config, stats
    )
    if info:
        resource_list.results.append(config_object_result(info, obj))
    set_nested_field(obj, upgraded.version, "spec", "source", "targetRevision")


async def run(
    resource_list: ResourceList,
    helm: Helm,
    config: UpgraderConfig | None = None,
) -> UpgradeStats:
    """Run the helm-upgrader function over the resource list."""
    if config is None:
        config = UpgraderConfig.from_data(resource_list.function_config_data)
    stats = UpgradeStats()
    for obj in resource_list.items:
        if is_gvk(obj, KPT_DOMAIN, RENDER_HELM_CHART_KIND) or is_gvk(
            obj, EXPERIMENTAL_HELM_DOMAIN, RENDER_HELM_CHART_KIND
        ):
            with trace_context(f"Upgrade {RENDER_HELM_CHART_KIND}"):
                await _upgrade_render_helm_chart(
                    helm, obj, resource_list, config, stats
                )
        elif is_gvk(obj, ARGOCD_DOMAIN, APPLICATION_KIND):
            with trace_context(f"Upgrade {APPLICATION_KIND}"):
                await _upgrade_application(helm, obj, resource_list, config, stats)
    resource_list.results.append(general_result(stats.summary()))
    _LOGGER.info(
        "Upgrades available: %d, upgrades done: %d",
        stats.upgrades_available,
        stats.upgrades_done,
    )
    return stats

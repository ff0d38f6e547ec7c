"""Representation of the objects that reference Helm charts.

Two kinds of objects are supported:
- `RenderHelmChart` function configs with a list of `helmCharts`, either
  referencing a chart repository (`fn.kpt.dev`) or carrying the sourced chart
  tarball (`experimental.helm.sh`).
- ArgoCD `Application` objects with a Helm chart source.
"""

from dataclasses import dataclass, field
import logging
from typing import Any, Optional

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import InvalidFieldValue, MissingField

from .exceptions import InputException

__all__ = [
    "AuthSecretRef",
    "HelmChartArgs",
    "HelmValues",
    "HelmTemplateOptions",
    "HelmChart",
    "KptHelmSpec",
    "ArgoCDApplication",
]

_LOGGER = logging.getLogger(__name__)

KPT_DOMAIN = "fn.kpt.dev"
EXPERIMENTAL_HELM_DOMAIN = "experimental.helm.sh"
ARGOCD_DOMAIN = "argoproj.io"
RENDER_HELM_CHART_KIND = "RenderHelmChart"
APPLICATION_KIND = "Application"
SOURCED_API_VERSION = f"{EXPERIMENTAL_HELM_DOMAIN}/v1alpha1"


@dataclass
class BaseSpec(DataClassDictMixin):
    """Base class for chart spec objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class AuthSecretRef(BaseSpec):
    """A reference to a Secret with `username` and `password` keys."""

    name: str
    """The name of the Secret."""

    namespace: Optional[str] = None
    """The namespace of the Secret."""

    kind: str = "Secret"
    """The kind of the referenced object."""


@dataclass
class HelmChartArgs(BaseSpec):
    """Identifies a chart in a chart repository."""

    name: str
    """The name of the chart."""

    version: str = ""
    """The chart version or an empty string for the latest version."""

    repo: str = ""
    """The repository URL, `oci://` for OCI registries."""

    auth: Optional[AuthSecretRef] = None
    """Credentials for the repository."""

    @property
    def is_oci(self) -> bool:
        """Return True if the chart is stored in an OCI registry."""
        return self.repo.startswith("oci://")

    @property
    def chart_ref(self) -> str:
        """Return the chart reference used with `helm pull`."""
        if self.is_oci:
            return f"{self.repo.rstrip('/')}/{self.name}"
        return self.name


@dataclass
class HelmValues(BaseSpec):
    """Values used when rendering a chart."""

    values_inline: dict[str, Any] = field(
        metadata=field_options(alias="valuesInline"), default_factory=dict
    )
    """Values embedded in the chart entry."""

    values_files: list[str] = field(
        metadata=field_options(alias="valuesFiles"), default_factory=list
    )
    """Values files relative to the chart directory."""


@dataclass
class HelmTemplateOptions(BaseSpec):
    """Options passed to `helm template`."""

    release_name: str = field(metadata=field_options(alias="releaseName"), default="")
    namespace: str = ""
    name_template: str = field(metadata=field_options(alias="nameTemplate"), default="")
    api_versions: list[str] = field(
        metadata=field_options(alias="apiVersions"), default_factory=list
    )
    description: str = ""
    include_crds: bool = field(metadata=field_options(alias="includeCRDs"), default=False)
    skip_tests: bool = field(metadata=field_options(alias="skipTests"), default=False)
    values: HelmValues = field(default_factory=HelmValues)


@dataclass
class HelmChart(BaseSpec):
    """A chart entry of a RenderHelmChart object."""

    args: HelmChartArgs = field(metadata=field_options(alias="chartArgs"))
    """Identifies the chart."""

    options: HelmTemplateOptions = field(
        metadata=field_options(alias="templateOptions"),
        default_factory=HelmTemplateOptions,
    )
    """How to render the chart."""

    chart: Optional[str] = None
    """The base64 encoded chart tarball once sourced."""


def _parse(cls: type[BaseSpec], doc: Any, what: str) -> Any:
    if not isinstance(doc, dict):
        raise InputException(f"Invalid {what}, expected a mapping: {doc!r}")
    try:
        return cls.from_dict(doc)
    except (MissingField, InvalidFieldValue) as err:
        raise InputException(f"Invalid {what}: {err}") from err


@dataclass
class KptHelmSpec:
    """The charts of a RenderHelmChart object."""

    name: str
    """The name of the RenderHelmChart object."""

    charts: list[HelmChart]
    """Charts in document order."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "KptHelmSpec":
        """Parse the `helmCharts` of a RenderHelmChart object."""
        if doc.get("kind") != RENDER_HELM_CHART_KIND:
            raise InputException(f"Invalid object expected {RENDER_HELM_CHART_KIND}")
        name = (doc.get("metadata") or {}).get("name", "")
        charts = doc.get("helmCharts")
        if not isinstance(charts, list):
            raise InputException(f"helmCharts key not found in {name}")
        return cls(
            name=name,
            charts=[
                _parse(HelmChart, chart, f"helmCharts[{idx}] in {name}")
                for idx, chart in enumerate(charts)
            ],
        )

    def charts_doc(self) -> list[dict[str, Any]]:
        """Return the serialized `helmCharts` list."""
        return [chart.to_dict() for chart in self.charts]


@dataclass
class ArgoCDHelmSource(BaseSpec):
    """The `helm` section of an ArgoCD application source."""

    release_name: Optional[str] = field(
        metadata=field_options(alias="releaseName"), default=None
    )
    values_object: Optional[dict[str, Any]] = field(
        metadata=field_options(alias="valuesObject"), default=None
    )


@dataclass
class ArgoCDSource(BaseSpec):
    """The `spec.source` of an ArgoCD application."""

    repo_url: str = field(metadata=field_options(alias="repoURL"))
    chart: str = ""
    target_revision: str = field(
        metadata=field_options(alias="targetRevision"), default=""
    )
    helm: Optional[ArgoCDHelmSource] = None


@dataclass
class ArgoCDApplication:
    """An ArgoCD Application with a Helm chart source."""

    name: str
    source: ArgoCDSource

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ArgoCDApplication":
        """Parse the chart source of an ArgoCD Application."""
        name = (doc.get("metadata") or {}).get("name", "")
        source = (doc.get("spec") or {}).get("source")
        if not source:
            raise InputException(f"Invalid Application {name} missing spec.source")
        parsed: ArgoCDSource = _parse(ArgoCDSource, source, f"Application {name}")
        if not parsed.chart:
            raise InputException(
                f"Invalid Application {name} spec.source is not a helm chart"
            )
        return cls(name=name, source=parsed)

    def to_chart_args(self) -> HelmChartArgs:
        """Return the chart arguments of the application source."""
        return HelmChartArgs(
            name=self.source.chart,
            version=self.source.target_revision,
            repo=self.source.repo_url,
        )

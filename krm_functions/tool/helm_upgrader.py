"""krm-functions helm-upgrader action."""

from argparse import (
    ArgumentParser,
    BooleanOptionalAction,
    _SubParsersAction as SubParsersAction,
)
import dataclasses
import logging
from typing import cast

from krm_functions import upgrader
from krm_functions.config import UpgraderConfig
from krm_functions.helm import helm_context
from krm_functions.resource_list import ResourceList

from .common import add_io_flags, run_function

_LOGGER = logging.getLogger(__name__)


class HelmUpgraderAction:
    """Look up and apply chart upgrades."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "helm-upgrader",
                help="Check charts for upgrades",
                description="""Looks up available versions of the charts in
                    RenderHelmChart and ArgoCD Application objects and selects
                    the highest version satisfying the upgrade constraint
                    annotation. Flags override the function config.""",
            ),
        )
        add_io_flags(args)
        args.add_argument(
            "--upgrade",
            default=None,
            action=BooleanOptionalAction,
            help="Apply available upgrades to the chart version",
        )
        args.add_argument(
            "--annotate",
            default=None,
            action=BooleanOptionalAction,
            help="Annotate objects with available upgrades",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        input_file: str,
        output_file: str,
        upgrade: bool | None,
        annotate: bool | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""

        async def function(resource_list: ResourceList) -> None:
            config = UpgraderConfig.from_data(resource_list.function_config_data)
            if upgrade is not None:
                config = dataclasses.replace(
                    config, upgrade_on_upgrade_available=upgrade
                )
            if annotate is not None:
                config = dataclasses.replace(
                    config, annotate_on_upgrade_available=annotate
                )
            async with helm_context() as helm:
                await upgrader.run(resource_list, helm, config)

        await run_function(input_file, output_file, function)

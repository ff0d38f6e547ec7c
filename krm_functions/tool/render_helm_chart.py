"""krm-functions render-helm-chart action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast

from krm_functions import render
from krm_functions.helm import helm_context
from krm_functions.resource_list import ResourceList

from .common import add_io_flags, run_function

_LOGGER = logging.getLogger(__name__)


class RenderHelmChartAction:
    """Source and render Helm charts."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "render-helm-chart",
                help="Source and render RenderHelmChart objects",
                description="""Pulls the charts of fn.kpt.dev RenderHelmChart
                    objects and embeds them, and renders embedded charts of
                    experimental.helm.sh RenderHelmChart objects with helm
                    template.""",
            ),
        )
        add_io_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        input_file: str,
        output_file: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""

        async def function(resource_list: ResourceList) -> None:
            async with helm_context() as helm:
                await render.run(resource_list, helm)

        await run_function(input_file, output_file, function)

"""krm-functions source-packages action."""

from argparse import (
    ArgumentParser,
    BooleanOptionalAction,
    _SubParsersAction as SubParsersAction,
)
import logging
import pathlib
from typing import cast

from krm_functions import source_packages
from krm_functions.config import SourcePackagesConfig
from krm_functions.fetch import GitFetcher
from krm_functions.fleet import FleetSpec, resolve_fleet
from krm_functions.resource_list import ResourceList

from .common import add_io_flags, read_resource_list, run_function
from .format import FORMATTERS, PrintFormatter

_LOGGER = logging.getLogger(__name__)

LIST_COLUMNS = ["path", "upstream", "ref", "sourcePath", "metadata"]


class SourcePackagesAction:
    """Resolve a Fleet and fetch its packages."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "source-packages",
                help="Resolve and fetch the packages of a Fleet",
                description="""Resolves the package tree of a Fleet, either
                    the function config or a Fleet object in the input, and
                    adds the objects of each package to the output.""",
            ),
        )
        add_io_flags(args)
        args.add_argument(
            "--fetch",
            default=True,
            action=BooleanOptionalAction,
            help="Fetch package content from the upstreams",
        )
        args.add_argument(
            "--annotate-metadata",
            default=False,
            action=BooleanOptionalAction,
            help="Set the merged package metadata as annotations on fetched objects",
        )
        args.add_argument(
            "--cache-dir",
            type=pathlib.Path,
            default=None,
            help="Directory for cloned upstreams",
        )
        args.add_argument(
            "--list",
            dest="list_packages",
            default=False,
            action=BooleanOptionalAction,
            help="Print the resolved packages instead of a ResourceList",
        )
        args.add_argument(
            "--output",
            "-o",
            choices=sorted(FORMATTERS),
            default="table",
            help="Output format of --list",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        input_file: str,
        output_file: str,
        fetch: bool,
        annotate_metadata: bool,
        cache_dir: pathlib.Path | None,
        list_packages: bool,
        output: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        if list_packages:
            resource_list = read_resource_list(input_file)
            fleet = FleetSpec.parse_doc(source_packages.find_fleet(resource_list))
            results = [package.to_dict() for package in resolve_fleet(fleet)]
            formatter = (
                PrintFormatter(LIST_COLUMNS)
                if output == "table"
                else FORMATTERS[output]()
            )
            with open(output_file, "w") as file:
                formatter.print(results, file=file)
            return

        config = SourcePackagesConfig(fetch=fetch, annotate_metadata=annotate_metadata)

        async def function(resource_list: ResourceList) -> None:
            fetcher = GitFetcher(cache_dir) if config.fetch else None
            await source_packages.run(resource_list, fetcher, config)

        await run_function(input_file, output_file, function)

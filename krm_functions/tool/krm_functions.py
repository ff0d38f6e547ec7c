"""Command line tool for running krm-functions over a ResourceList."""

import argparse
import asyncio
import logging
import sys
import traceback
from typing import Any

import yaml

from krm_functions.exceptions import KrmException
from . import helm_upgrader, render_helm_chart, source_packages

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for running KRM functions.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    render_helm_chart.RenderHelmChartAction.register(subparsers)
    helm_upgrader.HelmUpgraderAction.register(subparsers)
    source_packages.SourcePackagesAction.register(subparsers)
    return parser


def main() -> None:
    """krm-functions command line tool main entry point."""

    def str_presenter(dumper: yaml.Dumper, data: Any) -> Any:
        """Represent multi-line yaml strings as you'd expect.

        See https://github.com/yaml/pyyaml/issues/240
        """
        return dumper.represent_scalar(
            "tag:yaml.org,2002:str", data, style="|" if data.count("\n") > 0 else None
        )

    yaml.add_representer(str, str_presenter)

    parser = _make_parser()
    args = parser.parse_args()

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except KrmException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("krm-functions error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

"""Shared flags and input/output handling for function actions."""

from argparse import ArgumentParser
from collections.abc import Awaitable, Callable
import copy
import logging

from krm_functions.exceptions import KrmException
from krm_functions.resource_list import ResourceList, SEVERITY_ERROR, general_result

_LOGGER = logging.getLogger(__name__)


def add_io_flags(args: ArgumentParser) -> None:
    """Add flags for the function input and output."""
    args.add_argument(
        "--input-file",
        type=str,
        default="/dev/stdin",
        help="File with the input ResourceList, or a stream of objects",
    )
    args.add_argument(
        "--output-file",
        type=str,
        default="/dev/stdout",
        help="Output file for the resulting ResourceList",
    )


def read_resource_list(input_file: str) -> ResourceList:
    """Read the function input."""
    with open(input_file) as file:
        return ResourceList.parse_yaml(file.read())


def write_resource_list(resource_list: ResourceList, output_file: str) -> None:
    """Write the function output."""
    with open(output_file, "w") as file:
        file.write(resource_list.yaml())


async def run_function(
    input_file: str,
    output_file: str,
    function: Callable[[ResourceList], Awaitable[None]],
) -> None:
    """Run a function over the input and write the output.

    When the function fails, the input items are written unmodified together
    with an error result and the error is raised.
    """
    resource_list = read_resource_list(input_file)
    original_items = copy.deepcopy(resource_list.items)
    try:
        await function(resource_list)
    except KrmException as err:
        resource_list.items = original_items
        resource_list.results.append(general_result(str(err), SEVERITY_ERROR))
        write_resource_list(resource_list, output_file)
        raise
    write_resource_list(resource_list, output_file)

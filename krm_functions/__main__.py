"""Run the krm-functions command line tool."""

from krm_functions.tool.krm_functions import main

main()

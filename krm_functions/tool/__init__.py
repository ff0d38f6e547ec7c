"""Command line tool for running krm-functions.

Note this is exposed for CLI documentation, not to be used as a library.
"""

"""
.. include:: ../README.md
"""

__all__ = [
    "fleet",
    "helm",
    "helm_specs",
    "semver",
    "resource_list",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]

"""Library for selecting a chart version that satisfies a semver constraint.

Constraints use the syntax understood by Helm:

- Comparisons: `=1.2.3`, `!=1.2.3`, `>1.2.3`, `>=1.2`, `<2`, `<=1.4.x`
- Wildcards: `*`, `1.x`, `1.2.*`, or a partial version such as `1.2`
- Caret ranges: `^1.2.3` is `>=1.2.3 <2.0.0`, `^0.2.3` is `>=0.2.3 <0.3.0`
- Tilde ranges: `~1.2.3` is `>=1.2.3 <1.3.0`
- Hyphen ranges: `1.2 - 1.4.5` is `>=1.2.0 <=1.4.5`
- Comparisons separated by `,` or spaces must all match, alternatives are
  separated by `||`.

Pre-release versions only match an alternative that itself names a
pre-release version.

```python
from krm_functions import semver

semver.upgrade(["1.0.0", "1.1.0", "2.0.0"], "^1.0")  # "1.1.0"
```
"""

from dataclasses import dataclass
import logging
import operator
import re
from collections.abc import Callable, Iterable

from packaging.version import InvalidVersion, Version

from .exceptions import UpgradeException

__all__ = [
    "Constraint",
    "parse_constraint",
    "upgrade",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_CONSTRAINT = "*"

_WILDCARDS = ("x", "X", "*")
_PARTIAL = re.compile(
    r"^v?(?P<major>\d+|[xX*])"
    r"(?:\.(?P<minor>\d+|[xX*]))?"
    r"(?:\.(?P<patch>\d+|[xX*]))?"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?"
    r"(?:\+[0-9A-Za-z.-]+)?$"
)
_HYPHEN_RANGE = re.compile(r"(?P<low>[^\s,]+)\s+-\s+(?P<high>[^\s,]+)")
_COMPARATOR = re.compile(
    r"\s*(?P<op>\^|~>|~|>=|<=|!=|==|=|>|<)?\s*(?P<version>[^\s,<>=!~^][^\s,]*)"
    r"[\s,]*"
)

_OPERATORS: dict[str, Callable[[Version, Version], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}


def parse_version(value: str) -> Version | None:
    """Parse a version string, returning None if it is not a valid version.

    A `-` suffix always marks a pre-release. A numeric suffix such as `1.0.0-1`
    would otherwise read as a post-release, so it sorts as a development
    release below any named pre-release of the same version.
    """
    if not (match := _PARTIAL.match(value)) or any(
        match.group(name) in _WILDCARDS for name in ("major", "minor", "patch")
    ):
        return None
    try:
        version = Version(value)
    except InvalidVersion:
        return None
    if (pre := match.group("pre")) is None or version.is_prerelease:
        return version
    if not pre.isdigit():
        return None
    return Version(f"{version.base_version}.dev{pre}")


@dataclass(frozen=True)
class _Partial:
    """A possibly incomplete version like `1.2` or `1.x`."""

    parts: tuple[int, ...]
    pre: str | None

    @classmethod
    def parse(cls, value: str) -> "_Partial":
        if not (match := _PARTIAL.match(value)):
            raise UpgradeException(f"Invalid version '{value}' in constraint")
        parts: list[int] = []
        for name in ("major", "minor", "patch"):
            part = match.group(name)
            if part is None or part in _WILDCARDS:
                break
            parts.append(int(part))
        return cls(parts=tuple(parts), pre=match.group("pre"))

    @property
    def complete(self) -> bool:
        return len(self.parts) == 3

    @property
    def lower(self) -> Version:
        padded = list(self.parts) + [0] * (3 - len(self.parts))
        value = ".".join(str(p) for p in padded)
        if self.pre and self.complete:
            value = f"{value}-{self.pre}"
        if (version := parse_version(value)) is None:
            raise UpgradeException(f"Invalid version '{value}' in constraint")
        return version

    def bump(self, index: int) -> Version:
        """Return the version after incrementing the part at the index."""
        padded = list(self.parts) + [0] * (3 - len(self.parts))
        bumped = padded[:index] + [padded[index] + 1] + [0] * (2 - index)
        return Version(".".join(str(p) for p in bumped))

    @property
    def upper(self) -> Version:
        """Return the first version outside the wildcard range."""
        return self.bump(len(self.parts) - 1)


def _comparators(op: str, value: str) -> list[tuple[str, Version]]:
    """Translate a single comparison into simple bounds."""
    partial = _Partial.parse(value)
    if not partial.parts:
        if op in ("", "=", "==", ">=", "^", "~", "~>"):
            return []
        raise UpgradeException(f"Invalid wildcard comparison '{op}{value}'")
    if op in ("", "=", "=="):
        if partial.complete:
            return [("==", partial.lower)]
        return [(">=", partial.lower), ("<", partial.upper)]
    if op == "!=":
        return [("!=", partial.lower)]
    if op == ">":
        if partial.complete:
            return [(">", partial.lower)]
        return [(">=", partial.upper)]
    if op == ">=":
        return [(">=", partial.lower)]
    if op == "<":
        return [("<", partial.lower)]
    if op == "<=":
        if partial.complete:
            return [("<=", partial.lower)]
        return [("<", partial.upper)]
    if op == "^":
        major, *rest = partial.parts
        if major > 0 or not rest:
            upper = partial.bump(0)
        elif rest[0] > 0 or len(rest) == 1:
            upper = partial.bump(1)
        else:
            upper = partial.bump(2)
        return [(">=", partial.lower), ("<", upper)]
    # Tilde
    if len(partial.parts) == 1:
        return [(">=", partial.lower), ("<", partial.bump(0))]
    return [(">=", partial.lower), ("<", partial.bump(1))]


@dataclass(frozen=True)
class _Alternative:
    """Comparisons that must all match."""

    comparators: tuple[tuple[str, Version], ...]
    allow_prerelease: bool

    def matches(self, version: Version) -> bool:
        if version.is_prerelease and not self.allow_prerelease:
            return False
        return all(_OPERATORS[op](version, bound) for op, bound in self.comparators)


@dataclass(frozen=True)
class Constraint:
    """A parsed semver constraint."""

    text: str
    alternatives: tuple[_Alternative, ...]

    def matches(self, version: str | Version) -> bool:
        """Return True if the version satisfies the constraint."""
        if isinstance(version, str):
            if (parsed := parse_version(version)) is None:
                return False
            version = parsed
        return any(alt.matches(version) for alt in self.alternatives)


def parse_constraint(text: str) -> Constraint:
    """Parse a constraint string, an empty string matches any release."""
    text = text.strip() or DEFAULT_CONSTRAINT
    alternatives = []
    for alternative in text.split("||"):
        alternative = _HYPHEN_RANGE.sub(r">=\g<low> <=\g<high>", alternative.strip())
        if not alternative:
            raise UpgradeException(f"Invalid constraint '{text}': empty alternative")
        comparators: list[tuple[str, Version]] = []
        allow_prerelease = False
        pos = 0
        while pos < len(alternative):
            if not (match := _COMPARATOR.match(alternative, pos)):
                raise UpgradeException(
                    f"Invalid constraint '{text}': unexpected '{alternative[pos:]}'"
                )
            op, value = match.group("op") or "", match.group("version")
            comparators.extend(_comparators(op, value))
            if _Partial.parse(value).pre:
                allow_prerelease = True
            pos = match.end()
        alternatives.append(
            _Alternative(
                comparators=tuple(comparators), allow_prerelease=allow_prerelease
            )
        )
    return Constraint(text=text, alternatives=tuple(alternatives))


def upgrade(versions: Iterable[str], constraint: str = DEFAULT_CONSTRAINT) -> str:
    """Return the highest of the versions that satisfies the constraint.

    Version strings that are not valid versions are ignored.
    """
    parsed_constraint = parse_constraint(constraint)
    best: tuple[Version, str] | None = None
    for value in versions:
        if (version := parse_version(value)) is None:
            _LOGGER.debug("Ignoring invalid version %s", value)
            continue
        if not parsed_constraint.matches(version):
            continue
        if best is None or version > best[0]:
            best = (version, value)
    if best is None:
        raise UpgradeException(
            f"No version satisfies constraint '{parsed_constraint.text}'"
        )
    _LOGGER.debug("Selected version %s for constraint %s", best[1], constraint)
    return best[1]

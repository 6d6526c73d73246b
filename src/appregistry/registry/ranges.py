"""Semantic version range parsing and matching.

Supports the range grammar used by npm-style package managers:

    1.2.3  =1.2.3  >1.2.3  >=1.2.3  <2.0.0  <=1.9.9
    ^1.2.3  ~1.2.3  ~>1.2.3  1.x  1.2.*  *  ""
    1.2.3 - 2.3.4            (hyphen range, inclusive)
    >=1.0.0 <2.0.0           (intersection)
    ^1.0.0 || ^2.0.0         (union)

Prerelease versions only satisfy a comparator set when one of its
comparators carries a prerelease on the same major.minor.patch tuple, so
"^1.0.0" never selects "2.0.0-beta.1" or "1.1.0-rc.1".
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from appregistry.registry.version import SemVer, compare_precedence, parse_version

if TYPE_CHECKING:
    from collections.abc import Iterable

_NUM_OR_X = r"0|[1-9]\d*|[xX*]"
_PRE = r"[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*"

PARTIAL_PATTERN = re.compile(
    rf"^v?(?P<major>{_NUM_OR_X})"
    rf"(?:\.(?P<minor>{_NUM_OR_X})"
    rf"(?:\.(?P<patch>{_NUM_OR_X})"
    rf"(?:-(?P<prerelease>{_PRE}))?"
    rf"(?:\+(?P<build>{_PRE}))?)?)?$"
)
_COMPARATOR_PATTERN = re.compile(r"^(?P<op><=|>=|<|>|=|\^|~>|~)?(?P<partial>\S+)$")
_HYPHEN_PATTERN = re.compile(r"^\s*(?P<low>\S+)\s+-\s+(?P<high>\S+)\s*$")
_OP_SPACE_PATTERN = re.compile(r"(<=|>=|<|>|=|\^|~>|~)\s+")

_OPERATORS = {
    "<": lambda c: c < 0,
    "<=": lambda c: c <= 0,
    ">": lambda c: c > 0,
    ">=": lambda c: c >= 0,
    "=": lambda c: c == 0,
}


@dataclass(frozen=True)
class Comparator:
    """Single `<op><version>` constraint."""

    operator: str
    version: SemVer

    def test(self, version: SemVer) -> bool:
        return _OPERATORS[self.operator](compare_precedence(version, self.version))

    def __str__(self) -> str:
        return f"{self.operator}{self.version.format()}"


@dataclass(frozen=True)
class _Partial:
    major: int | None
    minor: int | None
    patch: int | None
    prerelease: tuple[int | str, ...] = ()


def _v(major: int, minor: int, patch: int, prerelease: tuple[int | str, ...] = ()) -> SemVer:
    return SemVer(major=major, minor=minor, patch=patch, prerelease=prerelease)


def _ceiling(major: int, minor: int, patch: int) -> Comparator:
    # "-0" keeps prereleases of the next release out of the range
    return Comparator("<", _v(major, minor, patch, (0,)))


_ANY: tuple[Comparator, ...] = ()
_NEVER: tuple[Comparator, ...] = (Comparator("<", _v(0, 0, 0, (0,))),)


def _num(part: str | None) -> int | None:
    if part is None or part in {"x", "X", "*"}:
        return None
    return int(part)


def _parse_partial(text: str) -> _Partial:
    match = PARTIAL_PATTERN.match(text)
    if not match:
        msg = f"Invalid version in range: {text!r}"
        raise ValueError(msg)
    major = _num(match.group("major"))
    minor = _num(match.group("minor")) if major is not None else None
    patch = _num(match.group("patch")) if minor is not None else None
    prerelease: tuple[int | str, ...] = ()
    if patch is not None and match.group("prerelease"):
        prerelease = tuple(
            int(p) if p.isdigit() else p for p in match.group("prerelease").split(".")
        )
    return _Partial(major, minor, patch, prerelease)


def _caret(p: _Partial) -> tuple[Comparator, ...]:
    if p.major is None:
        return _ANY
    if p.minor is None:
        return (Comparator(">=", _v(p.major, 0, 0)), _ceiling(p.major + 1, 0, 0))
    if p.patch is None:
        if p.major == 0:
            return (Comparator(">=", _v(0, p.minor, 0)), _ceiling(0, p.minor + 1, 0))
        return (Comparator(">=", _v(p.major, p.minor, 0)), _ceiling(p.major + 1, 0, 0))
    low = Comparator(">=", _v(p.major, p.minor, p.patch, p.prerelease))
    if p.major > 0:
        return (low, _ceiling(p.major + 1, 0, 0))
    if p.minor > 0:
        return (low, _ceiling(0, p.minor + 1, 0))
    return (low, _ceiling(0, 0, p.patch + 1))


def _tilde(p: _Partial) -> tuple[Comparator, ...]:
    if p.major is None:
        return _ANY
    if p.minor is None:
        return (Comparator(">=", _v(p.major, 0, 0)), _ceiling(p.major + 1, 0, 0))
    low = Comparator(">=", _v(p.major, p.minor, p.patch or 0, p.prerelease))
    return (low, _ceiling(p.major, p.minor + 1, 0))


def _primitive(op: str, p: _Partial) -> tuple[Comparator, ...]:
    if p.major is None:
        return _NEVER if op in {"<", ">"} else _ANY

    if p.minor is not None and p.patch is not None:
        return (Comparator(op or "=", _v(p.major, p.minor, p.patch, p.prerelease)),)

    # X-range: fill the wildcard positions according to the operator
    if op in {"", "="}:
        if p.minor is None:
            return (Comparator(">=", _v(p.major, 0, 0)), _ceiling(p.major + 1, 0, 0))
        return (Comparator(">=", _v(p.major, p.minor, 0)), _ceiling(p.major, p.minor + 1, 0))
    if op == ">":
        if p.minor is None:
            return (Comparator(">=", _v(p.major + 1, 0, 0)),)
        return (Comparator(">=", _v(p.major, p.minor + 1, 0)),)
    if op == "<=":
        if p.minor is None:
            return (_ceiling(p.major + 1, 0, 0),)
        return (_ceiling(p.major, p.minor + 1, 0),)
    if op == "<":
        return (_ceiling(p.major, p.minor or 0, 0),)
    return (Comparator(">=", _v(p.major, p.minor or 0, 0)),)


def _hyphen(low: _Partial, high: _Partial) -> tuple[Comparator, ...]:
    comparators: list[Comparator] = []
    if low.major is not None:
        comparators.append(
            Comparator(">=", _v(low.major, low.minor or 0, low.patch or 0, low.prerelease))
        )
    if high.major is not None:
        if high.minor is None:
            comparators.append(_ceiling(high.major + 1, 0, 0))
        elif high.patch is None:
            comparators.append(_ceiling(high.major, high.minor + 1, 0))
        else:
            comparators.append(
                Comparator("<=", _v(high.major, high.minor, high.patch, high.prerelease))
            )
    return tuple(comparators)


def _parse_comparator_set(text: str) -> tuple[Comparator, ...]:
    hyphen = _HYPHEN_PATTERN.match(text)
    if hyphen:
        return _hyphen(
            _parse_partial(hyphen.group("low")), _parse_partial(hyphen.group("high"))
        )

    comparators: list[Comparator] = []
    for token in _OP_SPACE_PATTERN.sub(r"\1", text).split():
        match = _COMPARATOR_PATTERN.match(token)
        if not match:
            msg = f"Invalid comparator: {token!r}"
            raise ValueError(msg)
        op = match.group("op") or ""
        partial = _parse_partial(match.group("partial"))
        if op == "^":
            comparators.extend(_caret(partial))
        elif op in {"~", "~>"}:
            comparators.extend(_tilde(partial))
        else:
            comparators.extend(_primitive(op, partial))
    return tuple(comparators)


@dataclass(frozen=True)
class VersionRange:
    """Union of comparator sets. An empty comparator set matches any release."""

    raw: str
    comparator_sets: tuple[tuple[Comparator, ...], ...]

    def __str__(self) -> str:
        return self.raw

    def satisfied_by(self, version: SemVer) -> bool:
        for comparators in self.comparator_sets:
            if not all(c.test(version) for c in comparators):
                continue
            if not version.is_prerelease:
                return True
            if any(
                c.version.is_prerelease and c.version.release == version.release
                for c in comparators
            ):
                return True
        return False


@functools.lru_cache(maxsize=1024)
def parse_range(range_str: str) -> VersionRange:
    """Parse a range expression.

    Raises:
        ValueError: If the expression is not a valid range.
    """
    if not isinstance(range_str, str):
        msg = f"Invalid version range: {range_str!r}"
        raise ValueError(msg)
    try:
        sets = tuple(_parse_comparator_set(part) for part in range_str.split("||"))
    except ValueError as e:
        msg = f"Invalid version range: {range_str!r} ({e})"
        raise ValueError(msg) from e
    return VersionRange(raw=range_str, comparator_sets=sets)


def is_valid_range(range_str: str) -> bool:
    """Check whether a string is a valid range expression."""
    try:
        parse_range(range_str)
    except ValueError:
        return False
    return True


def satisfies(version: str, range_str: str) -> bool:
    """Check whether a version string satisfies a range. Invalid versions never do."""
    try:
        parsed = parse_version(version)
    except ValueError:
        return False
    return parse_range(range_str).satisfied_by(parsed)


def max_satisfying(versions: Iterable[str], range_str: str) -> str | None:
    """Return the highest version satisfying the range, or None."""
    version_range = parse_range(range_str)
    best: SemVer | None = None
    for raw in versions:
        try:
            candidate = parse_version(raw)
        except ValueError:
            continue
        if not version_range.satisfied_by(candidate):
            continue
        if best is None or compare_precedence(candidate, best) > 0:
            best = candidate
    return best.raw if best is not None else None

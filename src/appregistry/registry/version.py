"""Semantic version parsing and ordering.

Implements SemVer 2.0.0 precedence, with build metadata used only as a final
tie-breaker so that listings are deterministic:

    1.0.0+build.2 > 1.0.0+build.1 > 1.0.0 > 1.0.0-rc.1 > 1.0.0-beta.1
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

_NUM = r"0|[1-9]\d*"
_PRE_ID = r"(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
_BUILD_ID = r"[0-9a-zA-Z-]+"

SEMVER_PATTERN = re.compile(
    rf"^(?P<major>{_NUM})\.(?P<minor>{_NUM})\.(?P<patch>{_NUM})"
    rf"(?:-(?P<prerelease>{_PRE_ID}(?:\.{_PRE_ID})*))?"
    rf"(?:\+(?P<build>{_BUILD_ID}(?:\.{_BUILD_ID})*))?$"
)

_CHUNK_PATTERN = re.compile(r"(\d+)")


@dataclass(frozen=True)
class SemVer:
    """Parsed semantic version.

    Attributes:
        major: Major version.
        minor: Minor version.
        patch: Patch version.
        prerelease: Dot-separated prerelease identifiers (ints where numeric).
        build: Dot-separated build metadata identifiers.
        raw: Original version string.
    """

    major: int
    minor: int
    patch: int
    prerelease: tuple[int | str, ...] = ()
    build: tuple[str, ...] = ()
    raw: str = ""

    def __str__(self) -> str:
        return self.raw or self.format()

    def format(self) -> str:
        """Render without relying on raw."""
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(str(p) for p in self.prerelease)
        if self.build:
            text += "+" + ".".join(self.build)
        return text

    @property
    def release(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)


def _split_identifiers(text: str | None) -> tuple[int | str, ...]:
    if not text:
        return ()
    return tuple(int(p) if p.isdigit() else p for p in text.split("."))


def parse_version(version_str: str) -> SemVer:
    """Parse a strict SemVer 2.0.0 string.

    Raises:
        ValueError: If the string is not a valid semantic version.
    """
    match = SEMVER_PATTERN.match(version_str) if isinstance(version_str, str) else None
    if not match:
        msg = f"Invalid semantic version: {version_str!r}"
        raise ValueError(msg)
    return SemVer(
        major=int(match.group("major")),
        minor=int(match.group("minor")),
        patch=int(match.group("patch")),
        prerelease=_split_identifiers(match.group("prerelease")),
        build=tuple(match.group("build").split(".")) if match.group("build") else (),
        raw=version_str,
    )


def is_valid_version(version_str: str) -> bool:
    """Check whether a string is a valid semantic version."""
    try:
        parse_version(version_str)
    except ValueError:
        return False
    return True


def _compare_identifiers(a: int | str, b: int | str) -> int:
    # Numeric identifiers always have lower precedence than alphanumeric ones
    if isinstance(a, int) and isinstance(b, int):
        return (a > b) - (a < b)
    if isinstance(a, int):
        return -1
    if isinstance(b, int):
        return 1
    return (a > b) - (a < b)


def _compare_identifier_lists(a: tuple[int | str, ...], b: tuple[int | str, ...]) -> int:
    for left, right in zip(a, b, strict=False):
        result = _compare_identifiers(left, right)
        if result:
            return result
    return (len(a) > len(b)) - (len(a) < len(b))


def compare_precedence(a: SemVer, b: SemVer) -> int:
    """Compare by SemVer precedence (build metadata ignored). Returns -1, 0 or 1."""
    if a.release != b.release:
        return -1 if a.release < b.release else 1
    if not a.prerelease and not b.prerelease:
        return 0
    # A release has higher precedence than any of its prereleases
    if not a.prerelease:
        return 1
    if not b.prerelease:
        return -1
    return _compare_identifier_lists(a.prerelease, b.prerelease)


def compare_versions(a: SemVer, b: SemVer) -> int:
    """Total order: precedence first, then build metadata (present > absent)."""
    result = compare_precedence(a, b)
    if result:
        return result
    if not a.build and not b.build:
        return 0
    if not a.build:
        return -1
    if not b.build:
        return 1
    return _compare_identifier_lists(
        _split_identifiers(".".join(a.build)),
        _split_identifiers(".".join(b.build)),
    )


def is_newer(candidate: str, current: str | None) -> bool:
    """True if candidate strictly exceeds current by semver precedence.

    An unparseable current value is always superseded by a valid candidate.
    """
    try:
        new = parse_version(candidate)
    except ValueError:
        return current is None
    if current is None:
        return True
    try:
        old = parse_version(current)
    except ValueError:
        return True
    return compare_precedence(new, old) > 0


def natural_key(text: str) -> tuple[tuple[int, int | str], ...]:
    """Numeric-aware sort key: "v10" sorts after "v9"."""
    return tuple(
        (0, int(chunk)) if chunk.isdigit() else (1, chunk)
        for chunk in _CHUNK_PATTERN.split(text)
        if chunk
    )


def sort_versions_desc(versions: Iterable[str]) -> list[str]:
    """Sort versions newest first.

    Valid semantic versions come first, ordered by precedence with build
    metadata as tie-breaker. Unparseable strings follow, ordered among
    themselves with a numeric-aware descending comparison.
    """
    valid: list[SemVer] = []
    invalid: list[str] = []
    for raw in set(versions):
        try:
            valid.append(parse_version(raw))
        except ValueError:
            invalid.append(raw)

    valid.sort(key=functools.cmp_to_key(compare_versions), reverse=True)
    invalid.sort(key=natural_key, reverse=True)
    return [v.raw for v in valid] + invalid

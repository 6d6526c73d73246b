"""Tests for semver range parsing and matching."""

from __future__ import annotations

import pytest

from appregistry.registry.ranges import is_valid_range, max_satisfying, parse_range, satisfies


class TestRangeOperators:
    """Each operator against in/out versions."""

    @pytest.mark.parametrize(
        ("range_str", "inside", "outside"),
        [
            ("^1.2.3", ["1.2.3", "1.9.0"], ["2.0.0", "1.2.2"]),
            ("^0.2.3", ["0.2.3", "0.2.9"], ["0.3.0"]),
            ("^0.0.3", ["0.0.3"], ["0.0.4"]),
            ("~1.2.3", ["1.2.3", "1.2.9"], ["1.3.0"]),
            ("~1", ["1.0.0", "1.9.9"], ["2.0.0"]),
            (">=1.0.0 <2.0.0", ["1.0.0", "1.5.0"], ["2.0.0", "0.9.9"]),
            ("1.x", ["1.0.0", "1.99.0"], ["2.0.0"]),
            ("1.2.*", ["1.2.0", "1.2.7"], ["1.3.0"]),
            ("*", ["0.0.1", "9.9.9"], []),
            ("", ["1.0.0"], []),
            ("1.2.3 - 2.3.4", ["1.2.3", "2.3.4"], ["2.3.5"]),
            ("1.2 - 2", ["1.2.0", "2.9.9"], ["3.0.0", "1.1.9"]),
            ("^1.0.0 || ^3.0.0", ["1.1.0", "3.2.0"], ["2.0.0"]),
            ("=1.0.0", ["1.0.0"], ["1.0.1"]),
            (">1.0", ["1.1.0"], ["1.0.9"]),
            ("<=1.2", ["1.2.9"], ["1.3.0"]),
            (">= 1.0.0", ["1.0.0"], ["0.1.0"]),
        ],
    )
    def test_membership(self, range_str: str, inside: list[str], outside: list[str]) -> None:
        for version in inside:
            assert satisfies(version, range_str), f"{version} should satisfy {range_str}"
        for version in outside:
            assert not satisfies(version, range_str), f"{version} should not satisfy {range_str}"


class TestPrereleaseRule:
    """Prereleases only match ranges that mention the same release tuple."""

    def test_caret_excludes_next_major_prerelease(self) -> None:
        assert not satisfies("2.0.0-beta.1", "^1.0.0")

    def test_caret_excludes_prerelease_in_range(self) -> None:
        assert not satisfies("1.1.0-rc.1", "^1.0.0")

    def test_explicit_prerelease_comparator(self) -> None:
        assert satisfies("1.0.0-rc.1", "^1.0.0-beta")
        assert not satisfies("1.1.0-rc.1", "^1.0.0-beta")


class TestParseRange:
    """Validation of range syntax."""

    @pytest.mark.parametrize("text", ["^^1", "1.2.3.4", ">=abc", "~1.2.3 ^", "latest"])
    def test_invalid(self, text: str) -> None:
        assert not is_valid_range(text)
        with pytest.raises(ValueError, match="Invalid version range"):
            parse_range(text)

    def test_str_round_trips_raw(self) -> None:
        assert str(parse_range("^1.0.0")) == "^1.0.0"


class TestMaxSatisfying:
    """Highest matching version selection."""

    def test_picks_highest(self) -> None:
        assert max_satisfying(["1.0.0", "1.1.0", "2.0.0"], "^1.0.0") == "1.1.0"

    def test_none_when_nothing_matches(self) -> None:
        assert max_satisfying(["2.0.0"], "^1.0.0") is None

    def test_skips_invalid_versions(self) -> None:
        assert max_satisfying(["garbage", "1.0.0"], "*") == "1.0.0"

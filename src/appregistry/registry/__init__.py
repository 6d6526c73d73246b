"""Version ordering, range matching and the versioned entity store."""

from appregistry.registry.ranges import (
    VersionRange,
    is_valid_range,
    max_satisfying,
    parse_range,
    satisfies,
)
from appregistry.registry.version import (
    SemVer,
    compare_precedence,
    compare_versions,
    is_newer,
    is_valid_version,
    parse_version,
    sort_versions_desc,
)

__all__ = [
    "SemVer",
    "VersionRange",
    "compare_precedence",
    "compare_versions",
    "is_newer",
    "is_valid_range",
    "is_valid_version",
    "max_satisfying",
    "parse_range",
    "parse_version",
    "satisfies",
    "sort_versions_desc",
]

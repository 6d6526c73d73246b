"""
Field types and sub-models shared by manifests and bundles.
"""

from __future__ import annotations

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator

from appregistry.registry.ranges import is_valid_range
from appregistry.registry.version import is_valid_version

PACKAGE_ID_PATTERN = re.compile(r"^[a-z0-9]+(\.[a-z0-9-]+)+$")
INTERFACE_TAG_PATTERN = re.compile(r"^[a-z0-9.]+@[0-9]+$")
DIGEST_PATTERN = re.compile(r"^sha256:[0-9a-f]{64}$")
SIGNED_AT_PATTERN = re.compile(
    r"^[0-9]{4}-[0-9]{2}-[0-9]{2}T[0-9]{2}:[0-9]{2}:[0-9]{2}(\.[0-9]+)?Z$"
)
ARTIFACT_URI_SCHEMES = ("https://", "ipfs://")

MAX_INTERFACES = 16
MAX_DEPENDENCIES = 32

PackageId = Annotated[
    StrictStr, Field(min_length=3, max_length=128, pattern=PACKAGE_ID_PATTERN.pattern)
]
InterfaceTag = Annotated[
    StrictStr, Field(min_length=3, max_length=64, pattern=INTERFACE_TAG_PATTERN.pattern)
]


def check_semver(value: str) -> str:
    """Validator body: value must be a semantic version."""
    if not is_valid_version(value):
        msg = f"must be a valid semantic version, got {value!r}"
        raise ValueError(msg)
    return value


def check_non_empty_strings(values: list[str] | None, what: str) -> list[str] | None:
    """Validator body: every entry must be a non-blank string."""
    if values is None:
        return None
    for item in values:
        if not item.strip():
            msg = f"{what} entries must be non-empty strings"
            raise ValueError(msg)
    return values


class Dependency(BaseModel):
    """Dependency edge: another package id constrained by a semver range."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: PackageId
    range: StrictStr = Field(..., min_length=1, max_length=64)

    @field_validator("range")
    @classmethod
    def validate_range(cls, v: str) -> str:
        if not is_valid_range(v):
            msg = f"{v!r} is not a valid semver range"
            raise ValueError(msg)
        return v


class Signature(BaseModel):
    """Detached signature block.

    The algorithm is not constrained here: an unsupported algorithm is a
    signature failure, not a schema failure.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    alg: StrictStr = Field(..., min_length=1, max_length=32)
    pubkey: StrictStr = Field(..., min_length=1, max_length=128)
    sig: StrictStr = Field(..., min_length=1, max_length=256)
    signed_at: StrictStr | None = None

    @field_validator("signed_at")
    @classmethod
    def validate_signed_at(cls, v: str | None) -> str | None:
        if v is not None and not SIGNED_AT_PATTERN.match(v):
            msg = "signed_at must be an RFC 3339 UTC timestamp (YYYY-MM-DDTHH:MM:SSZ)"
            raise ValueError(msg)
        return v

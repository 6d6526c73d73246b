"""
Bundle (schema v2): packaging format carrying manifest-equivalent metadata
plus wasm, abi, migrations, links and ownership.

`interfaces.exports` / `interfaces.uses` map onto the v1 provides/requires
indexes. Each must be an array of non-empty strings, or absent/null.
"""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, field_validator

from appregistry.contracts.common import (
    MAX_DEPENDENCIES,
    MAX_INTERFACES,
    Dependency,
    PackageId,
    Signature,
    check_non_empty_strings,
    check_semver,
)

WASM_HASH_PATTERN = re.compile(r"^(sha256:)?[0-9a-f]{64}$")


class BundleMetadata(BaseModel):
    """Human-facing metadata. Extra keys (icons, tags, ...) are kept as-is."""

    model_config = ConfigDict(frozen=True, extra="allow")

    name: StrictStr = Field(..., min_length=1, max_length=128)
    description: StrictStr = Field(..., min_length=1, max_length=4096)
    author: StrictStr | None = None


class BundleInterfaces(BaseModel):
    """Exported and consumed interface names."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    exports: list[StrictStr] | None = Field(default=None, max_length=MAX_INTERFACES)
    uses: list[StrictStr] | None = Field(default=None, max_length=MAX_INTERFACES)

    @field_validator("exports")
    @classmethod
    def validate_exports(cls, v: list[str] | None) -> list[str] | None:
        return check_non_empty_strings(v, "interfaces.exports")

    @field_validator("uses")
    @classmethod
    def validate_uses(cls, v: list[str] | None) -> list[str] | None:
        return check_non_empty_strings(v, "interfaces.uses")


class WasmRef(BaseModel):
    """Location and digest of the bundled WASM module."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: StrictStr = Field(..., min_length=1, max_length=512)
    hash: StrictStr = Field(..., pattern=WASM_HASH_PATTERN.pattern)
    size: StrictInt = Field(..., gt=0)


class Bundle(BaseModel):
    """v2 bundle manifest."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: Literal["1.0"] | None = None  # bundle format marker
    package: PackageId
    appVersion: StrictStr = Field(..., min_length=1, max_length=64)  # noqa: N815
    metadata: BundleMetadata
    interfaces: BundleInterfaces | None = None
    wasm: WasmRef
    abi: Any = None
    migrations: list[Any] | None = None
    links: dict[str, Any] | None = None
    owners: list[StrictStr] | None = None
    dependencies: list[Dependency] = Field(default_factory=list, max_length=MAX_DEPENDENCIES)
    signature: Signature | None = None

    @field_validator("appVersion")
    @classmethod
    def validate_app_version(cls, v: str) -> str:
        return check_semver(v)

    @field_validator("owners")
    @classmethod
    def validate_owners(cls, v: list[str] | None) -> list[str] | None:
        return check_non_empty_strings(v, "owners")

    @property
    def exports(self) -> list[str]:
        if self.interfaces is None or self.interfaces.exports is None:
            return []
        return list(self.interfaces.exports)

    @property
    def uses(self) -> list[str]:
        if self.interfaces is None or self.interfaces.uses is None:
            return []
        return list(self.interfaces.uses)

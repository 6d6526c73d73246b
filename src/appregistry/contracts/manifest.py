"""
Manifest (schema v1): metadata describing one published WASM artifact.

Example:
    {
        "manifest_version": "1.0",
        "id": "com.example.chat",
        "name": "Chat",
        "version": "1.2.0",
        "chains": ["near:testnet"],
        "artifact": {
            "type": "wasm",
            "target": "node",
            "digest": "sha256:<64 hex>",
            "uri": "https://example.com/chat.wasm"
        },
        "provides": ["chat.api@1"],
        "requires": ["storage.kv@1"],
        "dependencies": [{"id": "com.example.kv", "range": "^1.0.0"}]
    }
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator

from appregistry.contracts.common import (
    ARTIFACT_URI_SCHEMES,
    DIGEST_PATTERN,
    MAX_DEPENDENCIES,
    MAX_INTERFACES,
    Dependency,
    InterfaceTag,
    PackageId,
    Signature,
    check_semver,
)

ChainName = Annotated[StrictStr, Field(min_length=1, max_length=64)]


class Artifact(BaseModel):
    """Reference to the WASM artifact. Bytes are fetched out of band."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["wasm"]
    target: Literal["node"]
    digest: StrictStr = Field(..., pattern=DIGEST_PATTERN.pattern)
    uri: StrictStr = Field(..., min_length=1, max_length=512)

    @field_validator("uri")
    @classmethod
    def validate_uri(cls, v: str) -> str:
        if not v.startswith(ARTIFACT_URI_SCHEMES):
            msg = 'uri must start with "https://" or "ipfs://"'
            raise ValueError(msg)
        return v


class Manifest(BaseModel):
    """v1 manifest. Unknown top-level fields are rejected."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    manifest_version: Literal["1.0"] | None = None
    id: PackageId
    name: StrictStr = Field(..., min_length=1, max_length=64)
    version: StrictStr = Field(..., min_length=1, max_length=64)
    chains: list[ChainName] = Field(..., min_length=1, max_length=16)
    artifact: Artifact
    provides: list[InterfaceTag] = Field(default_factory=list, max_length=MAX_INTERFACES)
    requires: list[InterfaceTag] = Field(default_factory=list, max_length=MAX_INTERFACES)
    dependencies: list[Dependency] = Field(default_factory=list, max_length=MAX_DEPENDENCIES)
    signature: Signature | None = None

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        return check_semver(v)

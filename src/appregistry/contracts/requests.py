"""
Request bodies accepted by the HTTP surface besides documents themselves.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictStr

from appregistry.contracts.common import PackageId


class PackageRef(BaseModel):
    """(id, version) reference."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: PackageId
    version: StrictStr = Field(..., min_length=1, max_length=64)

    def as_tuple(self) -> tuple[str, str]:
        return (self.id, self.version)


class ResolveRequest(BaseModel):
    """Body of POST /resolve."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    root: PackageRef
    installed: list[PackageRef] = Field(default_factory=list, max_length=1024)

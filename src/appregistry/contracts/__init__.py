"""Manifest (v1) and bundle (v2) document schemas."""

from appregistry.contracts.bundle import Bundle, BundleInterfaces, BundleMetadata, WasmRef
from appregistry.contracts.common import Dependency, Signature
from appregistry.contracts.entity import Entity, EntityKind, detect_kind, parse_entity
from appregistry.contracts.manifest import Artifact, Manifest
from appregistry.contracts.requests import PackageRef, ResolveRequest

__all__ = [
    "Artifact",
    "Bundle",
    "BundleInterfaces",
    "BundleMetadata",
    "Dependency",
    "Entity",
    "EntityKind",
    "Manifest",
    "PackageRef",
    "ResolveRequest",
    "Signature",
    "WasmRef",
    "detect_kind",
    "parse_entity",
]

"""
Schema-independent view over manifests and bundles.

The store, verifier and resolver only deal with Entity. parse_entity decides
which schema a document follows and turns pydantic failures into
InvalidSchemaError with one detail line per violation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from appregistry.contracts.bundle import Bundle
from appregistry.contracts.manifest import Manifest
from appregistry.errors import InvalidSchemaError
from appregistry.signing.canonical import strip_transport_fields

if TYPE_CHECKING:
    from appregistry.contracts.common import Dependency, Signature


class EntityKind(str, Enum):
    """Schema family of a stored document."""

    MANIFEST = "manifest"
    BUNDLE = "bundle"


@dataclass(frozen=True)
class Entity:
    """
    Validated document plus the fields every subsystem needs.

    Attributes:
        kind: Manifest (v1) or bundle (v2).
        id: Package id (``id`` or ``package``).
        version: Version string (``version`` or ``appVersion``).
        name: Display name.
        provides: Interfaces offered (``provides`` or ``interfaces.exports``).
        requires: Interfaces needed (``requires`` or ``interfaces.uses``).
        dependencies: Declared package dependencies.
        signature: Signature block, if any.
        owners: Owner public keys (bundles only).
        document: Raw document with transport fields removed.
    """

    kind: EntityKind
    id: str
    version: str
    name: str
    provides: tuple[str, ...] = ()
    requires: tuple[str, ...] = ()
    dependencies: tuple[Dependency, ...] = ()
    signature: Signature | None = None
    owners: tuple[str, ...] = ()
    document: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> str:
        return f"{self.id}/{self.version}"

    @property
    def pubkey(self) -> str | None:
        return self.signature.pubkey if self.signature is not None else None

    @classmethod
    def from_manifest(cls, manifest: Manifest, document: dict[str, Any]) -> Entity:
        return cls(
            kind=EntityKind.MANIFEST,
            id=manifest.id,
            version=manifest.version,
            name=manifest.name,
            provides=tuple(manifest.provides),
            requires=tuple(manifest.requires),
            dependencies=tuple(manifest.dependencies),
            signature=manifest.signature,
            document=document,
        )

    @classmethod
    def from_bundle(cls, bundle: Bundle, document: dict[str, Any]) -> Entity:
        return cls(
            kind=EntityKind.BUNDLE,
            id=bundle.package,
            version=bundle.appVersion,
            name=bundle.metadata.name,
            provides=tuple(bundle.exports),
            requires=tuple(bundle.uses),
            dependencies=tuple(bundle.dependencies),
            signature=bundle.signature,
            owners=tuple(bundle.owners or ()),
            document=document,
        )


def detect_kind(doc: dict[str, Any]) -> EntityKind:
    """Pick the schema for a document by its identifying fields.

    Raises:
        InvalidSchemaError: If the document is not an object or carries
            neither ``id`` nor ``package``.
    """
    if not isinstance(doc, dict):
        raise InvalidSchemaError("document must be a JSON object")
    if "package" in doc or "appVersion" in doc:
        return EntityKind.BUNDLE
    if "id" in doc:
        return EntityKind.MANIFEST
    raise InvalidSchemaError(
        "document is neither a manifest nor a bundle",
        details=["missing required field: id (manifest) or package (bundle)"],
    )


def _format_errors(exc: ValidationError) -> list[str]:
    details = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "<root>"
        details.append(f"{loc}: {err['msg']}")
    return details


def _validate(model: type[BaseModel], doc: dict[str, Any]) -> Any:
    try:
        return model.model_validate(doc)
    except ValidationError as e:
        raise InvalidSchemaError(
            f"{model.__name__.lower()} failed validation", details=_format_errors(e)
        ) from e


def parse_entity(doc: dict[str, Any], *, expected: EntityKind | None = None) -> Entity:
    """
    Validate a submitted document and build its Entity.

    Transport fields (top-level keys starting with ``_``) are dropped before
    validation and are not part of the stored document.

    Args:
        doc: Decoded JSON document.
        expected: Restrict to one schema (e.g. the /v2/bundles route).

    Raises:
        InvalidSchemaError: On any structural violation.
    """
    kind = detect_kind(doc)
    if expected is not None and kind is not expected:
        raise InvalidSchemaError(f"expected a {expected.value}, got a {kind.value}")

    document = strip_transport_fields(doc)
    if kind is EntityKind.BUNDLE:
        return Entity.from_bundle(_validate(Bundle, document), document)
    return Entity.from_manifest(_validate(Manifest, document), document)

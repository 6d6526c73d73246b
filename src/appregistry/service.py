"""
Registry service: the operations behind the HTTP surface.

submit() runs every check before the first write:

    size limit -> JSON decode -> schema -> dependency limit ->
    signature -> ownership -> store
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import orjson
from pydantic import ValidationError

from appregistry.config import RegistryConfig
from appregistry.contracts.entity import EntityKind, parse_entity
from appregistry.contracts.requests import ResolveRequest
from appregistry.errors import (
    InvalidQueryError,
    InvalidSchemaError,
    NotFoundError,
    NotOwnerError,
    PayloadTooLargeError,
    RegistryError,
)
from appregistry.registry.store import VersionedEntityStore
from appregistry.resolver.resolver import DependencyResolver
from appregistry.signing.verifier import is_allowed_owner, verify_entity
from appregistry.storage import create_backend

if TYPE_CHECKING:
    from appregistry.contracts.entity import Entity
    from appregistry.metrics import RegistryMetrics
    from appregistry.resolver.resolver import Resolution
    from appregistry.storage.base import KeyValueBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of an accepted submission."""

    id: str
    version: str
    kind: EntityKind
    created_at: str

    @property
    def canonical_uri(self) -> str:
        return f"/{self.id}/{self.version}?canonical=true"

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "version": self.version, "canonical_uri": self.canonical_uri}


class RegistryService:
    """
    Registry operations over a store and resolver.

    Args:
        store: Versioned entity store.
        config: Registry configuration.
        resolver: Dependency resolver. Built from config if omitted.
        metrics: Optional metrics exporter.
    """

    def __init__(
        self,
        store: VersionedEntityStore,
        config: RegistryConfig | None = None,
        resolver: DependencyResolver | None = None,
        metrics: RegistryMetrics | None = None,
    ) -> None:
        self._store = store
        self._config = config or RegistryConfig()
        self._metrics = metrics
        self._resolver = resolver or DependencyResolver(
            store, self._config.resolver, metrics=metrics
        )
        self._started = time.monotonic()

    @classmethod
    def from_config(
        cls,
        config: RegistryConfig,
        *,
        backend: KeyValueBackend | None = None,
        metrics: RegistryMetrics | None = None,
    ) -> RegistryService:
        """Wire backend, store and resolver from configuration."""
        store = VersionedEntityStore(
            backend or create_backend(config.backend),
            timeout_s=config.backend.timeout_s,
            search_cache_size=config.search_cache_size,
            metrics=metrics,
        )
        return cls(store, config, metrics=metrics)

    @property
    def config(self) -> RegistryConfig:
        return self._config

    @property
    def store(self) -> VersionedEntityStore:
        return self._store

    @property
    def resolver(self) -> DependencyResolver:
        return self._resolver

    async def close(self) -> None:
        await self._store.backend.close()

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    def decode_document(self, body: bytes) -> dict[str, Any]:
        """Decode a request body, enforcing the payload size limit."""
        limit = self._config.limits.max_payload_bytes
        if len(body) > limit:
            raise PayloadTooLargeError(f"payload exceeds {limit} bytes")
        try:
            doc = orjson.loads(body)
        except orjson.JSONDecodeError as e:
            raise InvalidSchemaError("body is not valid JSON", details=[str(e)]) from e
        if not isinstance(doc, dict):
            raise InvalidSchemaError("document must be a JSON object")
        return doc

    async def submit(
        self,
        doc: dict[str, Any] | bytes,
        *,
        expected: EntityKind | None = None,
        actor_pubkey: str | None = None,
    ) -> SubmitResult:
        """
        Validate, verify and store a manifest or bundle.

        Args:
            doc: Decoded document or raw JSON body.
            expected: Restrict to one schema.
            actor_pubkey: Publisher identity established outside the
                registry. Falls back to the document's signing key.

        Raises:
            InvalidSchemaError: Structural violation (PayloadTooLargeError
                when over the size limit).
            InvalidSignatureError: Signature policy or verification failure.
            NotOwnerError: Package exists and the publisher is not an owner.
            AlreadyExistsError: (id, version) already stored.
            UnavailableError: Backend failure. Nothing was stored.
        """
        kind_label = expected.value if expected is not None else "unknown"
        try:
            if isinstance(doc, bytes | bytearray):
                doc = self.decode_document(bytes(doc))
            else:
                self._check_size(doc)
            entity = parse_entity(doc, expected=expected)
            kind_label = entity.kind.value
            self._check_limits(entity)
            verify_entity(entity, self._config.signatures)
            await self._check_owner(entity, actor_pubkey or entity.pubkey)
            receipt = await self._store.store(entity)
        except RegistryError as e:
            self._record_submission(kind_label, e.code)
            raise

        self._record_submission(kind_label, "created")
        return SubmitResult(
            id=receipt.id,
            version=receipt.version,
            kind=receipt.kind,
            created_at=receipt.created_at,
        )

    def _record_submission(self, kind: str, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_submission(kind, outcome)

    def _check_size(self, doc: dict[str, Any]) -> None:
        limit = self._config.limits.max_payload_bytes
        try:
            size = len(orjson.dumps(doc))
        except TypeError as e:
            raise InvalidSchemaError("document is not JSON-serializable") from e
        if size > limit:
            raise PayloadTooLargeError(f"payload exceeds {limit} bytes")

    def _check_limits(self, entity: Entity) -> None:
        limit = self._config.limits.max_dependencies
        if len(entity.dependencies) > limit:
            raise InvalidSchemaError(
                f"too many dependencies: {len(entity.dependencies)} > {limit}"
            )

    async def _check_owner(self, entity: Entity, publisher_key: str | None) -> None:
        existing = await self._store.get_latest(entity.id)
        if existing is None:
            return
        if not is_allowed_owner(existing, publisher_key):
            logger.warning(
                "Publish rejected, not an owner",
                extra={"package_id": entity.id, "version": entity.version},
            )
            raise NotOwnerError(f"publisher is not an owner of {entity.id}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_versions(self, package_id: str) -> dict[str, Any]:
        """{id, versions} newest first. Raises NotFoundError."""
        versions = await self._store.list_versions(package_id)
        if not versions:
            raise NotFoundError(f"package {package_id} not found")
        return {"id": package_id, "versions": versions}

    async def get_entity(
        self, package_id: str, version: str, *, canonical: bool = False
    ) -> dict[str, Any]:
        """Stored document, with canonical_jcs when requested."""
        record = await self._store.get_record(package_id, version)
        return record.to_document(include_canonical=canonical)

    async def list_packages(self) -> dict[str, Any]:
        packages = await self._store.list_packages()
        return {"packages": [p.to_dict() for p in packages]}

    async def search(self, query: str | None, limit: int | None = None) -> list[dict[str, Any]]:
        """Search entries. Raises InvalidQueryError for a missing or oversized query."""
        limits = self._config.limits
        if query is None or not query.strip():
            raise InvalidQueryError("query parameter q is required")
        if len(query) > limits.max_query_length:
            raise InvalidQueryError(f"query exceeds {limits.max_query_length} characters")
        effective = limits.max_search_results if limit is None else limit
        if not 1 <= effective <= limits.max_search_results:
            raise InvalidQueryError(f"limit must be in [1, {limits.max_search_results}]")
        hits = await self._store.search(query, effective)
        return [hit.to_dict() for hit in hits]

    def parse_resolve_request(self, body: Any) -> ResolveRequest:
        try:
            return ResolveRequest.model_validate(body)
        except ValidationError as e:
            details = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            ]
            raise InvalidSchemaError("invalid resolve request", details=details) from e

    async def resolve(
        self,
        root_id: str,
        root_version: str,
        installed: list[tuple[str, str]] | None = None,
    ) -> Resolution:
        """Resolve a root's dependency graph. See DependencyResolver.resolve."""
        try:
            resolution = await self._resolver.resolve(root_id, root_version, installed or ())
        except RegistryError as e:
            if self._metrics is not None:
                self._metrics.record_resolution(e.code)
            raise
        if self._metrics is not None:
            self._metrics.record_resolution("conflicts" if resolution.conflicts else "ok")
        return resolution

    def health(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "backend": self._store.backend.name,
            "uptime_s": round(time.monotonic() - self._started, 3),
        }

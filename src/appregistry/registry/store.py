"""
Versioned entity store.

One engine over a pluggable KeyValueBackend. Layout (all values JSON text):

    record:{id}/{version}     primary record, claimed with set_if_absent
    versions:{id}             set of versions
    packages                  set of package ids
    package:{id}              aggregate {id, name, latest_version, kind}
    provides:{interface}      set of "{id}/{version}"
    requires:{interface}      set of "{id}/{version}"
    deps:{id}/{version}       set of dependency objects
    search-index              hash "{id}/{version}" -> searchable fields
    package-generations       hash id -> write counter
    registry-generation       hash "writes" -> global write counter

Write protocol:

1. claim ``record:{id}/{version}`` with ``committed: false``. Losing the
   claim is AlreadyExistsError.
2. required fan-out: version set, package set. On failure the claim is
   rolled back and UnavailableError raised.
3. overwrite the record with ``committed: true``. Readers, version
   listings included, treat uncommitted records as absent, so nobody sees a
   record before its indexes exist.
4. best-effort fan-out: aggregate, interface indexes, dependency list,
   search index. Failures are logged and counted, never raised.
5. bump generations and notify local write listeners.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import orjson

from appregistry.contracts.entity import Entity, EntityKind, parse_entity
from appregistry.errors import (
    AlreadyExistsError,
    InternalError,
    InvalidSchemaError,
    NotFoundError,
    UnavailableError,
)
from appregistry.registry.cache import GenerationalCache
from appregistry.registry.version import is_newer, sort_versions_desc
from appregistry.signing.canonical import canonical_text
from appregistry.storage.base import bounded

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from appregistry.contracts.common import Dependency
    from appregistry.metrics import RegistryMetrics
    from appregistry.storage.base import KeyValueBackend

logger = logging.getLogger(__name__)

PACKAGES_KEY = "packages"
SEARCH_KEY = "search-index"
GENERATIONS_KEY = "package-generations"
GLOBAL_GENERATION_KEY = "registry-generation"
GLOBAL_GENERATION_FIELD = "writes"
_SEARCH_SCOPE = "*"

WriteListener = Callable[[str], None]


def record_key(package_id: str, version: str) -> str:
    return f"record:{package_id}/{version}"


def _now() -> datetime:
    return datetime.now(UTC)


def _timestamp(when: datetime) -> str:
    return when.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _split_member(member: str) -> tuple[str, str]:
    package_id, _, version = member.partition("/")
    return package_id, version


@dataclass(frozen=True)
class StoreReceipt:
    """Result of a successful store."""

    id: str
    version: str
    created_at: str
    kind: EntityKind

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "created_at": self.created_at,
            "kind": self.kind.value,
        }


@dataclass(frozen=True)
class StoredRecord:
    """A committed record as read back from the backend."""

    entity: Entity
    canonical: str
    pubkey: str | None
    created_at: str
    kind: EntityKind

    def to_document(self, *, include_canonical: bool = False) -> dict[str, Any]:
        doc = dict(self.entity.document)
        if include_canonical:
            doc["canonical_jcs"] = self.canonical
        return doc


@dataclass(frozen=True)
class PackageSummary:
    """Package aggregate: the newest version seen for an id."""

    id: str
    name: str
    latest_version: str
    kind: EntityKind

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "latest_version": self.latest_version,
            "kind": self.kind.value,
        }


@dataclass(frozen=True)
class SearchHit:
    """One (id, version) matching a search query."""

    id: str
    version: str
    name: str
    provides: tuple[str, ...]
    requires: tuple[str, ...]

    def matches(self, needle: str) -> bool:
        haystack = (self.id, self.name, *self.provides, *self.requires)
        return any(needle in item.lower() for item in haystack)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "provides": list(self.provides),
            "requires": list(self.requires),
        }


class VersionedEntityStore:
    """
    Immutable (id, version) records with secondary indexes.

    Correctness under concurrency rests on the backend's atomic
    set_if_absent. There is no in-process locking, so any number of
    store instances may share one backend.

    Args:
        backend: Key-value backend.
        timeout_s: Deadline for every backend call.
        search_cache_size: Entries kept by the search cache. 0 disables it.
        metrics: Optional metrics exporter.
        clock: Time source for created_at.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        timeout_s: float = 5.0,
        search_cache_size: int = 256,
        metrics: RegistryMetrics | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._backend = backend
        self._timeout_s = timeout_s
        self._metrics = metrics
        self._clock = clock
        self._search_cache: GenerationalCache[list[SearchHit]] = GenerationalCache(
            search_cache_size
        )
        self._listeners: list[WriteListener] = []

    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    def add_write_listener(self, listener: WriteListener) -> None:
        """Call listener(package_id) after every committed store."""
        self._listeners.append(listener)

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        return await bounded(awaitable, self._timeout_s, operation)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def store(self, entity: Entity) -> StoreReceipt:
        """
        Persist a validated entity under (id, version).

        Raises:
            AlreadyExistsError: If the key has been claimed before.
            UnavailableError: If the backend fails before the record commits.
                No record is left visible in that case.
        """
        created_at = _timestamp(self._clock())
        record = {
            "json": entity.document,
            "canonical": canonical_text(entity.document),
            "pubkey": entity.pubkey,
            "created_at": created_at,
            "kind": entity.kind.value,
            "committed": False,
            "claim": uuid.uuid4().hex,
        }
        key = record_key(entity.id, entity.version)
        claim = orjson.dumps(record).decode()

        try:
            claimed = await self._call("set_if_absent", self._backend.set_if_absent(key, claim))
        except UnavailableError:
            await self._release_claim(entity, record["claim"])
            raise
        if not claimed:
            logger.info(
                "Claim lost, version exists",
                extra={"package_id": entity.id, "version": entity.version},
            )
            raise AlreadyExistsError(entity.id, entity.version)

        try:
            await self._call(
                "add_to_set",
                self._backend.add_to_set(f"versions:{entity.id}", entity.version),
            )
            await self._call("add_to_set", self._backend.add_to_set(PACKAGES_KEY, entity.id))
            record["committed"] = True
            await self._call("set", self._backend.set(key, orjson.dumps(record).decode()))
        except UnavailableError:
            logger.warning(
                "Required index write failed, rolling back claim",
                extra={"package_id": entity.id, "version": entity.version},
            )
            await self._release_claim(entity, record["claim"])
            raise

        await self._fan_out(entity)
        await self._bump_generation(entity.id)

        logger.info(
            "Entity stored",
            extra={
                "package_id": entity.id,
                "version": entity.version,
                "kind": entity.kind.value,
            },
        )
        return StoreReceipt(
            id=entity.id, version=entity.version, created_at=created_at, kind=entity.kind
        )

    async def _release_claim(self, entity: Entity, claim_id: str) -> None:
        """Undo a claim that never committed. Only touches our own claim."""
        key = record_key(entity.id, entity.version)
        try:
            current = await self._call("get", self._backend.get(key))
            if current is None or orjson.loads(current).get("claim") != claim_id:
                return
            await self._call(
                "remove_from_set",
                self._backend.remove_from_set(f"versions:{entity.id}", entity.version),
            )
            await self._call("delete", self._backend.delete(key))
        except UnavailableError:
            logger.exception(
                "Rollback failed, claim may remain uncommitted",
                extra={"package_id": entity.id, "version": entity.version},
            )

    async def _best_effort(self, index: str, entity: Entity, awaitable: Awaitable[Any]) -> None:
        try:
            await self._call(index, awaitable)
        except UnavailableError as e:
            logger.warning(
                "Index write failed",
                extra={
                    "index": index,
                    "package_id": entity.id,
                    "version": entity.version,
                    "error": str(e),
                },
            )
            if self._metrics is not None:
                self._metrics.record_index_failure(index)

    async def _fan_out(self, entity: Entity) -> None:
        member = entity.key
        await self._best_effort("package", entity, self._update_aggregate(entity))
        for interface in entity.provides:
            await self._best_effort(
                "provides", entity, self._backend.add_to_set(f"provides:{interface}", member)
            )
        for interface in entity.requires:
            await self._best_effort(
                "requires", entity, self._backend.add_to_set(f"requires:{interface}", member)
            )
        for dep in entity.dependencies:
            await self._best_effort(
                "deps",
                entity,
                self._backend.add_to_set(f"deps:{member}", orjson.dumps(dep.model_dump()).decode()),
            )
        search_entry = {
            "id": entity.id,
            "version": entity.version,
            "name": entity.name,
            "provides": list(entity.provides),
            "requires": list(entity.requires),
        }
        await self._best_effort(
            "search",
            entity,
            self._backend.hash_set(SEARCH_KEY, member, orjson.dumps(search_entry).decode()),
        )

    async def _update_aggregate(self, entity: Entity) -> None:
        # Read-modify-write: concurrent publishes of one id may race here.
        # The aggregate is advisory; the version set stays authoritative.
        key = f"package:{entity.id}"
        raw = await self._backend.get(key)
        current = orjson.loads(raw) if raw else None
        if current is not None and not is_newer(entity.version, current.get("latest_version")):
            return
        aggregate = {
            "id": entity.id,
            "name": entity.name,
            "latest_version": entity.version,
            "kind": entity.kind.value,
        }
        await self._backend.set(key, orjson.dumps(aggregate).decode())

    async def _bump_generation(self, package_id: str) -> None:
        try:
            await self._call("hash_incr", self._backend.hash_incr(GENERATIONS_KEY, package_id))
            await self._call(
                "hash_incr",
                self._backend.hash_incr(GLOBAL_GENERATION_KEY, GLOBAL_GENERATION_FIELD),
            )
        except UnavailableError:
            # Remote caches stay stale until the next successful bump
            logger.exception("Generation bump failed", extra={"package_id": package_id})

        self._search_cache.invalidate(_SEARCH_SCOPE)
        for listener in self._listeners:
            listener(package_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_record(self, package_id: str, version: str) -> StoredRecord:
        """Fetch a committed record.

        Raises:
            NotFoundError: If absent or not yet committed.
        """
        raw = await self._call("get", self._backend.get(record_key(package_id, version)))
        if raw is None:
            raise NotFoundError(f"{package_id}@{version} not found")
        data = orjson.loads(raw)
        if not data.get("committed", False):
            raise NotFoundError(f"{package_id}@{version} not found")
        try:
            entity = parse_entity(data["json"])
        except InvalidSchemaError as e:
            logger.error(
                "Stored record failed validation",
                extra={"package_id": package_id, "version": version, "details": e.details},
            )
            raise InternalError("stored record is corrupt") from e
        return StoredRecord(
            entity=entity,
            canonical=data["canonical"],
            pubkey=data.get("pubkey"),
            created_at=data["created_at"],
            kind=EntityKind(data["kind"]),
        )

    async def get(self, package_id: str, version: str) -> Entity:
        """Fetch a committed entity. Raises NotFoundError."""
        return (await self.get_record(package_id, version)).entity

    async def list_versions(self, package_id: str) -> list[str]:
        """
        Committed versions of a package, newest first. Empty if unknown.

        The version set is written before the record commits, so members
        whose record is missing or still uncommitted are left out.
        """
        members = await self._call(
            "set_members", self._backend.set_members(f"versions:{package_id}")
        )
        ordered = sort_versions_desc(members)
        committed = await asyncio.gather(*(self._is_committed(package_id, v) for v in ordered))
        return [v for v, ok in zip(ordered, committed, strict=True) if ok]

    async def _is_committed(self, package_id: str, version: str) -> bool:
        raw = await self._call("get", self._backend.get(record_key(package_id, version)))
        return raw is not None and bool(orjson.loads(raw).get("committed", False))

    async def get_latest(self, package_id: str) -> Entity | None:
        """Newest committed entity of a package, or None."""
        for version in await self.list_versions(package_id):
            try:
                return await self.get(package_id, version)
            except NotFoundError:
                continue
        return None

    async def get_package(self, package_id: str) -> PackageSummary:
        """
        Package aggregate. Raises NotFoundError.

        The aggregate is a best-effort write. When it is absent the summary
        is rebuilt from the newest committed record.
        """
        raw = await self._call("get", self._backend.get(f"package:{package_id}"))
        if raw is None:
            latest = await self.get_latest(package_id)
            if latest is None:
                raise NotFoundError(f"package {package_id} not found")
            return PackageSummary(
                id=latest.id,
                name=latest.name,
                latest_version=latest.version,
                kind=latest.kind,
            )
        data = orjson.loads(raw)
        return PackageSummary(
            id=data["id"],
            name=data["name"],
            latest_version=data["latest_version"],
            kind=EntityKind(data["kind"]),
        )

    async def list_packages(self) -> list[PackageSummary]:
        """Summaries for every package with a committed version, sorted by id."""
        ids = await self._call("set_members", self._backend.set_members(PACKAGES_KEY))
        results = await asyncio.gather(
            *(self.get_package(pid) for pid in sorted(ids)), return_exceptions=True
        )
        packages = []
        for result in results:
            if isinstance(result, NotFoundError):
                continue
            if isinstance(result, BaseException):
                raise result
            packages.append(result)
        return packages

    async def providers_of(self, interface: str) -> list[tuple[str, str]]:
        """(id, version) pairs whose provides/exports include interface."""
        members = await self._call(
            "set_members", self._backend.set_members(f"provides:{interface}")
        )
        return sorted(_split_member(m) for m in members)

    async def consumers_of(self, interface: str) -> list[tuple[str, str]]:
        """(id, version) pairs whose requires/uses include interface."""
        members = await self._call(
            "set_members", self._backend.set_members(f"requires:{interface}")
        )
        return sorted(_split_member(m) for m in members)

    async def dependencies_of(self, package_id: str, version: str) -> list[Dependency]:
        """Declared dependencies, read from the record."""
        entity = await self.get(package_id, version)
        return list(entity.dependencies)

    async def generations(self) -> dict[str, int]:
        """Write generation per package id."""
        raw = await self._call("hash_get_all", self._backend.hash_get_all(GENERATIONS_KEY))
        return {pid: int(gen) for pid, gen in raw.items()}

    async def _global_generation(self) -> dict[str, int]:
        raw = await self._call(
            "hash_get_all", self._backend.hash_get_all(GLOBAL_GENERATION_KEY)
        )
        return {_SEARCH_SCOPE: int(raw.get(GLOBAL_GENERATION_FIELD, 0))}

    async def search(self, query: str, limit: int = 100) -> list[SearchHit]:
        """
        Case-insensitive substring search over id, name, provides and requires.

        Results are ordered by id, then version newest first. An empty list
        means no match.
        """
        needle = query.strip().lower()
        cache_key = (needle, limit)
        current = await self._global_generation()
        cached = self._search_cache.lookup(cache_key, current)
        if self._metrics is not None:
            self._metrics.record_cache("search", cached is not None)
        if cached is not None:
            return list(cached)

        raw = await self._call("hash_get_all", self._backend.hash_get_all(SEARCH_KEY))
        by_id: dict[str, dict[str, SearchHit]] = {}
        for value in raw.values():
            data = orjson.loads(value)
            hit = SearchHit(
                id=data["id"],
                version=data["version"],
                name=data.get("name", ""),
                provides=tuple(data.get("provides", ())),
                requires=tuple(data.get("requires", ())),
            )
            if hit.matches(needle):
                by_id.setdefault(hit.id, {})[hit.version] = hit

        hits: list[SearchHit] = []
        for package_id in sorted(by_id):
            versions = by_id[package_id]
            hits.extend(versions[v] for v in sort_versions_desc(versions))
        hits = hits[:limit]

        self._search_cache.store(cache_key, hits, [_SEARCH_SCOPE], current)
        return list(hits)

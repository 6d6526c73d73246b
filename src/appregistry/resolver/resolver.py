"""
Dependency resolution.

Given a root (id, version) and an optional set of installed (id, version)
pairs, produce an install plan:

- breadth-first walk over declared dependencies, picking the highest
  version that satisfies each range; an installed version that satisfies
  the range wins and is left out of the plan, but its own dependencies
  are still walked
- unsatisfiable ranges become conflicts and the walk continues
- an id-level cycle anywhere in the resolved graph fails the whole
  resolution with no plan
- interface report: union of provides/exports vs. requires/uses
"""

from __future__ import annotations

import hashlib
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from appregistry.config import MissingInterfacePolicy, ResolverConfig
from appregistry.errors import (
    DependencyCycleError,
    NotFoundError,
    ResolutionLimitExceededError,
    UnsatisfiedInterfacesError,
)
from appregistry.registry.cache import GenerationalCache
from appregistry.registry.ranges import max_satisfying, satisfies

if TYPE_CHECKING:
    from collections.abc import Iterable

    from appregistry.contracts.common import Dependency
    from appregistry.contracts.entity import Entity
    from appregistry.metrics import RegistryMetrics
    from appregistry.registry.store import VersionedEntityStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class PlanEntry:
    """One (id, version) to install."""

    id: str
    version: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "version": self.version}


@dataclass(frozen=True)
class Resolution:
    """
    Resolution result.

    Attributes:
        plan: Entries in resolution order, root first. Installed
            selections are omitted.
        satisfies: Interfaces provided by planned and installed entities.
        missing: Required interfaces nobody in the plan or install set provides.
        conflicts: Human-readable reasons dependencies were left out.
    """

    plan: tuple[PlanEntry, ...]
    satisfies: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()
    conflicts: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": [entry.to_dict() for entry in self.plan],
            "satisfies": list(self.satisfies),
            "missing": list(self.missing),
            "conflicts": list(self.conflicts),
        }


@dataclass
class _Walk:
    """Mutable state for one resolution."""

    installed: dict[str, set[str]]
    versions: dict[str, list[str]] = field(default_factory=dict)
    entities: dict[tuple[str, str], Entity] = field(default_factory=dict)
    planned: list[PlanEntry] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    touched: set[str] = field(default_factory=set)


def installed_hash(installed: Iterable[tuple[str, str]]) -> str:
    """Order-independent digest of an install set."""
    joined = "\n".join(sorted(f"{pid}@{version}" for pid, version in set(installed)))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def find_cycle(graph: dict[str, set[str]], start: str) -> list[str] | None:
    """
    Iterative depth-first search for a cycle reachable from start.

    Returns the cycle as a path that begins and ends with the same id,
    or None.
    """
    done: set[str] = set()
    path = [start]
    on_path = {start}
    stack = [iter(sorted(graph.get(start, ())))]
    while stack:
        child = next(stack[-1], None)
        if child is None:
            stack.pop()
            node = path.pop()
            on_path.discard(node)
            done.add(node)
            continue
        if child in on_path:
            return [*path[path.index(child) :], child]
        if child in done:
            continue
        path.append(child)
        on_path.add(child)
        stack.append(iter(sorted(graph.get(child, ()))))
    return None


class DependencyResolver:
    """
    Resolves install plans against a VersionedEntityStore.

    Results are cached by (root id, root version, install-set digest) and
    validated against the store's per-package write generations, so a write
    from any process invalidates every entry that touched that package.

    Args:
        store: Entity store.
        config: Depth bound, cache size and missing-interface policy.
        metrics: Optional metrics exporter.
    """

    def __init__(
        self,
        store: VersionedEntityStore,
        config: ResolverConfig | None = None,
        metrics: RegistryMetrics | None = None,
    ) -> None:
        self._store = store
        self._config = config or ResolverConfig()
        self._metrics = metrics
        self._cache: GenerationalCache[Resolution] = GenerationalCache(self._config.cache_size)
        store.add_write_listener(self._cache.invalidate)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    async def resolve(
        self,
        root_id: str,
        root_version: str,
        installed: Iterable[tuple[str, str]] = (),
        *,
        policy: MissingInterfacePolicy | None = None,
    ) -> Resolution:
        """
        Resolve the dependency graph of a root entity.

        Args:
            root_id: Root package id.
            root_version: Root version.
            installed: (id, version) pairs already present on the target.
            policy: Override the configured missing-interface policy.

        Raises:
            NotFoundError: If the root does not exist.
            DependencyCycleError: If the id-level graph has a cycle.
            ResolutionLimitExceededError: If the walk exceeds max_depth.
            UnsatisfiedInterfacesError: If policy is BLOCKING and
                interfaces are missing.
        """
        installed_set = frozenset(installed)
        cache_key = (root_id, root_version, installed_hash(installed_set))
        generations = await self._store.generations()

        resolution = self._cache.lookup(cache_key, generations)
        if self._metrics is not None:
            self._metrics.record_cache("resolve", resolution is not None)
        if resolution is None:
            resolution, touched = await self._resolve(root_id, root_version, installed_set)
            self._cache.store(cache_key, resolution, touched, generations)

        effective = policy or self._config.missing_interface_policy
        if resolution.missing and effective is MissingInterfacePolicy.BLOCKING:
            raise UnsatisfiedInterfacesError(list(resolution.missing))
        return resolution

    async def _resolve(
        self,
        root_id: str,
        root_version: str,
        installed: frozenset[tuple[str, str]],
    ) -> tuple[Resolution, set[str]]:
        root = await self._store.get(root_id, root_version)

        walk = _Walk(installed={})
        for pid, version in installed:
            walk.installed.setdefault(pid, set()).add(version)
        walk.touched.update({root_id}, walk.installed)
        walk.entities[(root_id, root_version)] = root
        walk.planned.append(PlanEntry(root_id, root_version))

        await self._walk(root, walk)

        cycle = find_cycle(self._id_graph(walk.entities.values()), root_id)
        if cycle is not None:
            logger.info("Dependency cycle", extra={"package_id": root_id, "cycle": cycle})
            raise DependencyCycleError(cycle)

        installed_entities = await self._load_installed(installed, walk)
        planned = {(e.id, e.version) for e in walk.planned}
        planned_entities = [walk.entities[key] for key in planned]

        satisfies: set[str] = set()
        for entity in [*planned_entities, *installed_entities]:
            satisfies.update(entity.provides)
        required: set[str] = set()
        for entity in planned_entities:
            required.update(entity.requires)

        resolution = Resolution(
            plan=tuple(walk.planned),
            satisfies=tuple(sorted(satisfies)),
            missing=tuple(sorted(required - satisfies)),
            conflicts=tuple(walk.conflicts),
        )
        logger.debug(
            "Resolved",
            extra={
                "package_id": root_id,
                "version": root_version,
                "plan_size": len(resolution.plan),
                "conflicts": len(resolution.conflicts),
            },
        )
        return resolution, walk.touched

    async def _walk(self, root: Entity, walk: _Walk) -> None:
        visited = {(root.id, root.version)}
        visited_edges: set[tuple[str, str]] = set()
        queue: deque[tuple[Entity, int]] = deque([(root, 0)])

        while queue:
            entity, depth = queue.popleft()
            for dep in entity.dependencies:
                edge = (dep.id, dep.range)
                if edge in visited_edges:
                    continue
                visited_edges.add(edge)
                walk.touched.add(dep.id)
                if depth + 1 > self._config.max_depth:
                    raise ResolutionLimitExceededError(
                        f"dependency depth exceeds {self._config.max_depth} at {dep.id}"
                    )

                selection = await self._select(dep, walk)
                if selection is None:
                    walk.conflicts.append(f"no compatible version for {dep.id}@{dep.range}")
                    continue
                version, dep_entity, is_installed = selection
                node = (dep.id, version)
                # Already walked, or installed with no record here
                if node in visited or dep_entity is None:
                    continue
                visited.add(node)

                walk.entities[node] = dep_entity
                if not is_installed:
                    walk.planned.append(PlanEntry(dep.id, version))
                queue.append((dep_entity, depth + 1))

    async def _select(
        self, dep: Dependency, walk: _Walk
    ) -> tuple[str, Entity | None, bool] | None:
        """
        Pick a version for a dependency edge.

        Installed versions win. Otherwise candidates are tried newest first
        and the first one whose record can be read is taken, so a version
        that vanished between listing and reading does not hide an older
        match.
        """
        local = max_satisfying(walk.installed.get(dep.id, ()), dep.range)
        if local is not None:
            return local, await self._load(dep.id, local, walk), True
        if dep.id not in walk.versions:
            walk.versions[dep.id] = await self._store.list_versions(dep.id)
        for version in walk.versions[dep.id]:
            if not satisfies(version, dep.range):
                continue
            entity = await self._load(dep.id, version, walk)
            if entity is not None:
                return version, entity, False
            logger.info(
                "Skipping unreadable version",
                extra={"package_id": dep.id, "version": version},
            )
        return None

    async def _load(self, package_id: str, version: str, walk: _Walk) -> Entity | None:
        cached = walk.entities.get((package_id, version))
        if cached is not None:
            return cached
        try:
            return await self._store.get(package_id, version)
        except NotFoundError:
            return None

    async def _load_installed(
        self, installed: frozenset[tuple[str, str]], walk: _Walk
    ) -> list[Entity]:
        entities = []
        for key in sorted(installed):
            entity = walk.entities.get(key)
            if entity is None:
                try:
                    entity = await self._store.get(*key)
                except NotFoundError:
                    # Installed from elsewhere; contributes nothing we know of
                    continue
            entities.append(entity)
        return entities

    @staticmethod
    def _id_graph(entities: Iterable[Entity]) -> dict[str, set[str]]:
        graph: dict[str, set[str]] = {}
        for entity in entities:
            graph.setdefault(entity.id, set()).update(dep.id for dep in entity.dependencies)
        return graph

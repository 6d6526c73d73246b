"""
In-process key-value backend for tests and single-node development.

Every call yields to the event loop once so interleavings between concurrent
tasks look like they would against a networked store. Failures can be
injected per operation to exercise rollback and error paths.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict

from appregistry.errors import UnavailableError
from appregistry.storage.base import KeyValueBackend


class InMemoryBackend(KeyValueBackend):
    """Dict-backed KeyValueBackend.

    Args:
        latency_s: Artificial delay applied to every call.
    """

    def __init__(self, latency_s: float = 0.0) -> None:
        self._latency_s = latency_s
        self._values: dict[str, str] = {}
        self._sets: dict[str, set[str]] = defaultdict(set)
        self._hashes: dict[str, dict[str, str]] = defaultdict(dict)
        self._failures: dict[str, int] = {}
        self.calls: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "memory"

    def inject_failure(self, operation: str, times: int = 1) -> None:
        """Make the next `times` calls of `operation` raise UnavailableError."""
        self._failures[operation] = self._failures.get(operation, 0) + times

    async def _enter(self, operation: str, key: str) -> None:
        self.calls.append((operation, key))
        await asyncio.sleep(self._latency_s)
        remaining = self._failures.get(operation, 0)
        if remaining:
            self._failures[operation] = remaining - 1
            raise UnavailableError(f"injected failure in {operation}")

    async def set_if_absent(self, key: str, value: str) -> bool:
        await self._enter("set_if_absent", key)
        # No await between check and write: atomic on one event loop
        if key in self._values:
            return False
        self._values[key] = value
        return True

    async def get(self, key: str) -> str | None:
        await self._enter("get", key)
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        await self._enter("set", key)
        self._values[key] = value

    async def delete(self, key: str) -> None:
        await self._enter("delete", key)
        self._values.pop(key, None)
        self._sets.pop(key, None)
        self._hashes.pop(key, None)

    async def add_to_set(self, key: str, member: str) -> None:
        await self._enter("add_to_set", key)
        self._sets[key].add(member)

    async def remove_from_set(self, key: str, member: str) -> None:
        await self._enter("remove_from_set", key)
        members = self._sets.get(key)
        if members is not None:
            members.discard(member)
            if not members:
                del self._sets[key]

    async def set_members(self, key: str) -> set[str]:
        await self._enter("set_members", key)
        return set(self._sets.get(key, ()))

    async def hash_get_all(self, key: str) -> dict[str, str]:
        await self._enter("hash_get_all", key)
        return dict(self._hashes.get(key, {}))

    async def hash_set(self, key: str, field: str, value: str) -> None:
        await self._enter("hash_set", key)
        self._hashes[key][field] = value

    async def hash_incr(self, key: str, field: str, amount: int = 1) -> int:
        await self._enter("hash_incr", key)
        current = int(self._hashes[key].get(field, "0")) + amount
        self._hashes[key][field] = str(current)
        return current

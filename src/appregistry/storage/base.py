"""
Key-value backend interface.

The store needs a small set of primitives, modeled on Redis commands:
an atomic set-if-absent for the primary claim, plain get/set/delete,
sets for the version and package indexes, and hashes for aggregates,
search tokens and write generations. Values are strings (JSON text).
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, TypeVar

from appregistry.errors import UnavailableError

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")


class KeyValueBackend(ABC):
    """Abstract async key-value backend.

    Implementations must make set_if_absent atomic across every process that
    shares the backing store. All other primitives only need per-call
    atomicity.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name for logs and metrics."""
        ...

    @abstractmethod
    async def set_if_absent(self, key: str, value: str) -> bool:
        """Write value only if key does not exist. True if this call wrote it."""
        ...

    @abstractmethod
    async def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def add_to_set(self, key: str, member: str) -> None:
        ...

    @abstractmethod
    async def remove_from_set(self, key: str, member: str) -> None:
        ...

    @abstractmethod
    async def set_members(self, key: str) -> set[str]:
        ...

    @abstractmethod
    async def hash_get_all(self, key: str) -> dict[str, str]:
        ...

    @abstractmethod
    async def hash_set(self, key: str, field: str, value: str) -> None:
        ...

    @abstractmethod
    async def hash_incr(self, key: str, field: str, amount: int = 1) -> int:
        """Atomically increment an integer hash field. Returns the new value."""
        ...

    async def close(self) -> None:  # noqa: B027
        """Release connections. Optional."""

    async def __aenter__(self) -> KeyValueBackend:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()


async def bounded(awaitable: Awaitable[T], timeout_s: float, operation: str) -> T:
    """Await a backend call with a deadline.

    Raises:
        UnavailableError: If the deadline passes.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_s)
    except TimeoutError as e:
        raise UnavailableError(f"backend {operation} timed out after {timeout_s}s") from e

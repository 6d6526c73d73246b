"""
Redis-over-HTTP key-value backend.

Talks to a REST gateway that accepts one Redis command per request as a JSON
array (``["SET", "key", "value", "NX"]``) and answers ``{"result": ...}`` or
``{"error": "..."}``, authenticated with a bearer token.

Transport failures and 5xx responses are retried with exponential backoff.
The claim (SET NX) is the exception: after an ambiguous failure the key is
re-read first, and the claim only counts as ours if the stored value is
byte-identical to what we sent.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, Any

import aiohttp
import orjson

from appregistry.errors import UnavailableError
from appregistry.storage.backoff import BackoffConfig, BackoffState, compute_backoff_delay
from appregistry.storage.base import KeyValueBackend

if TYPE_CHECKING:
    from appregistry.config import BackendConfig

logger = logging.getLogger(__name__)


class RestCommandError(Exception):
    """Raised when the gateway rejects a command (4xx or an error body)."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class _TransientError(Exception):
    """Retryable transport-level failure."""


class RestKeyValueBackend(KeyValueBackend):
    """
    KeyValueBackend over a Redis REST gateway.

    Args:
        config: Backend configuration (URL, token, prefix, timeout, retries).
        session: Optional externally managed aiohttp session.
        backoff: Retry policy. max_retries defaults to config.max_retries.
        rng: Seeded Random for deterministic jitter in tests.
    """

    def __init__(
        self,
        config: BackendConfig,
        session: aiohttp.ClientSession | None = None,
        backoff: BackoffConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        self._url = config.rest_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._backoff_config = backoff or BackoffConfig(max_retries=config.max_retries)
        self._rng = rng

    @property
    def name(self) -> str:
        return "rest"

    def _key(self, key: str) -> str:
        return f"{self._config.key_prefix}{key}"

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._config.timeout_s)
            headers = {"Content-Type": "application/json"}
            if self._config.rest_token:
                headers["Authorization"] = f"Bearer {self._config.rest_token}"
            self._session = aiohttp.ClientSession(timeout=timeout, headers=headers)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if we created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _send(self, command: list[str]) -> Any:
        """Issue one command. No retry."""
        session = await self._get_session()
        try:
            async with session.post(self._url, data=orjson.dumps(command)) as response:
                body = await response.read()
                if response.status >= 500:
                    raise _TransientError(f"gateway returned {response.status}")
                try:
                    data = orjson.loads(body) if body else {}
                except orjson.JSONDecodeError as e:
                    raise _TransientError("gateway returned malformed JSON") from e
                if response.status >= 400 or "error" in data:
                    raise RestCommandError(
                        str(data.get("error", f"HTTP {response.status}")),
                        status=response.status,
                    )
                return data.get("result")
        except (aiohttp.ClientError, TimeoutError) as e:
            raise _TransientError(str(e) or type(e).__name__) from e

    async def _execute(self, *command: str) -> Any:
        """Issue a command, retrying transient failures with backoff."""
        state = BackoffState()
        while True:
            try:
                return await self._send(list(command))
            except _TransientError as e:
                state.record_error()
                if state.exhausted(self._backoff_config):
                    logger.error(
                        "Key-value command failed, retries exhausted",
                        extra={"command": command[0], "attempt": state.attempt, "error": str(e)},
                    )
                    raise UnavailableError(f"backend {command[0]} failed: {e}") from e
                delay_ms = compute_backoff_delay(self._backoff_config, state, rng=self._rng)
                logger.warning(
                    "Key-value command failed, retrying",
                    extra={"command": command[0], "attempt": state.attempt, "delay_ms": delay_ms},
                )
                if delay_ms > 0:
                    await asyncio.sleep(delay_ms / 1000)
            except RestCommandError as e:
                logger.error(
                    "Key-value command rejected",
                    extra={"command": command[0], "status": e.status, "error": str(e)},
                )
                raise UnavailableError(f"backend rejected {command[0]}: {e}") from e

    async def set_if_absent(self, key: str, value: str) -> bool:
        full_key = self._key(key)
        state = BackoffState()
        while True:
            try:
                result = await self._send(["SET", full_key, value, "NX"])
                return result == "OK"
            except _TransientError as e:
                # Outcome unknown: the write may have landed before the failure
                stored = await self._execute("GET", full_key)
                if stored is not None:
                    logger.info(
                        "Resolved ambiguous claim by re-read",
                        extra={"key": key, "claimed": stored == value},
                    )
                    return stored == value
                state.record_error()
                if state.exhausted(self._backoff_config):
                    raise UnavailableError(f"backend SET NX failed: {e}") from e
                delay_ms = compute_backoff_delay(self._backoff_config, state, rng=self._rng)
                if delay_ms > 0:
                    await asyncio.sleep(delay_ms / 1000)
            except RestCommandError as e:
                raise UnavailableError(f"backend rejected SET NX: {e}") from e

    async def get(self, key: str) -> str | None:
        return await self._execute("GET", self._key(key))

    async def set(self, key: str, value: str) -> None:
        await self._execute("SET", self._key(key), value)

    async def delete(self, key: str) -> None:
        await self._execute("DEL", self._key(key))

    async def add_to_set(self, key: str, member: str) -> None:
        await self._execute("SADD", self._key(key), member)

    async def remove_from_set(self, key: str, member: str) -> None:
        await self._execute("SREM", self._key(key), member)

    async def set_members(self, key: str) -> set[str]:
        result = await self._execute("SMEMBERS", self._key(key))
        return set(result or ())

    async def hash_get_all(self, key: str) -> dict[str, str]:
        result = await self._execute("HGETALL", self._key(key))
        if not result:
            return {}
        if isinstance(result, dict):
            return {str(k): str(v) for k, v in result.items()}
        # Flat [field, value, field, value, ...] reply
        return {str(result[i]): str(result[i + 1]) for i in range(0, len(result) - 1, 2)}

    async def hash_set(self, key: str, field: str, value: str) -> None:
        await self._execute("HSET", self._key(key), field, value)

    async def hash_incr(self, key: str, field: str, amount: int = 1) -> int:
        return int(await self._execute("HINCRBY", self._key(key), field, str(amount)))

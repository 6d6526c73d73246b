"""Pluggable key-value backends for the entity store."""

from __future__ import annotations

from typing import TYPE_CHECKING

from appregistry.config import BackendKind
from appregistry.storage.base import KeyValueBackend, bounded
from appregistry.storage.memory import InMemoryBackend
from appregistry.storage.rest import RestKeyValueBackend

if TYPE_CHECKING:
    from appregistry.config import BackendConfig


def create_backend(config: BackendConfig) -> KeyValueBackend:
    """Build the backend selected by configuration."""
    if config.kind == BackendKind.REST:
        return RestKeyValueBackend(config)
    return InMemoryBackend()


__all__ = [
    "InMemoryBackend",
    "KeyValueBackend",
    "RestKeyValueBackend",
    "bounded",
    "create_backend",
]

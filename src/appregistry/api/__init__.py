"""aiohttp HTTP surface."""

from appregistry.api.server import (
    ACTOR_HEADER,
    create_registry_app,
    start_registry_server,
    stop_registry_server,
)

__all__ = [
    "ACTOR_HEADER",
    "create_registry_app",
    "start_registry_server",
    "stop_registry_server",
]

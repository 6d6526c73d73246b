"""
Registry configuration.

Plain dataclasses validated in __post_init__. Secrets (the key-value REST
token) fall back to environment variables and are never logged.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

# Env vars whose values must never be logged
REDACTED_ENV_VARS = frozenset({"REGISTRY_KV_REST_TOKEN"})


class BackendKind(str, Enum):
    """Backing key-value store implementation."""

    MEMORY = "memory"
    REST = "rest"


class MissingInterfacePolicy(str, Enum):
    """What the resolver does when required interfaces are not provided."""

    ADVISORY = "advisory"  # report in `missing`, return the plan
    BLOCKING = "blocking"  # raise UnsatisfiedInterfacesError


@dataclass
class BackendConfig:
    """Key-value backend configuration."""

    kind: BackendKind = BackendKind.MEMORY
    rest_url: str = ""  # From REGISTRY_KV_REST_URL env var
    rest_token: str = ""  # From REGISTRY_KV_REST_TOKEN env var
    key_prefix: str = ""
    timeout_s: float = 5.0
    max_retries: int = 3

    def __post_init__(self) -> None:
        self.kind = BackendKind(self.kind)
        if self.kind == BackendKind.REST:
            if not self.rest_url:
                self.rest_url = os.environ.get("REGISTRY_KV_REST_URL", "")
            if not self.rest_token:
                self.rest_token = os.environ.get("REGISTRY_KV_REST_TOKEN", "")
            if not self.rest_url:
                raise ValueError("REGISTRY_KV_REST_URL required when rest backend selected")
        if self.timeout_s <= 0:
            raise ValueError(f"timeout_s must be > 0, got {self.timeout_s}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")


@dataclass
class LimitsConfig:
    """Size limits enforced before any expensive work begins."""

    max_payload_bytes: int = 256 * 1024
    max_dependencies: int = 32
    max_search_results: int = 100
    max_query_length: int = 128

    def __post_init__(self) -> None:
        if self.max_payload_bytes < 1024:
            raise ValueError(f"max_payload_bytes must be >= 1024, got {self.max_payload_bytes}")
        if not 0 <= self.max_dependencies <= 32:
            raise ValueError(f"max_dependencies must be in [0, 32], got {self.max_dependencies}")
        if self.max_search_results < 1:
            raise ValueError(f"max_search_results must be >= 1, got {self.max_search_results}")
        if self.max_query_length < 1:
            raise ValueError(f"max_query_length must be >= 1, got {self.max_query_length}")


@dataclass
class SignatureConfig:
    """Signature policy. A present signature must always verify."""

    allow_unsigned_manifests: bool = True
    allow_unsigned_bundles: bool = True


@dataclass
class ResolverConfig:
    """Dependency resolver configuration."""

    max_depth: int = 64
    cache_size: int = 1000
    missing_interface_policy: MissingInterfacePolicy = MissingInterfacePolicy.ADVISORY

    def __post_init__(self) -> None:
        self.missing_interface_policy = MissingInterfacePolicy(self.missing_interface_policy)
        if self.max_depth < 1:
            raise ValueError(f"max_depth must be >= 1, got {self.max_depth}")
        if self.cache_size < 0:
            raise ValueError(f"cache_size must be >= 0, got {self.cache_size}")


@dataclass
class ServerConfig:
    """HTTP listener configuration."""

    host: str = "0.0.0.0"
    port: int = 8080

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError(f"port must be in (0, 65536), got {self.port}")


@dataclass
class RegistryConfig:
    """Main registry configuration."""

    backend: BackendConfig = field(default_factory=BackendConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    signatures: SignatureConfig = field(default_factory=SignatureConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    search_cache_size: int = 256

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> RegistryConfig:
        """Build configuration from REGISTRY_* environment variables."""
        env = os.environ if env is None else env

        def _bool(name: str, default: bool) -> bool:
            raw = env.get(name)
            if raw is None:
                return default
            return raw.strip().lower() in {"1", "true", "yes", "on"}

        backend = BackendConfig(
            kind=BackendKind(env.get("REGISTRY_BACKEND", "memory").lower()),
            rest_url=env.get("REGISTRY_KV_REST_URL", ""),
            rest_token=env.get("REGISTRY_KV_REST_TOKEN", ""),
            key_prefix=env.get("REGISTRY_KEY_PREFIX", ""),
            timeout_s=float(env.get("REGISTRY_KV_TIMEOUT_S", "5.0")),
            max_retries=int(env.get("REGISTRY_KV_MAX_RETRIES", "3")),
        )
        limits = LimitsConfig(
            max_payload_bytes=int(env.get("REGISTRY_MAX_PAYLOAD_BYTES", str(256 * 1024))),
            max_dependencies=int(env.get("REGISTRY_MAX_DEPENDENCIES", "32")),
            max_search_results=int(env.get("REGISTRY_MAX_SEARCH_RESULTS", "100")),
            max_query_length=int(env.get("REGISTRY_MAX_QUERY_LENGTH", "128")),
        )
        signatures = SignatureConfig(
            allow_unsigned_manifests=_bool("REGISTRY_ALLOW_UNSIGNED_MANIFESTS", True),
            allow_unsigned_bundles=_bool("REGISTRY_ALLOW_UNSIGNED_BUNDLES", True),
        )
        resolver = ResolverConfig(
            max_depth=int(env.get("REGISTRY_MAX_RESOLUTION_DEPTH", "64")),
            cache_size=int(env.get("REGISTRY_RESOLVE_CACHE_SIZE", "1000")),
            missing_interface_policy=MissingInterfacePolicy(
                env.get("REGISTRY_MISSING_INTERFACE_POLICY", "advisory").lower()
            ),
        )
        server = ServerConfig(
            host=env.get("REGISTRY_HOST", "0.0.0.0"),
            port=int(env.get("REGISTRY_PORT", "8080")),
        )
        return cls(
            backend=backend,
            limits=limits,
            signatures=signatures,
            resolver=resolver,
            server=server,
            search_cache_size=int(env.get("REGISTRY_SEARCH_CACHE_SIZE", "256")),
        )

"""Config validation tests for RegistryConfig and its sections."""

from __future__ import annotations

import os
from unittest import mock

import pytest

from appregistry.config import (
    BackendConfig,
    BackendKind,
    LimitsConfig,
    MissingInterfacePolicy,
    RegistryConfig,
    ResolverConfig,
    ServerConfig,
)


class TestConfigValidation:
    """__post_init__ validation."""

    def test_default_config_valid(self) -> None:
        config = RegistryConfig()
        assert config.backend.kind is BackendKind.MEMORY
        assert config.limits.max_dependencies == 32
        assert config.resolver.missing_interface_policy is MissingInterfacePolicy.ADVISORY
        assert config.signatures.allow_unsigned_bundles is True

    def test_rest_backend_requires_url(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValueError, match="REGISTRY_KV_REST_URL"):
                BackendConfig(kind=BackendKind.REST)

    def test_rest_backend_url_from_env(self) -> None:
        env = {"REGISTRY_KV_REST_URL": "https://kv.example.com", "REGISTRY_KV_REST_TOKEN": "t"}
        with mock.patch.dict(os.environ, env, clear=True):
            config = BackendConfig(kind="rest")
        assert config.kind is BackendKind.REST
        assert config.rest_url == "https://kv.example.com"
        assert config.rest_token == "t"

    def test_invalid_timeout(self) -> None:
        with pytest.raises(ValueError, match="timeout_s"):
            BackendConfig(timeout_s=0)

    def test_invalid_max_retries(self) -> None:
        with pytest.raises(ValueError, match="max_retries"):
            BackendConfig(max_retries=-1)

    def test_payload_limit_floor(self) -> None:
        with pytest.raises(ValueError, match="max_payload_bytes"):
            LimitsConfig(max_payload_bytes=100)

    def test_dependency_limit_capped(self) -> None:
        with pytest.raises(ValueError, match="max_dependencies"):
            LimitsConfig(max_dependencies=33)

    def test_invalid_search_results(self) -> None:
        with pytest.raises(ValueError, match="max_search_results"):
            LimitsConfig(max_search_results=0)

    def test_invalid_max_depth(self) -> None:
        with pytest.raises(ValueError, match="max_depth"):
            ResolverConfig(max_depth=0)

    def test_invalid_cache_size(self) -> None:
        with pytest.raises(ValueError, match="cache_size"):
            ResolverConfig(cache_size=-1)

    def test_policy_from_string(self) -> None:
        config = ResolverConfig(missing_interface_policy="blocking")
        assert config.missing_interface_policy is MissingInterfacePolicy.BLOCKING

    def test_unknown_policy(self) -> None:
        with pytest.raises(ValueError):
            ResolverConfig(missing_interface_policy="strict")

    @pytest.mark.parametrize("port", [0, -1, 70000])
    def test_invalid_port(self, port: int) -> None:
        with pytest.raises(ValueError, match="port"):
            ServerConfig(port=port)


class TestFromEnv:
    """RegistryConfig.from_env."""

    def test_empty_env_gives_defaults(self) -> None:
        config = RegistryConfig.from_env({})
        assert config == RegistryConfig()

    def test_env_overrides(self) -> None:
        config = RegistryConfig.from_env(
            {
                "REGISTRY_BACKEND": "REST",
                "REGISTRY_KV_REST_URL": "https://kv.example.com",
                "REGISTRY_KV_REST_TOKEN": "secret",
                "REGISTRY_KEY_PREFIX": "staging:",
                "REGISTRY_MAX_PAYLOAD_BYTES": "65536",
                "REGISTRY_MAX_QUERY_LENGTH": "64",
                "REGISTRY_ALLOW_UNSIGNED_MANIFESTS": "false",
                "REGISTRY_MAX_RESOLUTION_DEPTH": "8",
                "REGISTRY_MISSING_INTERFACE_POLICY": "Blocking",
                "REGISTRY_PORT": "9000",
                "REGISTRY_SEARCH_CACHE_SIZE": "0",
            }
        )
        assert config.backend.kind is BackendKind.REST
        assert config.backend.key_prefix == "staging:"
        assert config.limits.max_payload_bytes == 65536
        assert config.limits.max_query_length == 64
        assert config.signatures.allow_unsigned_manifests is False
        assert config.signatures.allow_unsigned_bundles is True
        assert config.resolver.max_depth == 8
        assert config.resolver.missing_interface_policy is MissingInterfacePolicy.BLOCKING
        assert config.server.port == 9000
        assert config.search_cache_size == 0

    def test_env_values_validated(self) -> None:
        with pytest.raises(ValueError, match="max_dependencies"):
            RegistryConfig.from_env({"REGISTRY_MAX_DEPENDENCIES": "100"})

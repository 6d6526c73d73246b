"""
HTTP tests for the registry app.

Drives the aiohttp application in-process through TestClient/TestServer
with an in-memory backend.
"""

from __future__ import annotations

from typing import Any

import orjson
import pytest
from aiohttp.test_utils import TestClient, TestServer

from appregistry.api.server import ACTOR_HEADER, create_registry_app
from appregistry.config import RegistryConfig
from appregistry.metrics import RegistryMetrics
from appregistry.service import RegistryService
from appregistry.signing.verifier import b64url_encode, generate_keypair, sign_document
from appregistry.storage.memory import InMemoryBackend
from tests.fixtures.documents import dep, make_bundle, make_manifest


@pytest.fixture()
def metrics() -> RegistryMetrics:
    return RegistryMetrics()


@pytest.fixture()
def service(metrics: RegistryMetrics) -> RegistryService:
    return RegistryService.from_config(
        RegistryConfig(), backend=InMemoryBackend(), metrics=metrics
    )


def _client(service: RegistryService, metrics: RegistryMetrics | None = None) -> TestClient:
    return TestClient(TestServer(create_registry_app(service, metrics)))


async def _post_json(client: TestClient, path: str, body: Any) -> Any:
    return await client.post(path, data=orjson.dumps(body))


class TestSubmitFlow:
    """Submit, duplicate and list."""

    @pytest.mark.asyncio
    async def test_submit_duplicate_then_list(self, service: RegistryService) -> None:
        """201, then 409 for the same (id, version), then the version list."""
        async with _client(service) as client:
            resp = await _post_json(client, "/", make_manifest())
            assert resp.status == 201
            assert await resp.json() == {
                "id": "com.example.app",
                "version": "1.0.0",
                "canonical_uri": "/com.example.app/1.0.0?canonical=true",
            }

            resp = await _post_json(client, "/", make_manifest())
            assert resp.status == 409
            assert (await resp.json())["error"] == "already_exists"

            resp = await client.get("/com.example.app")
            assert resp.status == 200
            assert await resp.json() == {"id": "com.example.app", "versions": ["1.0.0"]}

    @pytest.mark.asyncio
    async def test_invalid_schema(self, service: RegistryService) -> None:
        async with _client(service) as client:
            resp = await _post_json(client, "/", make_manifest(chains=[]))
            assert resp.status == 400
            body = await resp.json()
            assert body["error"] == "invalid_schema"
            assert body["details"]

    @pytest.mark.asyncio
    async def test_invalid_json_body(self, service: RegistryService) -> None:
        async with _client(service) as client:
            resp = await client.post("/", data=b"{oops")
            assert resp.status == 400
            assert (await resp.json())["error"] == "invalid_schema"

    @pytest.mark.asyncio
    async def test_payload_too_large(self, service: RegistryService) -> None:
        async with _client(service) as client:
            resp = await client.post("/", data=b" " * (300 * 1024))
            assert resp.status == 413
            assert (await resp.json())["error"] == "payload_too_large"

    @pytest.mark.asyncio
    async def test_bad_signature(self, service: RegistryService) -> None:
        sk, _ = generate_keypair()
        signed = sign_document(make_manifest(), sk)
        signed["chains"] = ["near:mainnet"]
        async with _client(service) as client:
            resp = await _post_json(client, "/", signed)
            assert resp.status == 400
            assert (await resp.json())["error"] == "invalid_signature"

    @pytest.mark.asyncio
    async def test_typed_routes(self, service: RegistryService) -> None:
        async with _client(service) as client:
            resp = await _post_json(client, "/v1/apps", make_bundle())
            assert resp.status == 400
            resp = await _post_json(client, "/v2/bundles", make_bundle())
            assert resp.status == 201
            resp = await _post_json(client, "/v1/apps", make_manifest())
            assert resp.status == 201

            resp = await client.get("/v2/bundles/com.example.bundle/1.0.0")
            assert resp.status == 200
            assert (await resp.json())["package"] == "com.example.bundle"
            resp = await client.get("/v1/apps/com.example.app")
            assert (await resp.json())["versions"] == ["1.0.0"]

    @pytest.mark.asyncio
    async def test_actor_header_checked_for_ownership(self, service: RegistryService) -> None:
        _, owner_pk = generate_keypair()
        _, other_pk = generate_keypair()
        owner = b64url_encode(owner_pk)
        async with _client(service) as client:
            resp = await _post_json(client, "/", make_bundle(owners=[owner]))
            assert resp.status == 201

            resp = await client.post(
                "/",
                data=orjson.dumps(make_bundle(app_version="1.1.0")),
                headers={ACTOR_HEADER: b64url_encode(other_pk)},
            )
            assert resp.status == 403
            assert (await resp.json())["error"] == "not_owner"

            resp = await client.post(
                "/",
                data=orjson.dumps(make_bundle(app_version="1.1.0")),
                headers={ACTOR_HEADER: owner},
            )
            assert resp.status == 201


class TestReads:
    """Entity, package and search reads."""

    @pytest.mark.asyncio
    async def test_get_entity_and_canonical(self, service: RegistryService) -> None:
        async with _client(service) as client:
            await _post_json(client, "/", make_manifest())
            resp = await client.get("/com.example.app/1.0.0")
            assert resp.status == 200
            body = await resp.json()
            assert body["id"] == "com.example.app"
            assert "canonical_jcs" not in body

            resp = await client.get("/com.example.app/1.0.0", params={"canonical": "true"})
            canonical = (await resp.json())["canonical_jcs"]
            assert orjson.loads(canonical)["version"] == "1.0.0"
            assert " " not in canonical

    @pytest.mark.asyncio
    async def test_not_found(self, service: RegistryService) -> None:
        async with _client(service) as client:
            resp = await client.get("/com.example.missing")
            assert resp.status == 404
            assert (await resp.json())["error"] == "not_found"
            resp = await client.get("/com.example.missing/1.0.0")
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_packages(self, service: RegistryService) -> None:
        async with _client(service) as client:
            await _post_json(client, "/", make_manifest(version="1.0.0"))
            await _post_json(client, "/", make_manifest(version="1.2.0"))
            resp = await client.get("/packages")
            assert resp.status == 200
            packages = (await resp.json())["packages"]
            assert [(p["id"], p["latest_version"]) for p in packages] == [
                ("com.example.app", "1.2.0")
            ]

    @pytest.mark.asyncio
    async def test_search(self, service: RegistryService) -> None:
        async with _client(service) as client:
            await _post_json(client, "/", make_manifest(provides=["wallet.sign@1"]))
            resp = await client.get("/search", params={"q": "wallet"})
            assert resp.status == 200
            hits = await resp.json()
            assert hits == [
                {
                    "id": "com.example.app",
                    "version": "1.0.0",
                    "provides": ["wallet.sign@1"],
                    "requires": [],
                }
            ]

            resp = await client.get("/search", params={"q": "zzz"})
            assert await resp.json() == []

    @pytest.mark.asyncio
    async def test_search_errors(self, service: RegistryService) -> None:
        async with _client(service) as client:
            resp = await client.get("/search")
            assert resp.status == 400
            assert (await resp.json())["error"] == "invalid_query"
            resp = await client.get("/search", params={"q": "app", "limit": "ten"})
            assert resp.status == 400


class TestResolve:
    """POST /resolve."""

    @pytest.mark.asyncio
    async def test_resolve_plan(self, service: RegistryService) -> None:
        async with _client(service) as client:
            await _post_json(
                client,
                "/",
                make_manifest(requires=["kv@1"], dependencies=[dep("com.example.lib", "^1.0.0")]),
            )
            await _post_json(client, "/", make_manifest("com.example.lib", provides=["kv@1"]))
            resp = await _post_json(
                client, "/resolve", {"root": {"id": "com.example.app", "version": "1.0.0"}}
            )
            assert resp.status == 200
            assert await resp.json() == {
                "plan": [
                    {"id": "com.example.app", "version": "1.0.0"},
                    {"id": "com.example.lib", "version": "1.0.0"},
                ],
                "satisfies": ["kv@1"],
                "missing": [],
                "conflicts": [],
            }

    @pytest.mark.asyncio
    async def test_resolve_unknown_root(self, service: RegistryService) -> None:
        async with _client(service) as client:
            resp = await _post_json(
                client, "/resolve", {"root": {"id": "com.example.app", "version": "1.0.0"}}
            )
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_resolve_cycle(self, service: RegistryService) -> None:
        async with _client(service) as client:
            await _post_json(
                client, "/", make_manifest("com.example.a", dependencies=[dep("com.example.b", "*")])
            )
            await _post_json(
                client, "/", make_manifest("com.example.b", dependencies=[dep("com.example.a", "*")])
            )
            resp = await _post_json(
                client, "/resolve", {"root": {"id": "com.example.a", "version": "1.0.0"}}
            )
            assert resp.status == 409
            body = await resp.json()
            assert body["error"] == "dependency_cycle"
            assert body["details"] == ["com.example.a", "com.example.b", "com.example.a"]

    @pytest.mark.asyncio
    async def test_resolve_bad_request(self, service: RegistryService) -> None:
        async with _client(service) as client:
            resp = await client.post("/resolve", data=b"not json")
            assert resp.status == 400
            resp = await _post_json(client, "/resolve", {"root": "com.example.app"})
            assert resp.status == 400
            assert (await resp.json())["error"] == "invalid_schema"


class TestOperational:
    """Health, metrics and unexpected errors."""

    @pytest.mark.asyncio
    async def test_healthz(self, service: RegistryService) -> None:
        async with _client(service) as client:
            resp = await client.get("/healthz")
            assert resp.status == 200
            assert (await resp.json())["status"] == "ok"

    @pytest.mark.asyncio
    async def test_metrics_endpoint(
        self, service: RegistryService, metrics: RegistryMetrics
    ) -> None:
        async with _client(service, metrics) as client:
            await _post_json(client, "/", make_manifest())
            resp = await client.get("/metrics")
            assert resp.status == 200
            assert "version=0.0.4" in resp.headers.get("Content-Type", "")
            body = await resp.text()
            assert (
                'appregistry_submissions_total{kind="manifest",outcome="created"} 1.0' in body
            )
            assert "appregistry_http_requests_total" in body

    @pytest.mark.asyncio
    async def test_request_metrics_use_route_template(
        self, service: RegistryService, metrics: RegistryMetrics
    ) -> None:
        async with _client(service, metrics) as client:
            await client.get("/com.example.missing")
        value = metrics.registry.get_sample_value(
            "appregistry_http_requests_total",
            {"route": "/{id}", "method": "GET", "status": "404"},
        )
        assert value == 1.0

    @pytest.mark.asyncio
    async def test_unexpected_error_is_generic_500(
        self, service: RegistryService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def boom() -> dict[str, Any]:
            raise RuntimeError("secret internals")

        monkeypatch.setattr(service, "list_packages", boom)
        async with _client(service) as client:
            resp = await client.get("/packages")
            assert resp.status == 500
            body = await resp.json()
            assert body == {"error": "internal_error", "message": "internal error"}

    @pytest.mark.asyncio
    async def test_backend_outage_is_503(self, service: RegistryService) -> None:
        backend = service.store.backend
        assert isinstance(backend, InMemoryBackend)
        backend.inject_failure("set_if_absent")
        async with _client(service) as client:
            resp = await _post_json(client, "/", make_manifest())
            assert resp.status == 503
            assert (await resp.json())["error"] == "unavailable"

"""Tests for CloudflareClient against a mocked HTTP transport."""
import json

import httpx
import pytest

from burrow.core.exceptions import ApiError, ConfigurationError
from burrow.core.types import CloudflareConfig
from burrow.tunnel.cloudflare import CloudflareClient


CONFIG = CloudflareConfig(api_token="cf-token", account_id="acct", domain="example.com")
SLUG = "a1b2c3"


def ok(result) -> httpx.Response:
    return httpx.Response(200, json={"success": True, "result": result})


def make_client(handler) -> CloudflareClient:
    return CloudflareClient.from_config(CONFIG, transport=httpx.MockTransport(handler))


class TestCloudflareClient:
    """Tests for CloudflareClient."""

    def test_requires_credentials(self):
        with pytest.raises(ConfigurationError):
            CloudflareClient(api_token=None, account_id="acct")
        with pytest.raises(ConfigurationError):
            CloudflareClient(api_token="t", account_id=None)

    async def test_get_zone_id(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Bearer cf-token"
            assert request.url.params["name"] == "example.com"
            return ok([{"id": "zone-1", "name": "example.com"}])

        assert await make_client(handler).get_zone_id("example.com") == "zone-1"

    async def test_missing_zone(self):
        with pytest.raises(ConfigurationError, match="Zone not found"):
            await make_client(lambda request: ok([])).get_zone_id("example.com")

    async def test_ensure_dns_record_creates(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.method == "GET":
                return ok([])
            body = json.loads(request.content)
            return ok({"id": "rec-1", **body})

        record = await make_client(handler).ensure_dns_record("zone-1", "www.example.com", "tunnel-1")

        assert [r.method for r in requests] == ["GET", "POST"]
        assert record.content == "tunnel-1.cfargotunnel.com"
        assert record.proxied is True

    async def test_ensure_dns_record_repoints(self):
        methods: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            if request.method == "GET":
                return ok([{"id": "rec-1", "type": "CNAME", "name": "www.example.com", "content": "old.cfargotunnel.com"}])
            assert request.url.path.endswith("/dns_records/rec-1")
            return ok({"id": "rec-1", **json.loads(request.content)})

        await make_client(handler).ensure_dns_record("zone-1", "www.example.com", "tunnel-1")

        assert methods == ["GET", "PUT"]

    async def test_ensure_dns_record_unchanged(self):
        methods: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            return ok([{"id": "rec-1", "name": "www.example.com", "content": "tunnel-1.cfargotunnel.com"}])

        await make_client(handler).ensure_dns_record("zone-1", "www.example.com", "tunnel-1")

        assert methods == ["GET"]

    async def test_get_tunnel_missing(self):
        client = make_client(lambda request: httpx.Response(404, json={"success": False, "errors": []}))

        assert await client.get_tunnel("tunnel-1") is None

    async def test_find_or_create_tunnel(self):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return ok([])
            bodies.append(json.loads(request.content))
            return ok({"id": "tunnel-1", "name": bodies[-1]["name"]})

        tunnel = await make_client(handler).find_or_create_tunnel(f"burrow-sandbox-{SLUG}")

        assert tunnel.id == "tunnel-1"
        assert bodies[0]["config_src"] == "cloudflare"
        assert bodies[0]["tunnel_secret"]

    async def test_deploy_worker_uploads_module_and_bindings(self):
        uploads: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            uploads.append(request)
            return ok({"id": f"burrow-sandbox-widget-{SLUG}"})

        await make_client(handler).deploy_worker(SLUG, "secret-token", CONFIG)

        request = uploads[0]
        assert request.method == "PUT"
        assert request.url.path == f"/client/v4/accounts/acct/workers/scripts/burrow-sandbox-widget-{SLUG}"
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        body = request.content.decode()
        assert '"ACCESS_TOKEN"' in body
        assert "secret-token" in body
        assert 'filename="worker.js"' in body

    async def test_deploy_worker_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": False, "errors": [{"message": "bad script"}]})

        with pytest.raises(ApiError, match="bad script"):
            await make_client(handler).deploy_worker(SLUG, "t", CONFIG)

    async def test_iframe_rule_added_once(self):
        calls: list[str] = []
        rule = {"description": "Allow iframe for burrow-sandbox-* subdomains"}

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.method)
            return ok([{"id": "rs-1", "phase": "http_response_headers_transform", "rules": [rule]}])

        await make_client(handler).ensure_sandbox_iframe_rule("zone-1")

        assert calls == ["GET"]

    async def test_worker_route_reused(self):
        pattern = f"burrow-sandbox-{SLUG}.example.com/*"
        methods: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            return ok([{"id": "route-1", "pattern": pattern, "script": "x"}])

        route = await make_client(handler).create_worker_route("zone-1", SLUG, "example.com")

        assert route["id"] == "route-1"
        assert methods == ["GET"]

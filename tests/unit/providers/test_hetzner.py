"""Tests for the Hetzner client against a mocked HTTP transport."""
import json

import httpx
import pytest

from burrow.core.exceptions import ApiError, ConfigurationError
from burrow.providers.hetzner import HetznerClient


SERVER = {
    "id": 42,
    "name": "burrow-sandbox-fix-login",
    "status": "running",
    "public_net": {"ipv4": {"ip": "203.0.113.10"}},
    "private_net": [],
    "server_type": {"name": "cpx11"},
    "datacenter": {"name": "ash-dc1"},
    "labels": {"burrow": "sandbox"},
}


def make_client(handler) -> HetznerClient:
    return HetznerClient(api_key="token", transport=httpx.MockTransport(handler))


class TestHetznerClient:
    """Tests for HetznerClient."""

    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError):
            HetznerClient(api_key=None)

    async def test_find_or_create_server_reuses_existing(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"servers": [SERVER]})

        server = await make_client(handler).find_or_create_server("burrow-sandbox-fix-login", server_type="cpx11")

        assert server.id == "42"
        assert server.public_ipv4 == "203.0.113.10"
        assert server.running
        assert [r.method for r in requests] == ["GET"]
        assert requests[0].url.params["name"] == "burrow-sandbox-fix-login"
        assert requests[0].headers["Authorization"] == "Bearer token"

    async def test_find_or_create_server_creates_when_missing(self):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json={"servers": []})
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"server": SERVER})

        server = await make_client(handler).find_or_create_server(
            "burrow-sandbox-fix-login",
            server_type="cpx11",
            location="ash",
            user_data="#cloud-config",
            firewall_ids=["7"],
            network_ids=["9"],
        )

        assert server.name == "burrow-sandbox-fix-login"
        assert bodies[0]["firewalls"] == [{"firewall": 7}]
        assert bodies[0]["networks"] == [9]
        assert bodies[0]["user_data"] == "#cloud-config"
        assert bodies[0]["start_after_create"] is True

    async def test_get_server_missing_returns_none(self):
        client = make_client(lambda request: httpx.Response(404, json={"error": {"code": "not_found"}}))

        assert await client.get_server("42") is None

    async def test_delete_missing_server_is_noop(self):
        methods: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            return httpx.Response(404, json={})

        await make_client(handler).delete_server("42")

        assert methods == ["GET"]

    async def test_delete_firewall_404_is_tolerated(self):
        client = make_client(lambda request: httpx.Response(404))

        assert await client.delete_firewall("7") is None

    async def test_error_status_maps_to_api_error(self):
        client = make_client(lambda request: httpx.Response(401, json={"error": {"message": "bad token"}}))

        with pytest.raises(ApiError) as exc_info:
            await client.list_servers()

        assert exc_info.value.status == 401
        assert exc_info.value.unauthorized
        assert "[401] Unauthorized" in str(exc_info.value)

    async def test_rate_limit_is_flagged(self):
        client = make_client(lambda request: httpx.Response(429, json={"message": "slow down"}))

        with pytest.raises(ApiError) as exc_info:
            await client.list_networks()

        assert exc_info.value.rate_limited

    async def test_transport_error_becomes_api_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ApiError, match="Cannot reach"):
            await make_client(handler).list_firewalls()

    async def test_network_zone_follows_location(self):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json={"networks": []})
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"network": {"id": 9, "name": "n"}})

        network = await make_client(handler).find_or_create_network("n", location="fsn1")

        assert network.id == "9"
        assert bodies[0]["subnets"][0]["network_zone"] == "eu-central"

    async def test_firewall_defaults_to_ssh_rule(self):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json={"firewalls": []})
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"firewall": {"id": 7, "name": "fw"}})

        await make_client(handler).find_or_create_firewall("fw")

        assert bodies[0]["rules"][0]["port"] == "22"
        assert bodies[0]["rules"][0]["direction"] == "in"

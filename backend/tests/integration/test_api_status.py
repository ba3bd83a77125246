"""
Integration tests for the health and status API endpoints.

These tests drive the FastAPI app through httpx with a test poller whose
backends are served by httpx.MockTransport.
"""
import json

import httpx
import pytest

from tests.fixtures.factories import create_plex_metadata, create_plex_payload, create_server_entry


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, async_client):
        response = await async_client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestGetStatus:
    """Tests for GET /api/status endpoint."""

    @pytest.mark.asyncio
    async def test_setup_mode_without_servers(self, async_client):
        """No enabled backends means the app still needs setting up."""
        response = await async_client.get("/api/status")
        assert response.status_code == 200

        data = response.json()
        assert data["servers"] == []
        assert data["statuses"] == {}
        assert data["setup"] is True
        assert data["lastPoll"]["timestamp"] is None

    @pytest.mark.asyncio
    async def test_status_after_refresh(self, async_client, test_poller, servers_file):
        servers_file.write_text(json.dumps([
            create_server_entry(id="plex", type="plex", base_url="http://plex.local", token="secret"),
        ]))
        test_poller._transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json=create_plex_payload(create_plex_metadata()))
        )

        response = await async_client.post("/api/status/refresh")
        assert response.status_code == 200
        assert response.json()["refreshed"] is True

        data = (await async_client.get("/api/status")).json()
        assert data["setup"] is False
        assert [s["id"] for s in data["servers"]] == ["plex"]
        status = data["statuses"]["plex"]
        assert status["online"] is True
        assert status["payloadType"] == "plex"
        assert status["sessionCount"] == 1
        assert status["summary"]["directPlays"] == 1
        assert data["lastPoll"]["error"] is None

    @pytest.mark.asyncio
    async def test_token_is_never_exposed(self, async_client, test_poller, servers_file):
        servers_file.write_text(json.dumps([
            create_server_entry(id="plex", type="plex", token="super-secret-token"),
        ]))
        test_poller._transport = httpx.MockTransport(lambda request: httpx.Response(401))
        await async_client.post("/api/status/refresh")

        response = await async_client.get("/api/status")
        assert "super-secret-token" not in response.text
        assert response.json()["statuses"]["plex"]["online"] is False

    @pytest.mark.asyncio
    async def test_all_offline_is_well_formed(self, async_client, test_poller, servers_file):
        servers_file.write_text(json.dumps([
            create_server_entry(id="a"),
            create_server_entry(id="b"),
        ]))

        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        test_poller._transport = httpx.MockTransport(refuse)
        await async_client.post("/api/status/refresh")

        data = (await async_client.get("/api/status")).json()
        assert set(data["statuses"]) == {"a", "b"}
        assert all(not s["online"] for s in data["statuses"].values())
        assert all(s["summary"]["totalStreams"] == 0 for s in data["statuses"].values())

    @pytest.mark.asyncio
    async def test_disabled_servers_are_hidden(self, async_client, servers_file):
        servers_file.write_text(json.dumps([
            create_server_entry(id="a", disabled=True),
        ]))
        data = (await async_client.get("/api/status")).json()
        assert data["servers"] == []
        assert data["setup"] is True

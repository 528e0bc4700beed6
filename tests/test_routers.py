"""Tests for the HTTP control API and the relay WebSocket."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.peer_call.deps import get_call_coordinator_dependency, get_relay_hub_dependency
from src.peer_call.errors import SignalingUnreachable
from src.peer_call.models.state import CallState
from src.peer_call.routers import controls_router, relay_router
from src.peer_call.services.relay_hub import RelayHub
from src.peer_call.settings import Settings

from conftest import wait_until


def controls_app(coordinator) -> FastAPI:
    app = FastAPI()
    app.include_router(controls_router)
    app.dependency_overrides[get_call_coordinator_dependency] = lambda: coordinator
    return app


def client_for(app: FastAPI) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


class TestControlsRouter:
    """Test cases for /api/call endpoints."""

    @pytest.mark.asyncio
    async def test_health_without_call(self, make_call):
        harness = make_call()
        async with client_for(controls_app(harness.coordinator)) as client:
            response = await client.get("/api/call/health")

        assert response.status_code == 200
        assert response.json() == {"ok": True, "active": False, "session": None}

    @pytest.mark.asyncio
    async def test_call_lifecycle(self, make_call):
        harness = make_call()
        try:
            async with client_for(controls_app(harness.coordinator)) as client:
                response = await client.post("/api/call/start", json={"room": "room-1"})
                assert response.status_code == 200
                assert response.json()["state"] == "waiting"
                assert response.json()["room_id"] == "room-1"

                response = await client.post("/api/call/start", json={"room": "room-2"})
                assert response.status_code == 409

                response = await client.post("/api/call/mute", json={"on": True})
                assert response.status_code == 200
                assert response.json()["is_muted"] is True

                response = await client.post("/api/call/video", json={"off": True})
                assert response.json()["is_video_off"] is True

                response = await client.get("/api/call/health")
                assert response.json()["active"] is True

                response = await client.post("/api/call/hangup")
                assert response.status_code == 200
                body = response.json()
                assert body["hung_up"] is True
                assert body["session"]["state"] == "ended"
                assert body["session"]["end_reason"] == "hangup"

                response = await client.post("/api/call/hangup")
                assert response.status_code == 409
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_start_failure_reported(self, make_call):
        harness = make_call(microphone=False)
        try:
            async with client_for(controls_app(harness.coordinator)) as client:
                response = await client.post("/api/call/start", json={"room": "room-1"})

            assert response.status_code == 503
            assert "microphone" in response.json()["detail"]
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_screen_share_denied(self, make_call):
        harness = make_call(display=False)
        try:
            async with client_for(controls_app(harness.coordinator)) as client:
                await client.post("/api/call/start", json={"room": "room-1"})
                response = await client.post("/api/call/screen-share", json={"on": True})

            assert response.status_code == 503
            assert harness.session.is_active
        finally:
            await harness.shutdown()

    @pytest.mark.asyncio
    async def test_controls_need_active_call(self, make_call):
        harness = make_call()
        async with client_for(controls_app(harness.coordinator)) as client:
            response = await client.post("/api/call/mute", json={"on": True})

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_empty_room_rejected(self, make_call):
        harness = make_call()
        async with client_for(controls_app(harness.coordinator)) as client:
            response = await client.post("/api/call/start", json={"room": ""})

        assert response.status_code == 422


class TestRingingRoutes:
    """Test cases for invite, incoming and reject."""

    @pytest.mark.asyncio
    async def test_invite_then_reject(self, make_call):
        callee = make_call(user_id="bob")
        caller = make_call(user_id="alice")
        try:
            await callee.coordinator.listen()
            await caller.coordinator.start("room-9")

            async with client_for(controls_app(caller.coordinator)) as client:
                response = await client.post(
                    "/api/call/invite", json={"user_id": "bob", "room": "room-9", "caller_name": "Alice"}
                )
            assert response.status_code == 200
            assert response.json() == {"invited": True, "user_id": "bob", "room": "room-9"}

            await wait_until(lambda: callee.coordinator.pending_incoming is not None)
            async with client_for(controls_app(callee.coordinator)) as client:
                response = await client.get("/api/call/incoming")
                assert response.json() == {
                    "ringing": True,
                    "incoming": {"room_id": "room-9", "caller": {"id": "alice", "name": "Alice"}},
                }

                response = await client.post("/api/call/reject")
                assert response.status_code == 200
                assert response.json()["rejected"] is True
                assert response.json()["incoming"]["room_id"] == "room-9"

                response = await client.get("/api/call/incoming")
                assert response.json() == {"ringing": False, "incoming": None}

            await wait_until(lambda: caller.session.state is CallState.ENDED)
            assert caller.session.end_reason == "remote-rejected"
        finally:
            await callee.shutdown()
            await caller.shutdown()

    @pytest.mark.asyncio
    async def test_reject_without_ringing(self, make_call):
        harness = make_call()
        async with client_for(controls_app(harness.coordinator)) as client:
            response = await client.post("/api/call/reject")

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_invite_relay_unreachable(self, make_call):
        harness = make_call()
        harness.channel.reachable = False
        async with client_for(controls_app(harness.coordinator)) as client:
            response = await client.post("/api/call/invite", json={"user_id": "bob", "room": "room-9"})

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_invite_needs_user(self, make_call):
        harness = make_call()
        async with client_for(controls_app(harness.coordinator)) as client:
            response = await client.post("/api/call/invite", json={"user_id": "", "room": "room-9"})

        assert response.status_code == 422


class TestListenForCalls:
    """Test cases for the startup relay listener."""

    @pytest.mark.asyncio
    async def test_retries_until_relay_reachable(self):
        from src.peer_call.main import listen_for_calls

        coordinator = MagicMock()
        coordinator.listen = AsyncMock(side_effect=[SignalingUnreachable("starting"), None])
        settings = Settings(_env_file=None, USER_ID="bob", RELAY_RECONNECT_DELAY=0.01)

        await listen_for_calls(coordinator, settings)

        assert coordinator.listen.await_count == 2


        assert response.status_code == 422


class TestCreateApp:
    """Test cases for the application factory."""

    def test_routes_mounted(self):
        from src.peer_call.main import create_app

        paths = {route.path for route in create_app().routes}

        assert "/relay" in paths
        assert {"/api/call/start", "/api/call/hangup", "/api/call/health"} <= paths
        assert {"/api/call/invite", "/api/call/incoming", "/api/call/reject"} <= paths


class TestRelayRouter:
    """Test cases for the /relay WebSocket."""

    def test_relay_between_two_clients(self):
        hub = RelayHub()
        app = FastAPI()
        app.include_router(relay_router)
        app.dependency_overrides[get_relay_hub_dependency] = lambda: hub

        with TestClient(app) as client:
            with client.websocket_connect("/relay") as ws_a, client.websocket_connect("/relay") as ws_b:
                sid_a = ws_a.receive_json()["data"]["sid"]
                sid_b = ws_b.receive_json()["data"]["sid"]

                ws_a.send_json({"event": "joinRoom", "data": {"room": "r"}})
                ws_b.send_json({"event": "joinRoom", "data": {"room": "r"}})
                assert ws_a.receive_json() == {"event": "user-joined", "data": {"userId": sid_b}}

                ws_b.send_json({"event": "call:signal", "data": {"to": sid_a, "signal": {"type": "offer", "sdp": "s"}}})
                assert ws_a.receive_json() == {
                    "event": "call:signal",
                    "data": {"signal": {"type": "offer", "sdp": "s"}, "from": sid_b},
                }

                ws_a.send_json({"event": "call:ended", "data": {"roomId": "r"}})
                assert ws_b.receive_json() == {"event": "call:ended", "data": {"roomId": "r"}}

        assert hub.connections == {}

    def test_invalid_frames_ignored(self):
        hub = RelayHub()
        app = FastAPI()
        app.include_router(relay_router)
        app.dependency_overrides[get_relay_hub_dependency] = lambda: hub

        with TestClient(app) as client:
            with client.websocket_connect("/relay?user_id=alice") as ws:
                sid = ws.receive_json()["data"]["sid"]
                ws.send_text("not json")
                ws.send_json(["no", "event"])
                ws.send_json({"event": "joinRoom", "data": {"room": "r"}})
                ws.send_json({"event": "call:signal", "data": {"to": sid, "signal": {"ping": 1}}})

                assert ws.receive_json()["data"]["signal"] == {"ping": 1}
                assert hub.users[sid] == "alice"

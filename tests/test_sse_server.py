"""Tests for the SSE push server."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from courtbook_mcp.sse_server import SSEManager


@pytest.fixture
def manager() -> SSEManager:
    return SSEManager()


def test_root_and_health(manager):
    client = TestClient(manager.app)

    root = client.get("/").json()
    health = client.get("/health").json()

    assert root["endpoints"]["sse"] == "/events"
    assert health["status"] == "healthy"
    assert health["connections"] == 0


def test_tools_listed(manager):
    tools = {t["name"] for t in TestClient(manager.app).get("/tools").json()["tools"]}

    assert {
        "list_courts",
        "open_booking_view",
        "get_availability",
        "toggle_slot",
        "get_selection",
        "submit_booking",
        "close_booking_view",
    } <= tools


def test_unknown_tool(manager):
    result = TestClient(manager.app).post("/tools/nope", json={"params": {}}).json()

    assert result["success"] is False
    assert "not found" in result["message"]


def test_unknown_view_rejected(manager):
    client = TestClient(manager.app)

    events = client.get("/events", params={"view_id": "nope"}).json()
    snapshot = client.get("/views/nope").json()

    assert events["success"] is False
    assert snapshot["success"] is False
    assert manager.connections == {}


def _drain(queue: asyncio.Queue) -> list[dict]:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


@pytest.mark.asyncio
async def test_broadcast_reaches_every_connection(manager):
    first, second = manager.connect(), manager.connect()
    event = {"type": "notice", "data": {"view_id": "v1", "title": "Availability updated"}}

    await manager.broadcast(event)

    assert _drain(first)[-1] == event
    assert _drain(second)[-1] == event


@pytest.mark.asyncio
async def test_broadcast_follows_view(manager):
    everything = manager.connect()
    mine = manager.connect("v1")
    own = {"type": "availability", "data": {"view_id": "v1", "slots": []}}
    other = {"type": "availability", "data": {"view_id": "v2", "slots": []}}

    await manager.broadcast(own)
    await manager.broadcast(other)

    assert [e["type"] for e in _drain(mine)] == ["connected", "availability"]
    assert _drain(everything)[1:] == [own, other]


@pytest.mark.asyncio
async def test_disconnect(manager):
    queue = manager.connect("v1")
    manager.disconnect(queue)

    await manager.broadcast({"type": "notice", "data": {"view_id": "v1"}})

    assert manager.connections == {}
    assert len(_drain(queue)) == 1

"""Tests for forwarding, roster fan-out and the queued websocket connection."""
from __future__ import annotations

import asyncio

import pytest

from classroom_broker.services.registry import ParticipantRegistry
from classroom_broker.services.relay import OUTBOX_LIMIT, RelayEngine, SignalingConnection, deliver
from classroom_broker.services.roster import RosterBroadcaster


class DummyConnection:
    def __init__(self, connection_id: str, *, is_open: bool = True) -> None:
        self.connection_id = connection_id
        self.is_open = is_open
        self.messages: list[dict] = []

    def deliver(self, message: dict) -> None:
        self.messages.append(message)


class ExplodingConnection(DummyConnection):
    def deliver(self, message: dict) -> None:
        raise RuntimeError("socket gone")


def test_forward_to_viewer_delivers_verbatim():
    registry = ParticipantRegistry()
    conn = DummyConnection("a")
    viewer = registry.register_viewer("A", conn)
    relay = RelayEngine(registry)
    payload = {"type": "offer", "studentId": viewer.id, "sdp": {"type": "offer", "sdp": "v=0"}}

    assert relay.forward_to_viewer(viewer.id, payload) is True
    assert conn.messages == [payload]


def test_forward_to_unknown_or_closed_target_is_a_noop():
    registry = ParticipantRegistry()
    closed = DummyConnection("a", is_open=False)
    viewer = registry.register_viewer("A", closed)
    relay = RelayEngine(registry)

    assert relay.forward_to_viewer("missing", {"type": "offer"}) is False
    assert relay.forward_to_viewer(viewer.id, {"type": "offer"}) is False
    assert relay.forward_to_presenter({"type": "answer"}) is False
    assert closed.messages == []


def test_forward_to_presenter_uses_current_presenter_only():
    registry = ParticipantRegistry()
    old = DummyConnection("old")
    new = DummyConnection("new")
    registry.register_presenter("Old", old)
    registry.register_presenter("New", new)
    relay = RelayEngine(registry)

    assert relay.forward_to_presenter({"type": "answer", "sdp": "x"}) is True
    assert old.messages == []
    assert new.messages == [{"type": "answer", "sdp": "x"}]


def test_deliver_swallows_transport_errors():
    assert deliver(ExplodingConnection("boom"), {"type": "x"}) is False
    assert deliver(None, {"type": "x"}) is False


def test_roster_broadcast_reaches_every_open_transport_despite_failures():
    registry = ParticipantRegistry()
    presenter_conn = DummyConnection("p")
    viewer_conn = DummyConnection("v")
    lurker = DummyConnection("lurker")
    presenter = registry.register_presenter("P", presenter_conn)
    viewer = registry.register_viewer("V", viewer_conn)
    broadcaster = RosterBroadcaster(registry)

    delivered = broadcaster.broadcast(
        [ExplodingConnection("bad"), presenter_conn, DummyConnection("closed", is_open=False), viewer_conn, lurker]
    )

    expected = {
        "type": "attendants-list",
        "list": [
            {"id": presenter.id, "name": "P", "role": "teacher"},
            {"id": viewer.id, "name": "V", "role": "student"},
        ],
    }
    assert delivered == 3
    assert presenter_conn.messages == [expected]
    assert viewer_conn.messages == [expected]
    assert lurker.messages == [expected]


@pytest.mark.asyncio
async def test_signaling_connection_pumps_messages_in_order():
    sent: list[dict] = []

    async def send(message: dict) -> None:
        sent.append(message)

    connection = SignalingConnection("c1", send)
    writer = asyncio.create_task(connection.pump())

    connection.deliver({"n": 1})
    connection.deliver({"n": 2})
    connection.close()
    await asyncio.wait_for(writer, timeout=1)

    assert sent == [{"n": 1}, {"n": 2}]
    assert connection.is_open is False
    assert deliver(connection, {"n": 3}) is False


@pytest.mark.asyncio
async def test_signaling_connection_marks_itself_closed_when_send_fails():
    async def send(message: dict) -> None:
        raise ConnectionResetError("peer went away")

    connection = SignalingConnection("c1", send)
    writer = asyncio.create_task(connection.pump())
    connection.deliver({"n": 1})
    await asyncio.wait_for(writer, timeout=1)

    assert connection.is_open is False
    with pytest.raises(ConnectionError):
        connection.deliver({"n": 2})


@pytest.mark.asyncio
async def test_full_outbox_fails_delivery_without_blocking_close():
    async def send(message: dict) -> None:
        return None

    connection = SignalingConnection("slow", send)
    for index in range(OUTBOX_LIMIT):
        assert deliver(connection, {"type": "attendants-list", "n": index}) is True

    assert deliver(connection, {"type": "attendants-list", "n": "overflow"}) is False
    assert connection.outbox.qsize() == OUTBOX_LIMIT

    connection.close()
    assert connection.closed
    # The writer stops on the closed flag instead of draining the backlog.
    await asyncio.wait_for(connection.pump(), timeout=1)

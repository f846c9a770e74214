"""RTC configuration and signaling endpoints."""
from __future__ import annotations

import asyncio
from contextlib import suppress
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..core.config import settings
from ..schemas.rtc import IceServer, IceServersResponse, RosterResponse
from ..services.relay import SignalingConnection
from ..services.signaling import hub

router = APIRouter()


@router.get("/ice-servers", response_model=IceServersResponse)
async def list_ice_servers() -> IceServersResponse:
    """Return the STUN/TURN servers endpoints should hand to their peer connections."""

    return IceServersResponse(ice_servers=[IceServer(urls=url) for url in settings.ice_servers])


@router.get("/roster", response_model=RosterResponse)
async def get_roster() -> RosterResponse:
    """Return who is currently joined."""

    participants = await hub.snapshot()
    return RosterResponse(participants=participants, connections=hub.connection_count)


@router.websocket("/signaling")
async def signaling_endpoint(websocket: WebSocket) -> None:
    """Relay join, offer, answer and ICE messages between presenter and viewers."""

    await websocket.accept()

    connection = SignalingConnection(connection_id=uuid4().hex, send=websocket.send_json)
    writer = asyncio.create_task(connection.pump())
    await hub.connect(connection)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            raw = frame.get("text")
            if raw is None:
                raw = frame.get("bytes")
            if raw is None:
                continue
            await hub.handle_raw(connection, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(connection)
        connection.close()
        writer.cancel()
        with suppress(asyncio.CancelledError):
            await writer

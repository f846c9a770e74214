"""Websocket client that runs an endpoint against the broker."""
from __future__ import annotations

import json
import logging
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed

from .endpoint import Endpoint

logger = logging.getLogger(__name__)


async def serve(websocket: Any, endpoint: Endpoint) -> None:
    """Join over ``websocket`` and feed every frame to ``endpoint`` until it closes."""

    async def send(message: dict) -> None:
        await websocket.send(json.dumps(message))

    endpoint.attach(send)
    try:
        await endpoint.join()
        async for frame in websocket:
            try:
                message = json.loads(frame)
            except ValueError:
                logger.warning("Invalid JSON from broker: %r", frame)
                continue
            if not isinstance(message, dict):
                logger.warning("Non-object message from broker: %r", message)
                continue
            await endpoint.handle(message)
    except ConnectionClosed as exc:
        logger.info("Signaling connection closed: %s", exc)
    finally:
        await endpoint.close()


async def connect(url: str, endpoint: Endpoint, **kwargs: Any) -> None:
    """Open a signaling socket to ``url`` and serve ``endpoint`` on it."""

    async with websockets.connect(url, **kwargs) as websocket:
        await serve(websocket, endpoint)

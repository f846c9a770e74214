"""Best-effort delivery of signaling payloads to live connections."""
from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol

from .registry import ParticipantRegistry

logger = logging.getLogger(__name__)

SendCallable = Callable[[dict], Awaitable[None]]

# Messages held for one slow recipient before further deliveries fail.
OUTBOX_LIMIT = 256


class Transport(Protocol):
    """What the broker needs from a connection: an id, liveness and a non-blocking send."""

    connection_id: str

    @property
    def is_open(self) -> bool: ...

    def deliver(self, message: dict[str, Any]) -> None: ...


@dataclass(slots=True)
class SignalingConnection:
    """Websocket wrapper with an outbound queue drained by :meth:`pump`.

    ``deliver`` only enqueues, so callers holding the hub lock never wait on
    the network. Messages to one connection leave in the order delivered.
    A full outbox raises ``asyncio.QueueFull``, which :func:`deliver` counts
    as a failed delivery.
    """

    connection_id: str
    send: SendCallable
    outbox: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=OUTBOX_LIMIT))
    closed: bool = False

    @property
    def is_open(self) -> bool:
        return not self.closed

    def deliver(self, message: dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionError(f"connection {self.connection_id} is closed")
        self.outbox.put_nowait(message)

    async def pump(self) -> None:
        """Write queued messages until the connection closes or a send fails."""

        while True:
            message = await self.outbox.get()
            if message is None or self.closed:
                return
            try:
                await self.send(message)
            except Exception:  # noqa: BLE001 - a dead socket only affects this connection
                logger.exception("Send failed on connection %s", self.connection_id)
                self.closed = True
                return

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            # A full outbox cannot take the sentinel; pump stops on the closed flag.
            with suppress(asyncio.QueueFull):
                self.outbox.put_nowait(None)


class RelayEngine:
    """Forward payloads to the presenter or a viewer looked up in the registry."""

    def __init__(self, registry: ParticipantRegistry) -> None:
        self._registry = registry

    def forward_to_viewer(self, viewer_id: str | None, payload: dict[str, Any]) -> bool:
        viewer = self._registry.get_viewer(viewer_id)
        if viewer is None:
            logger.debug("Dropping %s for unknown viewer %s", payload.get("type"), viewer_id)
            return False
        return deliver(viewer.connection, payload)

    def forward_to_presenter(self, payload: dict[str, Any]) -> bool:
        presenter = self._registry.presenter
        if presenter is None:
            logger.debug("Dropping %s, no presenter connected", payload.get("type"))
            return False
        return deliver(presenter.connection, payload)


def deliver(transport: Optional[Transport], payload: dict[str, Any]) -> bool:
    """Attempt a single delivery. Never raises and never retries."""

    if transport is None or not transport.is_open:
        return False
    try:
        transport.deliver(payload)
    except Exception:  # noqa: BLE001 - failures stay local to one recipient
        logger.warning("Delivery to %s failed", transport.connection_id, exc_info=True)
        return False
    return True

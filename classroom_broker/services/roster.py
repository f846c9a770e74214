"""Roster fan-out on membership changes."""
from __future__ import annotations

import logging
from typing import Iterable

from ..schemas.signaling import AttendantsListMessage
from .registry import ParticipantRegistry
from .relay import Transport, deliver

logger = logging.getLogger(__name__)


class RosterBroadcaster:
    """Push the full participant list to every open transport."""

    def __init__(self, registry: ParticipantRegistry) -> None:
        self._registry = registry

    def build_message(self) -> dict:
        return AttendantsListMessage(entries=self._registry.snapshot()).to_wire()

    def broadcast(self, transports: Iterable[Transport]) -> int:
        """Deliver the current roster to each transport and return how many accepted it."""

        message = self.build_message()
        delivered = 0
        for transport in transports:
            if deliver(transport, message):
                delivered += 1
        logger.debug("Roster of %d broadcast to %d connections", len(message["list"]), delivered)
        return delivered

"""In-memory WebRTC signaling hub for one presenter and many viewers.

The hub owns the participant registry and every open connection. Each
inbound frame is parsed, dispatched by ``type`` and handled under a single
lock, so registry mutations, forwards and roster broadcasts never interleave.
Delivery itself is a non-blocking enqueue on the target connection.
"""
from __future__ import annotations

import asyncio
import json
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from ..core.config import settings
from ..schemas.signaling import (
    INBOUND_MODELS,
    AnswerMessage,
    IceCandidateMessage,
    JoinedMessage,
    JoinMessage,
    MessageType,
    OfferMessage,
    Role,
    RosterEntry,
    StudentJoinedMessage,
    StudentLeftMessage,
)
from .registry import Participant, ParticipantRegistry, new_participant_id
from .relay import RelayEngine, Transport, deliver
from .roster import RosterBroadcaster

logger = logging.getLogger(__name__)

Handler = Callable[[Transport, Any], Awaitable[None]]


class SignalingHub:
    """Route signaling messages between the presenter and viewers."""

    def __init__(self, registry: Optional[ParticipantRegistry] = None) -> None:
        self.registry = registry or ParticipantRegistry(
            id_factory=partial(new_participant_id, settings.participant_id_bytes)
        )
        self.relay = RelayEngine(self.registry)
        self.broadcaster = RosterBroadcaster(self.registry)
        self._connections: Dict[str, Transport] = {}
        self._bindings: Dict[str, str] = {}
        self._lock = asyncio.Lock()
        self._handlers: Dict[str, Handler] = {
            MessageType.JOIN.value: self._on_join,
            MessageType.OFFER.value: self._on_offer,
            MessageType.ANSWER.value: self._on_answer,
            MessageType.ICE_CANDIDATE.value: self._on_ice_candidate,
        }

    async def connect(self, connection: Transport) -> None:
        """Track a newly opened transport so it receives roster broadcasts."""

        async with self._lock:
            self._connections[connection.connection_id] = connection

    async def disconnect(self, connection: Transport) -> None:
        """Forget a closed transport and tear down the participant bound to it."""

        async with self._lock:
            self._connections.pop(connection.connection_id, None)
            participant = self._unbind(connection)
            logger.info(
                "Client disconnected: role=%s, id=%s",
                participant.role.value if participant else None,
                participant.id if participant else None,
            )
            if participant is not None and self._leave(participant):
                self._broadcast_roster()

    async def handle_raw(self, connection: Transport, raw: str | bytes) -> None:
        """Parse one inbound frame and dispatch it. Malformed frames are dropped."""

        try:
            message = json.loads(raw)
        except (TypeError, ValueError, UnicodeDecodeError):
            logger.warning("Invalid JSON from client %s: %r", connection.connection_id, raw)
            return
        if not isinstance(message, dict):
            logger.warning("Non-object message from client %s: %r", connection.connection_id, message)
            return
        await self.dispatch(connection, message)

    async def dispatch(self, connection: Transport, message: dict[str, Any]) -> None:
        """Validate ``message`` against its kind and run the matching handler."""

        kind = message.get("type")
        model = INBOUND_MODELS.get(kind) if isinstance(kind, str) else None
        if model is None:
            logger.warning("Unknown message type: %r", kind)
            return
        try:
            parsed = model.model_validate(message)
        except ValidationError as exc:
            logger.warning("Malformed %s message from %s: %s", kind, connection.connection_id, exc)
            return

        async with self._lock:
            await self._handlers[kind](connection, parsed)

    async def snapshot(self) -> list[RosterEntry]:
        async with self._lock:
            return self.registry.snapshot()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def _on_join(self, connection: Transport, message: JoinMessage) -> None:
        previous = self._unbind(connection)
        if previous is not None:
            logger.info("Client %s re-joined, dropping id=%s", connection.connection_id, previous.id)
            self._leave(previous)

        if message.role is Role.PRESENTER:
            displaced = self.registry.presenter
            participant = self.registry.register_presenter(message.name, connection)
            if displaced is not None:
                self._bindings.pop(displaced.connection.connection_id, None)
                logger.info("Presenter %s replaced by %s", displaced.id, participant.id)
            logger.info("Teacher joined: %s, id=%s", participant.display_name, participant.id)
        else:
            participant = self.registry.register_viewer(message.name, connection)
            logger.info("Student joined: %s, id=%s", participant.display_name, participant.id)

        self._bindings[connection.connection_id] = participant.id
        deliver(connection, JoinedMessage(role=participant.role, id=participant.id).to_wire())

        if participant.role is Role.VIEWER:
            self.relay.forward_to_presenter(
                StudentJoinedMessage(student_id=participant.id, name=participant.display_name).to_wire()
            )

        self._broadcast_roster()

    async def _on_offer(self, connection: Transport, message: OfferMessage) -> None:
        if not self._is_presenter(connection):
            logger.warning("Dropping offer from non-presenter connection %s", connection.connection_id)
            return
        self.relay.forward_to_viewer(message.student_id, message.to_wire())

    async def _on_answer(self, connection: Transport, message: AnswerMessage) -> None:
        sender = self._viewer_for(connection, message.student_id)
        if sender is None:
            logger.warning("Dropping answer addressed to unknown viewer %s", message.student_id)
            return
        self.relay.forward_to_presenter(
            AnswerMessage(student_id=sender.id, sdp=message.sdp).to_wire()
        )

    async def _on_ice_candidate(self, connection: Transport, message: IceCandidateMessage) -> None:
        if message.target is Role.PRESENTER:
            sender = self._viewer_for(connection, message.student_id)
            if sender is None:
                logger.warning("Dropping ice-candidate from unknown viewer %s", message.student_id)
                return
            self.relay.forward_to_presenter(
                IceCandidateMessage(
                    target=Role.PRESENTER,
                    student_id=sender.id,
                    candidate=message.candidate,
                ).to_wire()
            )
            return

        if not self._is_presenter(connection):
            logger.warning("Dropping ice-candidate from non-presenter connection %s", connection.connection_id)
            return
        self.relay.forward_to_viewer(message.student_id, message.to_wire())

    def _leave(self, participant: Participant) -> bool:
        """Remove ``participant`` and notify the presenter if a viewer left.

        Returns ``True`` when the roster changed.
        """

        removed = self.registry.remove_by_id(participant.id)
        if removed is None:
            return False
        if removed.role is Role.VIEWER:
            self.relay.forward_to_presenter(StudentLeftMessage(student_id=removed.id).to_wire())
        return True

    def _unbind(self, connection: Transport) -> Optional[Participant]:
        participant_id = self._bindings.pop(connection.connection_id, None)
        if participant_id is None:
            return None
        participant = self.registry.get(participant_id)
        if participant is None or participant.connection is not connection:
            return None
        return participant

    def _is_presenter(self, connection: Transport) -> bool:
        presenter = self.registry.presenter
        return presenter is not None and presenter.connection is connection

    def _viewer_for(self, connection: Transport, claimed_id: str | None) -> Optional[Participant]:
        """Return the viewer bound to ``connection`` if ``claimed_id`` matches it."""

        participant_id = self._bindings.get(connection.connection_id)
        viewer = self.registry.get_viewer(participant_id)
        if viewer is None or viewer.connection is not connection:
            return None
        if claimed_id is not None and claimed_id != viewer.id:
            return None
        return viewer

    def _broadcast_roster(self) -> None:
        self.broadcaster.broadcast(list(self._connections.values()))


hub = SignalingHub()

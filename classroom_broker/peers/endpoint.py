"""Presenter and viewer endpoints driving peer links from broker messages.

An endpoint sits on one signaling socket. It reacts to what the broker sends,
advances its peer links and calls into a :class:`PeerEngine`, which stands in
for the host environment's peer-connection implementation.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import Any, Awaitable, Callable, ClassVar, Dict, Optional, Protocol

from pydantic import ValidationError

from ..core.config import settings
from ..schemas.signaling import (
    AnswerMessage,
    AttendantsListMessage,
    IceCandidateMessage,
    JoinedMessage,
    JoinMessage,
    MessageType,
    OfferMessage,
    Role,
    RosterEntry,
    StudentJoinedMessage,
    StudentLeftMessage,
    WireModel,
)
from ..services.relay import SendCallable
from .link import CandidatePolicy, PeerLinkError, PeerLinkState, PresenterLink, ViewerLink

logger = logging.getLogger(__name__)

CHAT_CHANNEL_LABEL = "chatChannel"

CandidateCallback = Callable[[Any], Awaitable[None]]


class PeerEngine(Protocol):
    """Peer-connection operations an endpoint needs. Descriptions and candidates are opaque."""

    on_ice_candidate: Optional[CandidateCallback]

    def create_data_channel(self, label: str) -> Any: ...

    async def create_offer(self) -> Any: ...

    async def create_answer(self) -> Any: ...

    async def set_local_description(self, description: Any) -> None: ...

    async def set_remote_description(self, description: Any) -> None: ...

    async def add_ice_candidate(self, candidate: Any) -> None: ...

    async def close(self) -> None: ...


EngineFactory = Callable[[], PeerEngine]


class Endpoint(ABC):
    """Shared plumbing: join, message dispatch, roster tracking and teardown."""

    role: ClassVar[Role]

    def __init__(
        self,
        name: str,
        engine_factory: EngineFactory,
        *,
        send: Optional[SendCallable] = None,
        policy: CandidatePolicy | str | None = None,
    ) -> None:
        self.name = name
        self.participant_id: Optional[str] = None
        self.roster: list[RosterEntry] = []
        self.policy = CandidatePolicy(policy or settings.early_candidate_policy)
        self._engine_factory = engine_factory
        self._send = send
        self._handlers: Dict[str, tuple[type[WireModel], Callable[[Any], Awaitable[None]]]] = {
            MessageType.JOINED.value: (JoinedMessage, self._on_joined),
            MessageType.ATTENDANTS_LIST.value: (AttendantsListMessage, self._on_attendants_list),
        }

    def attach(self, send: SendCallable) -> None:
        self._send = send

    async def join(self) -> None:
        await self.send(JoinMessage(role=self.role, name=self.name).to_wire())

    async def send(self, message: dict) -> None:
        if self._send is None:
            raise RuntimeError("endpoint is not attached to a signaling connection")
        await self._send(message)

    async def handle(self, message: dict[str, Any]) -> None:
        """Apply one broker message. Bad or out-of-order messages are logged and ignored."""

        kind = message.get("type")
        entry = self._handlers.get(kind) if isinstance(kind, str) else None
        if entry is None:
            logger.info("Unknown message: %r", message)
            return
        model, handler = entry
        try:
            parsed = model.model_validate(message)
        except ValidationError as exc:
            logger.warning("Malformed %s from broker: %s", kind, exc)
            return
        try:
            await handler(parsed)
        except PeerLinkError as exc:
            logger.warning("Ignoring %s: %s", kind, exc)
        except Exception:  # noqa: BLE001 - one bad message must not end the session
            logger.exception("Failed handling %s from broker", kind)

    @abstractmethod
    async def close(self) -> None:
        """Close every link and engine this endpoint owns."""

    def roster_presenter_id(self) -> Optional[str]:
        for entry in self.roster:
            if entry.role is Role.PRESENTER:
                return entry.id
        return None

    async def _on_joined(self, message: JoinedMessage) -> None:
        self.participant_id = message.id
        logger.info("Joined as %s, id=%s", message.role.value, message.id)

    async def _on_attendants_list(self, message: AttendantsListMessage) -> None:
        self.roster = list(message.entries)


class PresenterEndpoint(Endpoint):
    """One presenter keeping a link and an engine per viewer."""

    role = Role.PRESENTER

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.links: Dict[str, PresenterLink] = {}
        self.engines: Dict[str, PeerEngine] = {}
        self.channels: Dict[str, Any] = {}
        self._handlers.update(
            {
                MessageType.STUDENT_JOINED.value: (StudentJoinedMessage, self._on_student_joined),
                MessageType.STUDENT_LEFT.value: (StudentLeftMessage, self._on_student_left),
                MessageType.ANSWER.value: (AnswerMessage, self._on_answer),
                MessageType.ICE_CANDIDATE.value: (IceCandidateMessage, self._on_ice_candidate),
            }
        )

    async def open_link(self, viewer_id: str) -> Optional[PresenterLink]:
        """Create the engine and chat channel for ``viewer_id`` and send it an offer.

        If the engine fails, the half-built link is discarded so a later
        roster can retry it; other viewers are unaffected.
        """

        if viewer_id in self.links:
            return self.links[viewer_id]

        link = PresenterLink(viewer_id, self.policy)
        engine = self._engine_factory()
        engine.on_ice_candidate = partial(self._local_candidate, viewer_id)
        self.links[viewer_id] = link
        self.engines[viewer_id] = engine

        link.begin_offer()
        try:
            self.channels[viewer_id] = engine.create_data_channel(CHAT_CHANNEL_LABEL)
            offer = await engine.create_offer()
            await engine.set_local_description(offer)
        except Exception:  # noqa: BLE001 - failure stays on this viewer's link
            logger.exception("Offer for student %s failed, dropping its link", viewer_id)
            await self.close_link(viewer_id)
            return None
        if link.closed:
            return None
        await self.send(OfferMessage(student_id=viewer_id, sdp=offer).to_wire())
        link.offer_sent()
        await self._flush_local_candidates(link)
        return link

    async def close_link(self, viewer_id: str) -> None:
        link = self.links.pop(viewer_id, None)
        engine = self.engines.pop(viewer_id, None)
        self.channels.pop(viewer_id, None)
        if link is not None:
            link.close()
        if engine is not None:
            await engine.close()

    async def close(self) -> None:
        for viewer_id in list(self.links):
            await self.close_link(viewer_id)

    async def _on_student_joined(self, message: StudentJoinedMessage) -> None:
        logger.info("New student joined: %s (id=%s)", message.name, message.student_id)
        await self.open_link(message.student_id)

    async def _on_student_left(self, message: StudentLeftMessage) -> None:
        logger.info("Student left: id=%s", message.student_id)
        await self.close_link(message.student_id)

    async def _on_answer(self, message: AnswerMessage) -> None:
        link = self.links.get(message.student_id or "")
        if link is None:
            logger.debug("Answer for unknown student %s", message.student_id)
            return
        link.answer_received()
        engine = self.engines[link.viewer_id]
        try:
            await engine.set_remote_description(message.sdp)
        except Exception:  # noqa: BLE001 - failure stays on this viewer's link
            logger.exception("Answer from student %s rejected, dropping its link", link.viewer_id)
            await self.close_link(link.viewer_id)
            return
        for candidate in link.drain_remote_candidates():
            await engine.add_ice_candidate(candidate)

    async def _on_ice_candidate(self, message: IceCandidateMessage) -> None:
        if message.target is not Role.PRESENTER or message.candidate is None:
            return
        link = self.links.get(message.student_id or "")
        if link is None:
            logger.debug("Candidate for unknown student %s", message.student_id)
            return
        if link.accept_remote_candidate(message.candidate):
            await self.engines[link.viewer_id].add_ice_candidate(message.candidate)

    async def _on_attendants_list(self, message: AttendantsListMessage) -> None:
        await super()._on_attendants_list(message)
        presenter_id = self.roster_presenter_id()
        if self.participant_id is None:
            return
        if presenter_id != self.participant_id:
            if self.links:
                logger.warning("Presenter role taken over by %s, closing %d links", presenter_id, len(self.links))
            await self.close()
            return

        listed = {entry.id for entry in self.roster if entry.role is Role.VIEWER}
        for viewer_id in list(self.links):
            if viewer_id not in listed:
                await self.close_link(viewer_id)
        for viewer_id in sorted(listed - set(self.links)):
            await self.open_link(viewer_id)

    async def _local_candidate(self, viewer_id: str, candidate: Any) -> None:
        link = self.links.get(viewer_id)
        if link is None or not link.queue_local_candidate(candidate):
            return
        await self._send_candidate(viewer_id, candidate)

    async def _flush_local_candidates(self, link: PresenterLink) -> None:
        for candidate in link.drain_local_candidates():
            await self._send_candidate(link.viewer_id, candidate)

    async def _send_candidate(self, viewer_id: str, candidate: Any) -> None:
        await self.send(
            IceCandidateMessage(target=Role.VIEWER, student_id=viewer_id, candidate=candidate).to_wire()
        )


class ViewerEndpoint(Endpoint):
    """One viewer with a single link to the presenter."""

    role = Role.VIEWER

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.link: Optional[ViewerLink] = None
        self.engine: Optional[PeerEngine] = None
        self._handlers.update(
            {
                MessageType.OFFER.value: (OfferMessage, self._on_offer),
                MessageType.ICE_CANDIDATE.value: (IceCandidateMessage, self._on_ice_candidate),
            }
        )

    async def reset_link(self) -> ViewerLink:
        """Tear down any current link and start a fresh one waiting for an offer."""

        await self.close()
        if self.participant_id is None:
            raise PeerLinkError("cannot open a link before joining")
        link = ViewerLink(self.participant_id, self.policy)
        engine = self._engine_factory()
        engine.on_ice_candidate = self._local_candidate
        self.link, self.engine = link, engine
        link.joined()
        return link

    async def close(self) -> None:
        link, engine = self.link, self.engine
        self.link, self.engine = None, None
        if link is not None:
            link.close()
        if engine is not None:
            await engine.close()

    async def _on_joined(self, message: JoinedMessage) -> None:
        await super()._on_joined(message)
        await self.reset_link()

    async def _on_offer(self, message: OfferMessage) -> None:
        if message.student_id != self.participant_id:
            logger.debug("Offer for %s ignored by %s", message.student_id, self.participant_id)
            return
        if self.link is None or self.link.state is not PeerLinkState.AWAITING_OFFER:
            logger.info("Renegotiating with a fresh link for offer from presenter")
            await self.reset_link()
        link, engine = self.link, self.engine
        link.presenter_id = self.roster_presenter_id()
        link.offer_received()
        try:
            await engine.set_remote_description(message.sdp)
            answer = await engine.create_answer()
            await engine.set_local_description(answer)
        except Exception:  # noqa: BLE001 - wait for the next offer instead
            logger.exception("Offer from presenter rejected, awaiting a new one")
            await self.reset_link()
            return
        for candidate in link.drain_remote_candidates():
            await engine.add_ice_candidate(candidate)
        if link.closed:
            return
        await self.send(AnswerMessage(student_id=self.participant_id, sdp=answer).to_wire())
        link.answer_sent()
        for candidate in link.drain_local_candidates():
            await self._send_candidate(candidate)

    async def _on_ice_candidate(self, message: IceCandidateMessage) -> None:
        if message.target is not Role.VIEWER or message.candidate is None:
            return
        if message.student_id is not None and message.student_id != self.participant_id:
            return
        link = self.link
        if link is None:
            logger.debug("Candidate before any link exists, dropped")
            return
        if link.accept_remote_candidate(message.candidate):
            await self.engine.add_ice_candidate(message.candidate)

    async def _on_attendants_list(self, message: AttendantsListMessage) -> None:
        await super()._on_attendants_list(message)
        link = self.link
        if link is None or link.presenter_id is None:
            return
        if self.roster_presenter_id() != link.presenter_id:
            logger.info("Presenter %s is gone, closing link", link.presenter_id)
            await self.reset_link()

    async def _local_candidate(self, candidate: Any) -> None:
        link = self.link
        if link is None or not link.queue_local_candidate(candidate):
            return
        await self._send_candidate(candidate)

    async def _send_candidate(self, candidate: Any) -> None:
        await self.send(
            IceCandidateMessage(target=Role.PRESENTER, student_id=self.participant_id, candidate=candidate).to_wire()
        )

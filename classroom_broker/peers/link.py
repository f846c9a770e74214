"""Peer link state machine shared by the presenter and viewer endpoints.

A link tracks negotiation progress for one (presenter, viewer) pair. The
broker never sees it; each endpoint keeps its own copy. Both copies use the
same state enum but walk different transition tables:

    presenter: UNINITIATED -> OFFER_CREATING -> OFFER_SENT -> ACTIVE
    viewer:    UNINITIATED -> AWAITING_OFFER -> ANSWERING_OFFER -> ACTIVE

Any state may move to CLOSED, which is terminal.
"""
from __future__ import annotations

import enum
import logging
from typing import Any, ClassVar, FrozenSet, Mapping

logger = logging.getLogger(__name__)


class PeerLinkState(str, enum.Enum):
    UNINITIATED = "uninitiated"
    OFFER_CREATING = "offer_creating"
    OFFER_SENT = "offer_sent"
    AWAITING_OFFER = "awaiting_offer"
    ANSWERING_OFFER = "answering_offer"
    ACTIVE = "active"
    CLOSED = "closed"


class CandidatePolicy(str, enum.Enum):
    """What to do with inbound ICE candidates that beat the remote description."""

    BUFFER = "buffer"
    DROP = "drop"


class PeerLinkError(RuntimeError):
    """Raised on a transition the link's role does not allow."""


S = PeerLinkState

PRESENTER_TRANSITIONS: Mapping[PeerLinkState, FrozenSet[PeerLinkState]] = {
    S.UNINITIATED: frozenset({S.OFFER_CREATING, S.CLOSED}),
    S.OFFER_CREATING: frozenset({S.OFFER_SENT, S.CLOSED}),
    S.OFFER_SENT: frozenset({S.ACTIVE, S.CLOSED}),
    S.ACTIVE: frozenset({S.CLOSED}),
    S.CLOSED: frozenset(),
}

VIEWER_TRANSITIONS: Mapping[PeerLinkState, FrozenSet[PeerLinkState]] = {
    S.UNINITIATED: frozenset({S.AWAITING_OFFER, S.CLOSED}),
    S.AWAITING_OFFER: frozenset({S.ANSWERING_OFFER, S.CLOSED}),
    S.ANSWERING_OFFER: frozenset({S.ACTIVE, S.CLOSED}),
    S.ACTIVE: frozenset({S.CLOSED}),
    S.CLOSED: frozenset(),
}


class PeerLink:
    """State plus candidate queues for one side of a presenter/viewer pair."""

    transitions: ClassVar[Mapping[PeerLinkState, FrozenSet[PeerLinkState]]] = {}
    # States from which local candidates may go out on the wire.
    sending_states: ClassVar[FrozenSet[PeerLinkState]] = frozenset()
    # States in which the remote description has been applied.
    remote_ready_states: ClassVar[FrozenSet[PeerLinkState]] = frozenset()

    def __init__(self, viewer_id: str, policy: CandidatePolicy = CandidatePolicy.BUFFER) -> None:
        self.viewer_id = viewer_id
        self.policy = CandidatePolicy(policy)
        self.state = PeerLinkState.UNINITIATED
        self._inbound: list[Any] = []
        self._outbound: list[Any] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}(viewer_id={self.viewer_id!r}, state={self.state.value})"

    @property
    def closed(self) -> bool:
        return self.state is PeerLinkState.CLOSED

    @property
    def can_send_candidates(self) -> bool:
        return self.state in self.sending_states

    @property
    def remote_description_set(self) -> bool:
        return self.state in self.remote_ready_states

    def advance(self, target: PeerLinkState) -> None:
        allowed = self.transitions.get(self.state, frozenset())
        if target not in allowed:
            raise PeerLinkError(
                f"{type(self).__name__} for {self.viewer_id}: {self.state.value} -> {target.value} not allowed"
            )
        logger.debug("%r -> %s", self, target.value)
        self.state = target

    def close(self) -> None:
        """Move to CLOSED and discard queued candidates. Idempotent."""

        if self.closed:
            return
        self.advance(PeerLinkState.CLOSED)
        self._inbound.clear()
        self._outbound.clear()

    def accept_remote_candidate(self, candidate: Any) -> bool:
        """Return True if ``candidate`` may be applied now.

        Otherwise it is buffered or discarded according to the policy.
        """

        if self.closed:
            return False
        if self.remote_description_set:
            return True
        if self.policy is CandidatePolicy.BUFFER:
            self._inbound.append(candidate)
        else:
            logger.warning("Discarding early ICE candidate for %s in state %s", self.viewer_id, self.state.value)
        return False

    def drain_remote_candidates(self) -> list[Any]:
        pending, self._inbound = self._inbound, []
        return pending

    def queue_local_candidate(self, candidate: Any) -> bool:
        """Return True if ``candidate`` may be sent now, otherwise hold it."""

        if self.closed:
            return False
        if self.can_send_candidates:
            return True
        self._outbound.append(candidate)
        return False

    def drain_local_candidates(self) -> list[Any]:
        pending, self._outbound = self._outbound, []
        return pending


class PresenterLink(PeerLink):
    """The presenter's view of its link to one viewer."""

    transitions = PRESENTER_TRANSITIONS
    sending_states = frozenset({S.OFFER_SENT, S.ACTIVE})
    remote_ready_states = frozenset({S.ACTIVE})

    def begin_offer(self) -> None:
        self.advance(PeerLinkState.OFFER_CREATING)

    def offer_sent(self) -> None:
        self.advance(PeerLinkState.OFFER_SENT)

    def answer_received(self) -> None:
        self.advance(PeerLinkState.ACTIVE)


class ViewerLink(PeerLink):
    """The viewer's view of its link to the presenter."""

    transitions = VIEWER_TRANSITIONS
    sending_states = frozenset({S.ACTIVE})
    remote_ready_states = frozenset({S.ANSWERING_OFFER, S.ACTIVE})

    def __init__(
        self,
        viewer_id: str,
        policy: CandidatePolicy = CandidatePolicy.BUFFER,
        presenter_id: str | None = None,
    ) -> None:
        super().__init__(viewer_id, policy)
        self.presenter_id = presenter_id

    def joined(self) -> None:
        self.advance(PeerLinkState.AWAITING_OFFER)

    def offer_received(self) -> None:
        self.advance(PeerLinkState.ANSWERING_OFFER)

    def answer_sent(self) -> None:
        self.advance(PeerLinkState.ACTIVE)

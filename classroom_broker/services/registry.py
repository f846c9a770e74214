"""In-memory registry of the presenter and viewers currently connected."""
from __future__ import annotations

from dataclasses import dataclass
from secrets import token_urlsafe
from typing import TYPE_CHECKING, Callable, Dict, Optional

from ..schemas.signaling import Role, RosterEntry

if TYPE_CHECKING:
    from .relay import Transport

DEFAULT_ID_BYTES = 16


def new_participant_id(nbytes: int = DEFAULT_ID_BYTES) -> str:
    """Return a random participant id carrying at least 128 bits of entropy."""

    return token_urlsafe(max(nbytes, DEFAULT_ID_BYTES))


@dataclass(slots=True)
class Participant:
    """A joined party and the transport it joined on."""

    id: str
    display_name: str
    role: Role
    connection: "Transport"

    def to_roster_entry(self) -> RosterEntry:
        return RosterEntry(id=self.id, name=self.display_name, role=self.role)


class ParticipantRegistry:
    """Hold at most one presenter plus any number of viewers.

    The registry does no locking of its own; callers serialize access.
    """

    def __init__(self, id_factory: Callable[[], str] = new_participant_id) -> None:
        self._id_factory = id_factory
        self._presenter: Optional[Participant] = None
        self._viewers: Dict[str, Participant] = {}

    @property
    def presenter(self) -> Optional[Participant]:
        return self._presenter

    @property
    def viewers(self) -> list[Participant]:
        return list(self._viewers.values())

    def get_viewer(self, participant_id: str | None) -> Optional[Participant]:
        if participant_id is None:
            return None
        return self._viewers.get(participant_id)

    def get(self, participant_id: str | None) -> Optional[Participant]:
        if self._presenter is not None and self._presenter.id == participant_id:
            return self._presenter
        return self.get_viewer(participant_id)

    def register_presenter(self, name: str, connection: "Transport") -> Participant:
        """Install a new presenter, replacing any existing one without notice."""

        participant = Participant(
            id=self._fresh_id(),
            display_name=name,
            role=Role.PRESENTER,
            connection=connection,
        )
        self._presenter = participant
        return participant

    def register_viewer(self, name: str, connection: "Transport") -> Participant:
        """Add a viewer. Names are not deduplicated."""

        participant = Participant(
            id=self._fresh_id(),
            display_name=name,
            role=Role.VIEWER,
            connection=connection,
        )
        self._viewers[participant.id] = participant
        return participant

    def remove_by_id(self, participant_id: str) -> Optional[Participant]:
        """Drop the participant with ``participant_id`` and return it, if known."""

        if self._presenter is not None and self._presenter.id == participant_id:
            removed = self._presenter
            self._presenter = None
            return removed
        return self._viewers.pop(participant_id, None)

    def snapshot(self) -> list[RosterEntry]:
        """Return the roster with the presenter first, then viewers in join order."""

        entries: list[RosterEntry] = []
        if self._presenter is not None:
            entries.append(self._presenter.to_roster_entry())
        entries.extend(viewer.to_roster_entry() for viewer in self._viewers.values())
        return entries

    def __len__(self) -> int:
        return len(self._viewers) + (1 if self._presenter is not None else 0)

    def __contains__(self, participant_id: object) -> bool:
        return isinstance(participant_id, str) and self.get(participant_id) is not None

    def _fresh_id(self) -> str:
        # Skip a collision with any live participant, presenter included.
        while True:
            candidate = self._id_factory()
            if candidate not in self:
                return candidate

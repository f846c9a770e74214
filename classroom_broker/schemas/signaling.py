"""Wire contracts for the signaling websocket."""
from __future__ import annotations

import enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Role(str, enum.Enum):
    PRESENTER = "teacher"
    VIEWER = "student"


class MessageType(str, enum.Enum):
    JOIN = "join"
    JOINED = "joined"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    STUDENT_JOINED = "student-joined"
    STUDENT_LEFT = "student-left"
    ATTENDANTS_LIST = "attendants-list"


class WireModel(BaseModel):
    """Base for messages that use camelCase field names on the wire."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# Inbound (endpoint -> broker)


class JoinMessage(WireModel):
    type: Literal["join"] = "join"
    role: Role
    name: str = Field(default="Anonymous", description="Display name")


class OfferMessage(WireModel):
    type: Literal["offer"] = "offer"
    student_id: str = Field(..., alias="studentId")
    sdp: Any = Field(..., description="Opaque session description")


class AnswerMessage(WireModel):
    type: Literal["answer"] = "answer"
    student_id: str | None = Field(default=None, alias="studentId")
    sdp: Any = Field(..., description="Opaque session description")


class IceCandidateMessage(WireModel):
    type: Literal["ice-candidate"] = "ice-candidate"
    target: Role
    student_id: str | None = Field(default=None, alias="studentId")
    candidate: Any = Field(default=None, description="Opaque ICE candidate")


# Outbound (broker -> endpoint)


class JoinedMessage(WireModel):
    type: Literal["joined"] = "joined"
    role: Role
    id: str


class StudentJoinedMessage(WireModel):
    type: Literal["student-joined"] = "student-joined"
    student_id: str = Field(..., alias="studentId")
    name: str


class StudentLeftMessage(WireModel):
    type: Literal["student-left"] = "student-left"
    student_id: str = Field(..., alias="studentId")


class RosterEntry(WireModel):
    id: str
    name: str
    role: Role


class AttendantsListMessage(WireModel):
    type: Literal["attendants-list"] = "attendants-list"
    entries: list[RosterEntry] = Field(default_factory=list, alias="list")


INBOUND_MODELS: dict[str, type[WireModel]] = {
    MessageType.JOIN.value: JoinMessage,
    MessageType.OFFER.value: OfferMessage,
    MessageType.ANSWER.value: AnswerMessage,
    MessageType.ICE_CANDIDATE.value: IceCandidateMessage,
}

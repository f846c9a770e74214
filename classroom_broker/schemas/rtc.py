"""Data contracts for RTC HTTP endpoints."""
from __future__ import annotations

from pydantic import BaseModel, Field

from .signaling import RosterEntry


class IceServer(BaseModel):
    urls: str = Field(..., description="STUN or TURN URL")


class IceServersResponse(BaseModel):
    ice_servers: list[IceServer] = Field(default_factory=list)


class RosterResponse(BaseModel):
    participants: list[RosterEntry] = Field(default_factory=list)
    connections: int = Field(..., ge=0, description="Open signaling sockets, joined or not")

"""Pydantic models for cached room state and homeserver responses."""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from appservice_intent.core.types import EventType, Membership

DEFAULT_PRIVILEGED_LEVEL = 50


class Member(BaseModel):
    """Content of an m.room.member event as last observed for one user."""

    model_config = ConfigDict(extra="allow")

    membership: Membership = Membership.LEAVE
    displayname: Optional[str] = None
    avatar_url: Optional[str] = None


class PowerLevels(BaseModel):
    """Content of an m.room.power_levels event."""

    model_config = ConfigDict(extra="allow")

    users: Dict[str, int] = Field(default_factory=dict)
    users_default: int = 0
    events: Dict[str, int] = Field(default_factory=dict)
    events_default: int = 0
    state_default: Optional[int] = None
    invite: Optional[int] = None
    kick: Optional[int] = None
    ban: Optional[int] = None
    redact: Optional[int] = None

    def get_user_level(self, user_id: str) -> int:
        return self.users.get(user_id, self.users_default)

    def set_user_level(self, user_id: str, level: int) -> None:
        if level == self.users_default:
            self.users.pop(user_id, None)
        else:
            self.users[user_id] = level

    def get_event_level(self, event_type: EventType) -> int:
        level = self.events.get(event_type.type)
        if level is not None:
            return level
        if event_type.is_state:
            return self.get_state_default()
        return self.events_default

    def get_state_default(self) -> int:
        return DEFAULT_PRIVILEGED_LEVEL if self.state_default is None else self.state_default

    def to_content(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class SendEventResponse(BaseModel):
    event_id: str


class StoreSnapshot(BaseModel):
    """Full contents of a state store, as written to a flat file."""

    registrations: Dict[str, bool] = Field(default_factory=dict)
    members: Dict[str, Dict[str, Member]] = Field(default_factory=dict)
    power_levels: Dict[str, PowerLevels] = Field(default_factory=dict)
    # room -> user -> typing expiry in epoch milliseconds, -1 when not typing, 0 when it never expires
    typing: Dict[str, Dict[str, int]] = Field(default_factory=dict)

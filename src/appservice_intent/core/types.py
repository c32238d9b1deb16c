from dataclasses import dataclass
from enum import Enum

class Membership(str, Enum):
    JOIN = "join"
    INVITE = "invite"
    LEAVE = "leave"
    BAN = "ban"
    KNOCK = "knock"

class MessageType(str, Enum):
    TEXT = "m.text"
    NOTICE = "m.notice"
    IMAGE = "m.image"
    VIDEO = "m.video"


@dataclass(frozen=True)
class EventType:
    type: str
    is_state: bool = False

    def __str__(self) -> str:
        return self.type


EVENT_MESSAGE = EventType("m.room.message")
STATE_MEMBER = EventType("m.room.member", is_state=True)
STATE_POWER_LEVELS = EventType("m.room.power_levels", is_state=True)
STATE_ROOM_NAME = EventType("m.room.name", is_state=True)
STATE_ROOM_AVATAR = EventType("m.room.avatar", is_state=True)
STATE_TOPIC = EventType("m.room.topic", is_state=True)


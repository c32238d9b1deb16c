"""State store: Protocol for the local mirror of homeserver state."""

from typing import Any, Dict, Optional, Protocol, runtime_checkable

from loguru import logger

from appservice_intent.core.models import Member, PowerLevels
from appservice_intent.core.types import STATE_MEMBER, STATE_POWER_LEVELS, EventType, Membership


class StateStoreError(Exception):
    pass


class StateStoreLoadError(StateStoreError):
    """An existing snapshot could not be read or parsed."""


class StateStorePersistenceError(StateStoreError):
    """
    A mutation was applied in memory but could not be written to disk.
    The process must not continue as if the write succeeded.
    """


@runtime_checkable
class StateStore(Protocol):
    # Registration
    def is_registered(self, user_id: str) -> bool: ...
    def mark_registered(self, user_id: str) -> None: ...

    # Membership
    def is_in_room(self, room_id: str, user_id: str) -> bool: ...
    def is_invited(self, room_id: str, user_id: str) -> bool: ...
    def is_membership(self, room_id: str, user_id: str, *allowed: Membership) -> bool: ...
    def get_membership(self, room_id: str, user_id: str) -> Membership: ...
    def get_member(self, room_id: str, user_id: str) -> Member: ...
    def try_get_member(self, room_id: str, user_id: str) -> Optional[Member]: ...
    def set_membership(self, room_id: str, user_id: str, membership: Membership) -> None: ...
    def set_member(self, room_id: str, user_id: str, member: Member) -> None: ...

    # Power levels
    def get_power_levels(self, room_id: str) -> Optional[PowerLevels]: ...
    def set_power_levels(self, room_id: str, levels: PowerLevels) -> None: ...
    def get_power_level(self, room_id: str, user_id: str) -> int: ...
    def get_power_level_requirement(self, room_id: str, event_type: EventType) -> int: ...
    def has_power_level(self, room_id: str, user_id: str, event_type: EventType) -> bool: ...

    # Typing
    def is_typing(self, room_id: str, user_id: str) -> bool: ...
    def set_typing(self, room_id: str, user_id: str, timeout: int) -> None: ...


def update_state(store: StateStore, event: Dict[str, Any]) -> bool:
    """
    Push an observed state event into the store.
    Returns True if the event type is one the store tracks.
    """
    event_type = event.get("type")
    room_id = event.get("room_id")
    content = event.get("content") or {}
    if not room_id:
        return False

    if event_type == STATE_MEMBER.type:
        user_id = event.get("state_key")
        if not user_id:
            return False
        store.set_member(room_id, user_id, Member.model_validate(content))
        return True
    if event_type == STATE_POWER_LEVELS.type:
        store.set_power_levels(room_id, PowerLevels.model_validate(content))
        return True

    logger.trace(f"Ignoring {event_type} in {room_id}")
    return False

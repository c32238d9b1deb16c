import threading
import time
from typing import Callable, Dict, Optional

from appservice_intent.core.models import Member, PowerLevels, StoreSnapshot
from appservice_intent.core.types import EventType, Membership

NOT_TYPING = -1
# A zero timeout keeps the user typing until it is explicitly cleared.
NO_EXPIRY = 0


def _now_ms() -> int:
    return int(time.time() * 1000)


class MemoryStateStore:
    """In-memory state store. All reads and writes take one re-entrant lock."""

    def __init__(self, clock: Callable[[], int] = _now_ms) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._registrations: Dict[str, bool] = {}
        self._members: Dict[str, Dict[str, Member]] = {}
        self._power_levels: Dict[str, PowerLevels] = {}
        self._typing: Dict[str, Dict[str, int]] = {}

    def is_registered(self, user_id: str) -> bool:
        with self._lock:
            return self._registrations.get(user_id, False)

    def mark_registered(self, user_id: str) -> None:
        with self._lock:
            self._registrations[user_id] = True

    def is_in_room(self, room_id: str, user_id: str) -> bool:
        return self.is_membership(room_id, user_id, Membership.JOIN)

    def is_invited(self, room_id: str, user_id: str) -> bool:
        return self.is_membership(room_id, user_id, Membership.JOIN, Membership.INVITE)

    def is_membership(self, room_id: str, user_id: str, *allowed: Membership) -> bool:
        return self.get_membership(room_id, user_id) in allowed

    def get_membership(self, room_id: str, user_id: str) -> Membership:
        member = self.try_get_member(room_id, user_id)
        if member is None:
            return Membership.LEAVE
        return member.membership

    def get_member(self, room_id: str, user_id: str) -> Member:
        member = self.try_get_member(room_id, user_id)
        return member if member is not None else Member()

    def try_get_member(self, room_id: str, user_id: str) -> Optional[Member]:
        with self._lock:
            member = self._members.get(room_id, {}).get(user_id)
            return member.model_copy() if member is not None else None

    def set_membership(self, room_id: str, user_id: str, membership: Membership) -> None:
        with self._lock:
            members = self._members.setdefault(room_id, {})
            member = members.get(user_id)
            if member is None:
                members[user_id] = Member(membership=membership)
            else:
                members[user_id] = member.model_copy(update={"membership": membership})

    def set_member(self, room_id: str, user_id: str, member: Member) -> None:
        with self._lock:
            self._members.setdefault(room_id, {})[user_id] = member.model_copy()

    def get_power_levels(self, room_id: str) -> Optional[PowerLevels]:
        with self._lock:
            levels = self._power_levels.get(room_id)
            return levels.model_copy(deep=True) if levels is not None else None

    def set_power_levels(self, room_id: str, levels: PowerLevels) -> None:
        with self._lock:
            self._power_levels[room_id] = levels.model_copy(deep=True)

    def _levels_or_default(self, room_id: str) -> PowerLevels:
        return self._power_levels.get(room_id) or PowerLevels()

    def get_power_level(self, room_id: str, user_id: str) -> int:
        with self._lock:
            return self._levels_or_default(room_id).get_user_level(user_id)

    def get_power_level_requirement(self, room_id: str, event_type: EventType) -> int:
        with self._lock:
            return self._levels_or_default(room_id).get_event_level(event_type)

    def has_power_level(self, room_id: str, user_id: str, event_type: EventType) -> bool:
        with self._lock:
            return self.get_power_level(room_id, user_id) >= self.get_power_level_requirement(room_id, event_type)

    def is_typing(self, room_id: str, user_id: str) -> bool:
        with self._lock:
            expires_at = self._typing.get(room_id, {}).get(user_id, NOT_TYPING)
        if expires_at == NO_EXPIRY:
            return True
        return expires_at > 0 and expires_at >= self._clock()

    def set_typing(self, room_id: str, user_id: str, timeout: int) -> None:
        if timeout < 0:
            expires_at = NOT_TYPING
        elif timeout == 0:
            expires_at = NO_EXPIRY
        else:
            expires_at = self._clock() + timeout
        with self._lock:
            self._typing.setdefault(room_id, {})[user_id] = expires_at

    def snapshot(self) -> StoreSnapshot:
        with self._lock:
            return StoreSnapshot(
                registrations=dict(self._registrations),
                members={room: dict(users) for room, users in self._members.items()},
                power_levels={room: pl.model_copy(deep=True) for room, pl in self._power_levels.items()},
                typing={room: dict(users) for room, users in self._typing.items()},
            )

    def restore(self, snapshot: StoreSnapshot) -> None:
        with self._lock:
            self._registrations = dict(snapshot.registrations)
            self._members = {room: dict(users) for room, users in snapshot.members.items()}
            self._power_levels = dict(snapshot.power_levels)
            self._typing = {room: dict(users) for room, users in snapshot.typing.items()}

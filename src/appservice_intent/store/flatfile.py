"""State store that mirrors a MemoryStateStore to a JSON flat file on every write."""

import os
import tempfile
import threading
from pathlib import Path
from typing import Optional, Union

from loguru import logger
from pydantic import ValidationError

from appservice_intent.core.models import Member, PowerLevels, StoreSnapshot
from appservice_intent.core.types import EventType, Membership
from appservice_intent.store.base import StateStoreLoadError, StateStorePersistenceError
from appservice_intent.store.memory import MemoryStateStore


class FlatFileStateStore:
    def __init__(self, path: Union[str, Path], store: Optional[MemoryStateStore] = None) -> None:
        self.path = Path(path)
        self._store = store or MemoryStateStore()
        self._write_lock = threading.RLock()
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            logger.info(f"No state file at {self.path}, starting empty")
            return
        try:
            raw = self.path.read_text(encoding="utf-8")
            snapshot = StoreSnapshot.model_validate_json(raw)
        except (OSError, ValidationError) as e:
            raise StateStoreLoadError(f"Parsing existing state file {self.path}: {e}") from e
        self._store.restore(snapshot)
        logger.info(
            f"Loaded state from {self.path}: {len(snapshot.registrations)} registrations, "
            f"{len(snapshot.members)} rooms"
        )

    def snapshot(self) -> StoreSnapshot:
        return self._store.snapshot()

    def save(self) -> None:
        """Write the full snapshot, replacing the previous file atomically."""
        with self._write_lock:
            data = self.snapshot().model_dump_json()
            tmp_name = None
            try:
                fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except OSError as e:
                if tmp_name is not None and os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                logger.critical(f"Failed to write state file {self.path}: {e}")
                raise StateStorePersistenceError(f"Writing state to file {self.path}: {e}") from e

    def is_registered(self, user_id: str) -> bool:
        return self._store.is_registered(user_id)

    def mark_registered(self, user_id: str) -> None:
        with self._write_lock:
            self._store.mark_registered(user_id)
            self.save()

    def is_in_room(self, room_id: str, user_id: str) -> bool:
        return self._store.is_in_room(room_id, user_id)

    def is_invited(self, room_id: str, user_id: str) -> bool:
        return self._store.is_invited(room_id, user_id)

    def is_membership(self, room_id: str, user_id: str, *allowed: Membership) -> bool:
        return self._store.is_membership(room_id, user_id, *allowed)

    def get_membership(self, room_id: str, user_id: str) -> Membership:
        return self._store.get_membership(room_id, user_id)

    def get_member(self, room_id: str, user_id: str) -> Member:
        return self._store.get_member(room_id, user_id)

    def try_get_member(self, room_id: str, user_id: str) -> Optional[Member]:
        return self._store.try_get_member(room_id, user_id)

    def set_membership(self, room_id: str, user_id: str, membership: Membership) -> None:
        with self._write_lock:
            self._store.set_membership(room_id, user_id, membership)
            self.save()

    def set_member(self, room_id: str, user_id: str, member: Member) -> None:
        with self._write_lock:
            self._store.set_member(room_id, user_id, member)
            self.save()

    def get_power_levels(self, room_id: str) -> Optional[PowerLevels]:
        return self._store.get_power_levels(room_id)

    def set_power_levels(self, room_id: str, levels: PowerLevels) -> None:
        with self._write_lock:
            self._store.set_power_levels(room_id, levels)
            self.save()

    def get_power_level(self, room_id: str, user_id: str) -> int:
        return self._store.get_power_level(room_id, user_id)

    def get_power_level_requirement(self, room_id: str, event_type: EventType) -> int:
        return self._store.get_power_level_requirement(room_id, event_type)

    def has_power_level(self, room_id: str, user_id: str, event_type: EventType) -> bool:
        return self._store.has_power_level(room_id, user_id, event_type)

    def is_typing(self, room_id: str, user_id: str) -> bool:
        return self._store.is_typing(room_id, user_id)

    def set_typing(self, room_id: str, user_id: str, timeout: int) -> None:
        with self._write_lock:
            self._store.set_typing(room_id, user_id, timeout)
            self.save()

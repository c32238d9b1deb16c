import json
import os
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest
from appservice_intent.core.models import Member, PowerLevels
from appservice_intent.core.types import EVENT_MESSAGE, STATE_TOPIC, Membership
from appservice_intent.store.base import StateStore, StateStoreLoadError, StateStorePersistenceError
from appservice_intent.store.flatfile import FlatFileStateStore

USER = "@puppet:example.org"
OTHER = "@other:example.org"
ROOM = "!room:example.org"


@pytest.fixture
def state_path(tmp_path):
    return tmp_path / "state.json"


def test_missing_file_is_empty_store(state_path):
    store = FlatFileStateStore(state_path)
    assert isinstance(store, StateStore)
    assert not store.is_registered(USER)
    assert not state_path.exists()

def test_every_mutation_is_written(state_path):
    store = FlatFileStateStore(state_path)

    store.mark_registered(USER)
    assert json.loads(state_path.read_text())["registrations"] == {USER: True}

    store.set_membership(ROOM, USER, Membership.JOIN)
    assert json.loads(state_path.read_text())["members"][ROOM][USER]["membership"] == "join"

def test_round_trip(state_path):
    store = FlatFileStateStore(state_path)
    store.mark_registered(USER)
    store.set_membership(ROOM, USER, Membership.JOIN)
    store.set_member(ROOM, OTHER, Member(membership=Membership.INVITE, displayname="Other"))
    store.set_power_levels(ROOM, PowerLevels(users={USER: 100}, events={"m.room.topic": 0}, state_default=75))
    store.set_typing(ROOM, USER, 60_000)
    store.set_typing(ROOM, OTHER, -1)

    reloaded = FlatFileStateStore(state_path)

    assert reloaded.is_registered(USER)
    assert not reloaded.is_registered(OTHER)
    assert reloaded.is_in_room(ROOM, USER)
    assert reloaded.is_invited(ROOM, OTHER)
    assert reloaded.try_get_member(ROOM, OTHER) == store.try_get_member(ROOM, OTHER)
    assert reloaded.get_power_levels(ROOM) == store.get_power_levels(ROOM)
    assert reloaded.get_power_level(ROOM, USER) == 100
    assert reloaded.get_power_level_requirement(ROOM, STATE_TOPIC) == 0
    assert reloaded.has_power_level(ROOM, OTHER, EVENT_MESSAGE) == store.has_power_level(ROOM, OTHER, EVENT_MESSAGE)
    assert reloaded.is_typing(ROOM, USER) is True
    assert reloaded.is_typing(ROOM, OTHER) is False

def test_corrupt_file_fails_to_load(state_path):
    state_path.write_text("{not json")
    with pytest.raises(StateStoreLoadError):
        FlatFileStateStore(state_path)

def test_persist_failure_is_loud_and_keeps_old_snapshot(state_path):
    store = FlatFileStateStore(state_path)
    store.mark_registered(USER)

    with patch("appservice_intent.store.flatfile.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(StateStorePersistenceError):
            store.mark_registered(OTHER)

    reloaded = FlatFileStateStore(state_path)
    assert reloaded.is_registered(USER)
    assert not reloaded.is_registered(OTHER)
    assert [p for p in os.listdir(state_path.parent) if p.endswith(".tmp")] == []

def test_concurrent_set_membership(state_path):
    store = FlatFileStateStore(state_path)
    rooms = [f"!room{i}:example.org" for i in range(50)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda room: store.set_membership(room, USER, Membership.JOIN), rooms))

    reloaded = FlatFileStateStore(state_path)
    assert all(reloaded.is_in_room(room, USER) for room in rooms)

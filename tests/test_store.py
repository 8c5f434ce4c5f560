import json
import os

import pytest

from ledger.blockchain import GENESIS_BLOCK, mine_block
from ledger.errors import (
    ReplicaExists,
    ReplicaNotFound,
    ReplicaUnreadable,
    ReplicaWriteError,
    ValidationError,
)
from ledger.store import JsonFileReplicaStore, MemoryReplicaStore


@pytest.fixture(params=["memory", "json"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryReplicaStore()
    return JsonFileReplicaStore(str(tmp_path / "replicas"))


def test_create_starts_with_genesis(any_store):
    any_store.create("alice")
    assert any_store.exists("alice")
    chain = any_store.load("alice")
    assert [b.to_dict() for b in chain] == [GENESIS_BLOCK.to_dict()]


def test_create_twice_raises(any_store):
    any_store.create("alice")
    with pytest.raises(ReplicaExists):
        any_store.create("alice")


def test_list_participants(any_store):
    for participant_id in ["carol", "alice", "bob"]:
        any_store.create(participant_id)
    assert any_store.list_participants() == ["alice", "bob", "carol"]


def test_append_is_positional(any_store):
    any_store.create("alice")
    block = mine_block(GENESIS_BLOCK, "general", "Alice", "v1")
    any_store.append("alice", block)
    assert any_store.load("alice")[-1].hash == block.hash

    with pytest.raises(ReplicaWriteError):
        any_store.append("alice", block)


def test_append_to_missing_replica_fails(any_store):
    block = mine_block(GENESIS_BLOCK, "general", "Alice", "v1")
    with pytest.raises(ReplicaWriteError):
        any_store.append("ghost", block)


def test_load_missing_replica(any_store):
    with pytest.raises(ReplicaNotFound):
        any_store.load("ghost")


def test_load_returns_snapshot(any_store):
    any_store.create("alice")
    snapshot = any_store.load("alice")
    any_store.append("alice", mine_block(GENESIS_BLOCK, "general", "Alice", "v1"))
    assert len(snapshot) == 1
    assert len(any_store.load("alice")) == 2


def test_rejects_invalid_participant_id(any_store):
    with pytest.raises(ValidationError):
        any_store.create("../escape")


def test_corrupted_json_replica_is_unreadable(tmp_path):
    store = JsonFileReplicaStore(str(tmp_path))
    store.create("alice")
    with open(os.path.join(str(tmp_path), "replica_alice.json"), "w") as f:
        f.write("{not json")
    with pytest.raises(ReplicaUnreadable):
        store.load("alice")
    with pytest.raises(ReplicaWriteError):
        store.append("alice", mine_block(GENESIS_BLOCK, "general", "Alice", "v1"))


def test_json_replica_layout(tmp_path):
    store = JsonFileReplicaStore(str(tmp_path))
    store.create("alice")
    with open(os.path.join(str(tmp_path), "replica_alice.json")) as f:
        records = json.load(f)
    assert records == [GENESIS_BLOCK.to_dict()]
    assert not os.path.exists(os.path.join(str(tmp_path), "replica_alice.json.tmp"))


def test_undecodable_json_replica_is_unreadable(tmp_path):
    store = JsonFileReplicaStore(str(tmp_path))
    store.create("alice")
    with open(os.path.join(str(tmp_path), "replica_alice.json"), "wb") as f:
        f.write(b"\xff\xfe[]")
    with pytest.raises(ReplicaUnreadable):
        store.load("alice")
    with pytest.raises(ReplicaWriteError):
        store.append("alice", mine_block(GENESIS_BLOCK, "general", "Alice", "v1"))


def test_json_replica_with_infinite_index_is_unreadable(tmp_path):
    store = JsonFileReplicaStore(str(tmp_path))
    store.create("alice")
    path = os.path.join(str(tmp_path), "replica_alice.json")
    with open(path) as f:
        text = f.read()
    with open(path, "w") as f:
        f.write(text.replace('"index": 0', '"index": Infinity'))
    with pytest.raises(ReplicaUnreadable):
        store.load("alice")

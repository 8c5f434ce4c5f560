import pytest

from ledger.node import LedgerNode
from ledger.registry import Election, ElectionRegistry
from ledger.store import MemoryReplicaStore

PARTICIPANTS = ["alice", "bob", "charlie", "dave"]


@pytest.fixture
def store():
    return MemoryReplicaStore()


@pytest.fixture
def registry():
    registry = ElectionRegistry.with_defaults()
    registry.add(Election("referendum", "active", ["Yes", "No"]))
    registry.add(Election("upcoming-poll", "upcoming", ["Yes", "No"]))
    registry.add(Election("past-poll", "ended", ["Yes", "No"]))
    return registry


@pytest.fixture
def node(store, registry):
    node = LedgerNode(store=store, registry=registry, difficulty=1, fanout_workers=4)
    yield node
    node.close()


@pytest.fixture
def populated(node):
    """Four registered participants and three votes in the general election."""
    for participant_id in PARTICIPANTS:
        node.register_participant(participant_id)
    for voter_id, choice in [("alice", "Alice"), ("bob", "Bob"), ("charlie", "Alice")]:
        node.cast_vote("general", choice, voter_id)
    return node

import pytest

from ledger.blockchain import new_chain, mine_block
from ledger.errors import IntegrityViolation
from ledger.tally import TallyExtractor, compare_counts


def test_results_from_consensus(populated):
    report = populated.tally.from_consensus("general")
    assert report.source == "consensus"
    assert report.counts == {"Alice": 2, "Bob": 1}
    assert report.total_votes == 3
    assert report.mismatches == []


def test_results_ignore_other_elections(populated):
    populated.cast_vote("referendum", "No", "dave")
    assert populated.tally.from_consensus("referendum").counts == {"No": 1}
    assert populated.tally.from_consensus("general").total_votes == 3


def test_tampered_minority_does_not_change_results(populated, store):
    store._replicas["dave"][1]["candidate_id"] = "Dave"
    assert populated.tally.from_consensus("general").counts == {"Alice": 2, "Bob": 1}


def test_invalid_chain_is_never_tallied(populated, store):
    chain = store.load("alice")
    chain[1].candidate_id = "Bob"
    with pytest.raises(IntegrityViolation):
        populated.tally.from_chain(chain, "general")


def test_invalid_consensus_is_never_tallied(populated, store):
    for participant_id in ["alice", "bob", "charlie", "dave"]:
        store._replicas[participant_id][2]["candidate_id"] = "Charlie"
    with pytest.raises(IntegrityViolation):
        populated.tally.from_consensus("general")


def test_side_channel_mismatch_is_reported(populated):
    report = populated.tally.from_consensus("general", side_counts={"Alice": 2, "Bob": 2})
    assert [m.to_dict() for m in report.mismatches] == [
        {"candidate_id": "Bob", "chain_count": 1, "side_count": 2},
    ]


def test_node_results_use_vote_counter(populated):
    results = populated.get_results("general")
    assert results["total_votes"] == 3
    assert results["mismatches"] == []
    assert results["results"][0]["candidate_id"] == "Alice"
    assert results["results"][0]["count"] == 2
    assert round(results["results"][0]["percentage"], 1) == 66.7


def test_single_replica_tally(populated):
    chain = new_chain()
    chain.append(mine_block(chain[-1], "general", "Bob", "x"))
    report = TallyExtractor(populated.verifier, difficulty=1).from_chain(chain, "general")
    assert report.source == "replica"
    assert report.counts == {"Bob": 1}


def test_compare_counts():
    assert compare_counts({"A": 1}, {"A": 1}) == []
    mismatches = compare_counts({"A": 1}, {"B": 1})
    assert [(m.candidate_id, m.chain_count, m.side_count) for m in mismatches] == [
        ("A", 1, 0),
        ("B", 0, 1),
    ]

import pytest
from fastapi.testclient import TestClient

from api.server import create_app

ADMIN = {"X-Participant-Id": "admin"}


def as_user(participant_id):
    return {"X-Participant-Id": participant_id}


@pytest.fixture
def client(node):
    with TestClient(create_app(node)) as c:
        for participant_id in ["admin", "alice", "bob", "carol"]:
            resp = c.post("/participants", headers=as_user(participant_id))
            assert resp.status_code == 200, resp.json()
        yield c


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requires_identity(client):
    assert client.post("/vote", json={"election_id": "general", "candidate_id": "Alice"}).status_code == 401


def test_register_is_idempotent(client):
    resp = client.post("/participants", headers=as_user("alice"))
    assert resp.json() == {"participant_id": "alice", "created": False}


def test_cast_vote(client):
    resp = client.post(
        "/vote", json={"election_id": "general", "candidate_id": "Alice"}, headers=as_user("alice")
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["block_hash"].startswith("0")
    assert data["replication_failures"] == []

    stats = client.get("/replicas/bob/stats", headers=as_user("bob")).json()
    assert stats["total_blocks"] == 2
    assert stats["last_block_hash"] == data["block_hash"]


def test_duplicate_vote_conflicts(client):
    body = {"election_id": "general", "candidate_id": "Alice"}
    client.post("/vote", json=body, headers=as_user("alice"))
    resp = client.post("/vote", json=body, headers=as_user("alice"))
    assert resp.status_code == 409
    assert resp.json()["error"] == "state_error"


def test_unknown_candidate_is_validation_error(client):
    resp = client.post(
        "/vote", json={"election_id": "general", "candidate_id": "Zed"}, headers=as_user("alice")
    )
    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert resp.json()["error"] == "validation_error"


def test_inactive_election_is_state_error(client):
    resp = client.post(
        "/vote", json={"election_id": "past-poll", "candidate_id": "Yes"}, headers=as_user("alice")
    )
    assert resp.status_code == 409


def test_integrity_requires_admin(client):
    assert client.get("/integrity", headers=as_user("alice")).status_code == 403
    assert client.get("/stats", headers=as_user("alice")).status_code == 403


def test_integrity_report(client, store):
    client.post("/vote", json={"election_id": "general", "candidate_id": "Bob"}, headers=as_user("bob"))
    store._replicas["carol"].pop()

    data = client.get("/integrity", headers=ADMIN).json()
    assert data["total_users"] == 4
    assert data["match_percentage"] == 75
    assert data["is_integrity_safe"] is False
    assert data["consensus_chain_length"] == 2
    assert data["status"] == "Some blockchains have discrepancies"
    assert data["discrepancies"][0]["participant_id"] == "carol"
    assert data["discrepancies"][0]["diverging_index"] == 1
    assert "consensus_chain" not in data

    full = client.get("/integrity", params={"include_chain": True}, headers=ADMIN).json()
    assert len(full["consensus_chain"]) == 2


def test_resync_endpoint(client, store):
    client.post("/vote", json={"election_id": "general", "candidate_id": "Bob"}, headers=as_user("bob"))
    store._replicas["carol"].pop()

    resp = client.post("/replicas/carol/resync", headers=ADMIN)
    assert resp.json() == {"participant_id": "carol", "status": "resynced", "appended": 1}
    assert client.get("/integrity", headers=ADMIN).json()["match_percentage"] == 100


def test_resync_of_canonical_replica_rejected(client):
    resp = client.post("/replicas/__canonical__/resync", headers=ADMIN)
    assert resp.status_code == 400
    resp = client.post("/vote", json={"election_id": "general", "candidate_id": "Bob"}, headers=as_user("bob"))
    assert resp.status_code == 200


def test_stats(client):
    data = client.get("/stats", headers=ADMIN).json()
    assert data["integrity_status"] == "safe"
    assert data["total_votes"] == 0


def test_replica_stats_of_others_requires_admin(client):
    assert client.get("/replicas/bob/stats", headers=as_user("alice")).status_code == 403
    assert client.get("/replicas/bob/stats", headers=ADMIN).status_code == 200
    assert client.get("/replicas/nobody/stats", headers=ADMIN).status_code == 404


def test_consensus_and_results(client):
    client.post("/vote", json={"election_id": "general", "candidate_id": "Bob"}, headers=as_user("bob"))
    client.post("/vote", json={"election_id": "referendum", "candidate_id": "Yes"}, headers=as_user("bob"))

    blocks = client.get("/consensus/general").json()
    assert [b["candidate_id"] for b in blocks] == ["Bob"]

    results = client.get("/elections/general/results").json()
    assert results["total_votes"] == 1
    assert results["results"] == [{"candidate_id": "Bob", "count": 1, "percentage": 100.0}]

    assert client.get("/elections/missing/results").status_code == 404


def test_list_elections(client):
    ids = [e["election_id"] for e in client.get("/elections").json()]
    assert "general" in ids

"""
Election/candidate registry and the side-channel vote counter.

Both stand in for the external records the ledger consults: the registry
decides whether a block may be minted, the counter keeps a running count
outside the chain so the two can be compared.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from config import DEFAULT_ELECTION_ID, DEFAULT_CANDIDATES

ELECTION_STATUSES = ("upcoming", "active", "ended")


@dataclass
class Election:
    election_id: str
    status: str = "upcoming"
    candidates: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "election_id": self.election_id,
            "status": self.status,
            "candidates": list(self.candidates),
        }


class ElectionRegistry:
    def __init__(self) -> None:
        self._elections: Dict[str, Election] = {}
        self._lock = threading.Lock()

    @classmethod
    def with_defaults(cls) -> "ElectionRegistry":
        registry = cls()
        registry.add(Election(DEFAULT_ELECTION_ID, "active", list(DEFAULT_CANDIDATES)))
        return registry

    def add(self, election: Election) -> None:
        if election.status not in ELECTION_STATUSES:
            raise ValueError(f"unknown election status: {election.status}")
        with self._lock:
            self._elections[election.election_id] = election

    def get(self, election_id: str) -> Optional[Election]:
        return self._elections.get(election_id)

    def set_status(self, election_id: str, status: str) -> None:
        if status not in ELECTION_STATUSES:
            raise ValueError(f"unknown election status: {status}")
        with self._lock:
            self._elections[election_id].status = status

    def list(self) -> List[Election]:
        return sorted(self._elections.values(), key=lambda e: e.election_id)


class VoteCounter:
    """
    Running per-candidate counts maintained alongside the chain.
    """

    def __init__(self) -> None:
        self._counts: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def increment(self, election_id: str, candidate_id: str) -> int:
        key = (election_id, candidate_id)
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + 1
            return self._counts[key]

    def counts(self, election_id: str) -> Dict[str, int]:
        with self._lock:
            return {
                candidate: count
                for (election, candidate), count in self._counts.items()
                if election == election_id
            }

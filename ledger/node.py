from __future__ import annotations

import logging
import os
from typing import Dict, Any, List, Optional

from config import DATA_DIR, REPLICA_HOST_URL
from .blockchain import Block
from .coordinator import WriteCoordinator, CastResult, ResyncResult
from .registry import ElectionRegistry, VoteCounter
from .store import ReplicaStore, JsonFileReplicaStore
from .tally import TallyExtractor
from .verifier import ConsensusVerifier, IntegrityReport

logger = logging.getLogger(__name__)


def default_store() -> ReplicaStore:
    """
    Remote replica host when REPLICA_HOST_URL is set, JSON files otherwise.
    """
    if REPLICA_HOST_URL:
        from network.replica_client import HttpReplicaStore

        logger.info(f"[node] Using replica host at {REPLICA_HOST_URL}")
        return HttpReplicaStore(REPLICA_HOST_URL)
    return JsonFileReplicaStore(os.path.join(DATA_DIR, "replicas"))


class LedgerNode:
    """
    One ledger service: wires the write coordinator, the consensus verifier
    and the tally extractor to a replica store and an election registry.
    """

    def __init__(
        self,
        store: Optional[ReplicaStore] = None,
        registry: Optional[ElectionRegistry] = None,
        counter: Optional[VoteCounter] = None,
        **options: Any,
    ) -> None:
        self.store = store or default_store()
        self.registry = registry or ElectionRegistry.with_defaults()
        self.counter = counter or VoteCounter()

        coordinator_opts = {k: options[k] for k in ("canonical_id", "difficulty", "fanout_workers") if k in options}
        verifier_opts = {
            k: options[k]
            for k in ("canonical_id", "difficulty", "quorum_percent", "unreadable_policy", "chunk_size", "workers")
            if k in options
        }

        self.coordinator = WriteCoordinator(self.store, self.registry, self.counter, **coordinator_opts)
        self.verifier = ConsensusVerifier(self.store, **verifier_opts)
        self.tally = TallyExtractor(self.verifier, difficulty=self.verifier.difficulty)

    def close(self) -> None:
        self.coordinator.close()

    def register_participant(self, participant_id: str) -> bool:
        return self.coordinator.register_participant(participant_id)

    def cast_vote(self, election_id: str, candidate_id: str, voter_id: str) -> CastResult:
        return self.coordinator.cast_vote(election_id, candidate_id, voter_id)

    def verify_integrity(self) -> IntegrityReport:
        return self.verifier.verify_integrity()

    def get_consensus_chain(self, election_id: Optional[str] = None) -> List[Block]:
        return self.verifier.get_consensus_chain(election_id)

    def get_replica_stats(self, participant_id: str) -> Dict[str, Any]:
        return self.verifier.get_replica_stats(participant_id)

    def get_statistics(self) -> Dict[str, Any]:
        return self.verifier.statistics()

    def get_results(self, election_id: str) -> Dict[str, Any]:
        """
        Results from the consensus chain, checked against the side-channel counter.
        """
        report = self.tally.from_consensus(election_id, side_counts=self.counter.counts(election_id))
        return report.to_dict()

    def resync_replica(self, participant_id: str) -> ResyncResult:
        return self.coordinator.resync_replica(participant_id, self.get_consensus_chain())

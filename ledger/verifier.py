"""
Consensus verification across all participant replicas.

A verification pass loads every replica in bounded chunks, groups replicas
with identical content, elects the largest group's chain as the consensus
and reports every replica that disagrees with it. Passes hold no coordinator
lock and can be re-run at any time.
"""
from __future__ import annotations

import hashlib
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Tuple

from config import (
    CANONICAL_REPLICA_ID,
    DIFFICULTY,
    INTEGRITY_QUORUM_PERCENT,
    INTEGRITY_CRITICAL_PERCENT,
    UNREADABLE_POLICY,
    VERIFY_CHUNK_SIZE,
    VERIFY_WORKERS,
)
from .blockchain import Block, ChainViolation, check_chain, chain_stats, new_chain
from .errors import LedgerError
from .store import ReplicaStore

logger = logging.getLogger(__name__)

UNREADABLE_POLICIES = ("count", "exclude")


def chain_fingerprint(chain: List[Block]) -> str:
    """Digest of the full ordered content of a chain."""
    digest = hashlib.sha256()
    for block in chain:
        digest.update(json.dumps(block.to_dict(), sort_keys=True).encode())
        digest.update(b"\n")
    return digest.hexdigest()


def diverging_index(replica: List[Block], consensus: List[Block]) -> int:
    """
    First position where the two chains hold different blocks, or the length
    of the shorter chain when one is a prefix of the other.
    """
    for i, (ours, theirs) in enumerate(zip(replica, consensus)):
        if ours.hash != theirs.hash or ours.to_dict() != theirs.to_dict():
            return i
    return min(len(replica), len(consensus))


@dataclass
class Discrepancy:
    participant_id: str
    kind: str  # "diverged", "integrity_violation" or "unreadable"
    diverging_index: Optional[int] = None
    expected_hash: Optional[str] = None
    actual_hash: Optional[str] = None
    chain_length: Optional[int] = None
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "kind": self.kind,
            "diverging_index": self.diverging_index,
            "expected_hash": self.expected_hash,
            "actual_hash": self.actual_hash,
            "chain_length": self.chain_length,
            "reason": self.reason,
        }


@dataclass
class IntegrityReport:
    is_integrity_safe: bool
    match_percentage: float
    total_users: int
    matching_users: int
    consensus_chain: List[Block]
    consensus_valid: bool
    discrepancies: List[Discrepancy] = field(default_factory=list)
    integrity_violations: Dict[str, List[ChainViolation]] = field(default_factory=dict)
    canonical_matches_consensus: Optional[bool] = None

    @property
    def consensus_chain_length(self) -> int:
        return len(self.consensus_chain)

    def to_dict(self, include_chain: bool = False) -> Dict[str, Any]:
        data = {
            "is_integrity_safe": self.is_integrity_safe,
            "match_percentage": self.match_percentage,
            "total_users": self.total_users,
            "matching_users": self.matching_users,
            "consensus_chain_length": self.consensus_chain_length,
            "consensus_valid": self.consensus_valid,
            "canonical_matches_consensus": self.canonical_matches_consensus,
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "integrity_violations": {
                pid: [v.to_dict() for v in violations]
                for pid, violations in self.integrity_violations.items()
            },
        }
        if include_chain:
            data["consensus_chain"] = [block.to_dict() for block in self.consensus_chain]
        return data


@dataclass
class _Group:
    fingerprint: str
    chain: List[Block]
    violations: List[ChainViolation]
    members: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.violations

    @property
    def tip_hash(self) -> str:
        return self.chain[-1].hash if self.chain else ""


@dataclass
class _Scan:
    groups: Dict[str, _Group] = field(default_factory=dict)
    membership: Dict[str, str] = field(default_factory=dict)
    unreadable: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.membership) + len(self.unreadable)


class ConsensusVerifier:
    def __init__(
        self,
        store: ReplicaStore,
        canonical_id: str = CANONICAL_REPLICA_ID,
        difficulty: int = DIFFICULTY,
        quorum_percent: float = INTEGRITY_QUORUM_PERCENT,
        unreadable_policy: str = UNREADABLE_POLICY,
        chunk_size: int = VERIFY_CHUNK_SIZE,
        workers: int = VERIFY_WORKERS,
    ) -> None:
        if unreadable_policy not in UNREADABLE_POLICIES:
            raise ValueError(f"unknown unreadable policy: {unreadable_policy}")
        self.store = store
        self.canonical_id = canonical_id
        self.difficulty = difficulty
        self.quorum_percent = quorum_percent
        self.unreadable_policy = unreadable_policy
        self.chunk_size = max(1, chunk_size)
        self.workers = max(1, workers)

    def participants(self) -> List[str]:
        return [p for p in self.store.list_participants() if p != self.canonical_id]

    def _load(self, participant_id: str) -> Tuple[str, Optional[List[Block]], str]:
        try:
            return participant_id, self.store.load(participant_id), ""
        except LedgerError as e:
            return participant_id, None, str(e)

    def _scan(self) -> _Scan:
        scan = _Scan()
        participants = self.participants()

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="verify") as pool:
            for start in range(0, len(participants), self.chunk_size):
                chunk = participants[start:start + self.chunk_size]
                for participant_id, chain, error in pool.map(self._load, chunk):
                    if chain is None:
                        logger.warning(f"[verifier] Replica {participant_id} unreadable: {error}")
                        scan.unreadable[participant_id] = error
                        continue
                    fingerprint = chain_fingerprint(chain)
                    group = scan.groups.get(fingerprint)
                    if group is None:
                        group = scan.groups[fingerprint] = _Group(
                            fingerprint, chain, check_chain(chain, self.difficulty)
                        )
                    group.members.append(participant_id)
                    scan.membership[participant_id] = fingerprint

        return scan

    @staticmethod
    def _elect(groups: Dict[str, _Group]) -> Optional[_Group]:
        """
        Largest group wins. Ties go to a valid chain, then the longer chain,
        then the lexicographically smallest tip hash.
        """
        if not groups:
            return None
        return min(
            groups.values(),
            key=lambda g: (-len(g.members), not g.valid, -len(g.chain), g.tip_hash),
        )

    def _canonical_matches(self, consensus: Optional[_Group]) -> Optional[bool]:
        if consensus is None:
            return None
        _, chain, error = self._load(self.canonical_id)
        if chain is None:
            logger.warning(f"[verifier] Canonical replica unreadable: {error}")
            return None
        return chain_fingerprint(chain) == consensus.fingerprint

    def verify_integrity(self) -> IntegrityReport:
        scan = self._scan()
        consensus = self._elect(scan.groups)
        consensus_chain = consensus.chain if consensus else new_chain()
        consensus_valid = consensus.valid if consensus else True

        discrepancies: List[Discrepancy] = []
        violations: Dict[str, List[ChainViolation]] = {}
        matching = 0

        for participant_id, fingerprint in scan.membership.items():
            group = scan.groups[fingerprint]
            if not group.valid:
                violations[participant_id] = group.violations
            if group is consensus:
                matching += 1
                continue

            index = diverging_index(group.chain, consensus_chain)
            discrepancies.append(Discrepancy(
                participant_id=participant_id,
                kind="diverged" if group.valid else "integrity_violation",
                diverging_index=index,
                expected_hash=consensus_chain[index].hash if index < len(consensus_chain) else None,
                actual_hash=group.chain[index].hash if index < len(group.chain) else None,
                chain_length=len(group.chain),
                reason=group.violations[0].reason if group.violations else "",
            ))

        for participant_id, error in scan.unreadable.items():
            discrepancies.append(Discrepancy(
                participant_id=participant_id, kind="unreadable", reason=error
            ))

        discrepancies.sort(key=lambda d: d.participant_id)

        if self.unreadable_policy == "exclude":
            denominator = len(scan.membership)
        else:
            denominator = scan.total
        match_percentage = (matching / denominator) * 100 if denominator else 0.0

        report = IntegrityReport(
            is_integrity_safe=(
                denominator > 0
                and consensus_valid
                and match_percentage >= self.quorum_percent
            ),
            match_percentage=match_percentage,
            total_users=scan.total,
            matching_users=matching,
            consensus_chain=consensus_chain,
            consensus_valid=consensus_valid,
            discrepancies=discrepancies,
            integrity_violations=violations,
            canonical_matches_consensus=self._canonical_matches(consensus),
        )
        logger.info(
            f"[verifier] {matching}/{scan.total} replicas match consensus "
            f"({match_percentage:.1f}%), {len(discrepancies)} discrepancies"
        )
        return report

    def get_consensus_chain(self, election_id: Optional[str] = None) -> List[Block]:
        """
        The elected consensus chain, optionally filtered to one election's
        vote blocks.
        """
        consensus = self._elect(self._scan().groups)
        chain = consensus.chain if consensus else new_chain()
        if election_id is None:
            return chain
        return [b for b in chain if b.index >= 1 and b.election_id == election_id]

    def statistics(self) -> Dict[str, Any]:
        report = self.verify_integrity()
        if report.match_percentage >= self.quorum_percent:
            status = "safe"
        elif report.match_percentage >= INTEGRITY_CRITICAL_PERCENT:
            status = "warning"
        else:
            status = "critical"
        if not report.consensus_valid:
            status = "critical"
        return {
            "total_blocks": report.consensus_chain_length,
            "total_votes": report.consensus_chain_length - 1,
            "integrity_status": status,
            "match_percentage": report.match_percentage,
        }

    def get_replica_stats(self, participant_id: str) -> Dict[str, Any]:
        chain = self.store.load(participant_id)
        stats = chain_stats(chain)
        stats["participant_id"] = participant_id
        stats["chain_valid"] = not check_chain(chain, self.difficulty)
        return stats

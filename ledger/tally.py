from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Mapping

from config import DIFFICULTY
from .blockchain import Block, check_chain, tally
from .errors import IntegrityViolation
from .verifier import ConsensusVerifier

logger = logging.getLogger(__name__)


@dataclass
class TallyMismatch:
    candidate_id: str
    chain_count: int
    side_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate_id": self.candidate_id,
            "chain_count": self.chain_count,
            "side_count": self.side_count,
        }


@dataclass
class TallyReport:
    election_id: str
    source: str
    chain_length: int
    counts: Dict[str, int]
    mismatches: List[TallyMismatch] = field(default_factory=list)

    @property
    def total_votes(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "election_id": self.election_id,
            "source": self.source,
            "chain_length": self.chain_length,
            "total_votes": self.total_votes,
            "results": [
                {
                    "candidate_id": candidate,
                    "count": count,
                    "percentage": (count / self.total_votes) * 100 if self.total_votes else 0.0,
                }
                for candidate, count in sorted(self.counts.items(), key=lambda x: x[1], reverse=True)
            ],
            "mismatches": [m.to_dict() for m in self.mismatches],
        }


def compare_counts(chain_counts: Mapping[str, int], side_counts: Mapping[str, int]) -> List[TallyMismatch]:
    mismatches = []
    for candidate in sorted(set(chain_counts) | set(side_counts)):
        ours = chain_counts.get(candidate, 0)
        theirs = side_counts.get(candidate, 0)
        if ours != theirs:
            mismatches.append(TallyMismatch(candidate, ours, theirs))
    return mismatches


class TallyExtractor:
    """
    Final counts, taken only from chains that pass validation.

    The consensus chain is the preferred source; counting a single replica
    risks amplifying a tampered or lagging copy.
    """

    def __init__(self, verifier: ConsensusVerifier, difficulty: int = DIFFICULTY) -> None:
        self.verifier = verifier
        self.difficulty = difficulty

    def from_chain(
        self,
        chain: List[Block],
        election_id: str,
        side_counts: Optional[Mapping[str, int]] = None,
        source: str = "replica",
    ) -> TallyReport:
        violations = check_chain(chain, self.difficulty)
        if violations:
            raise IntegrityViolation(
                f"cannot tally an invalid chain (block #{violations[0].index}: {violations[0].reason})"
            )

        counts = tally(chain, election_id)
        report = TallyReport(election_id, source, len(chain), counts)
        if side_counts is not None:
            report.mismatches = compare_counts(counts, side_counts)
            for m in report.mismatches:
                logger.warning(
                    f"[tally] {election_id}/{m.candidate_id}: chain counts {m.chain_count}, "
                    f"side-channel counts {m.side_count}"
                )
        return report

    def from_consensus(
        self, election_id: str, side_counts: Optional[Mapping[str, int]] = None
    ) -> TallyReport:
        chain = self.verifier.get_consensus_chain()
        return self.from_chain(chain, election_id, side_counts, source="consensus")

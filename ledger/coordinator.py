from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Iterator

from config import CANONICAL_REPLICA_ID, DIFFICULTY, FANOUT_WORKERS
from .blockchain import Block, mine_block, has_voted, check_chain, last_block
from .errors import (
    IntegrityViolation,
    LedgerError,
    ReplicaExists,
    ReplicaNotFound,
    ReplicaWriteError,
    ReplicationFailure,
    StateError,
    ValidationError,
)
from .registry import ElectionRegistry, VoteCounter
from .store import ReplicaStore

logger = logging.getLogger(__name__)


@dataclass
class ReplicaWriteFailure:
    participant_id: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"participant_id": self.participant_id, "reason": self.reason}


@dataclass
class CastResult:
    success: bool
    block: Optional[Block] = None
    failures: List[ReplicaWriteFailure] = field(default_factory=list)

    @property
    def block_hash(self) -> Optional[str]:
        return self.block.hash if self.block else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "block_hash": self.block_hash,
            "block": self.block.to_dict() if self.block else None,
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass
class ResyncResult:
    participant_id: str
    status: str  # "in_sync", "resynced" or "diverged"
    appended: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "status": self.status,
            "appended": self.appended,
        }


class BlockSequencer:
    """
    Single writer that decides which block becomes block N.

    Every append to the ledger happens inside `claim()`; `height` is the
    number of blocks the canonical replica must hold when the claim starts.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.height: Optional[int] = None

    @contextmanager
    def claim(self) -> Iterator["BlockSequencer"]:
        with self._lock:
            yield self

    def check_tip(self, chain: List[Block]) -> None:
        if self.height is None:
            self.height = len(chain)
        elif len(chain) != self.height:
            raise IntegrityViolation(
                f"canonical replica holds {len(chain)} blocks, sequencer expects {self.height}"
            )

    def advance(self, block: Block) -> None:
        self.height = block.index + 1


class WriteCoordinator:
    """
    Mines vote blocks against the canonical replica and broadcasts them to
    every participant replica.

    The broadcast is best-effort: a vote is committed once the canonical
    replica accepts it, and failed participant writes are returned and
    logged for the verifier to surface.
    """

    def __init__(
        self,
        store: ReplicaStore,
        registry: ElectionRegistry,
        counter: Optional[VoteCounter] = None,
        sequencer: Optional[BlockSequencer] = None,
        canonical_id: str = CANONICAL_REPLICA_ID,
        difficulty: int = DIFFICULTY,
        fanout_workers: int = FANOUT_WORKERS,
    ) -> None:
        self.store = store
        self.registry = registry
        self.counter = counter or VoteCounter()
        self.sequencer = sequencer or BlockSequencer()
        self.canonical_id = canonical_id
        self.difficulty = difficulty
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, fanout_workers), thread_name_prefix="fanout"
        )
        self.ensure_canonical()

    def ensure_canonical(self) -> None:
        try:
            self.store.create(self.canonical_id)
            logger.info(f"[coordinator] Created canonical replica {self.canonical_id}")
        except ReplicaExists:
            pass

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def participants(self) -> List[str]:
        return [p for p in self.store.list_participants() if p != self.canonical_id]

    def canonical_chain(self) -> List[Block]:
        return self.store.load(self.canonical_id)

    # voting

    def _check_request(self, election_id: Any, candidate_id: Any, voter_id: Any) -> None:
        for name, value in (
            ("election_id", election_id),
            ("candidate_id", candidate_id),
            ("voter_id", voter_id),
        ):
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{name} is required")

        election = self.registry.get(election_id)
        if election is None:
            raise ValidationError(f"unknown election: {election_id}")
        if candidate_id not in election.candidates:
            raise ValidationError(f"unknown candidate {candidate_id} for election {election_id}")
        if election.status != "active":
            raise StateError(f"election {election_id} is {election.status}, not active")
        if not self.store.exists(voter_id):
            raise StateError(f"participant {voter_id} is not registered")

    def cast_vote(self, election_id: str, candidate_id: str, voter_id: str) -> CastResult:
        """
        Public API for casting a vote.

        Raises ValidationError / StateError for rejected requests, and
        ReplicationFailure if the canonical replica refuses the block.
        """
        self._check_request(election_id, candidate_id, voter_id)

        with self.sequencer.claim():
            chain = self.canonical_chain()
            violations = check_chain(chain, self.difficulty)
            if violations:
                raise IntegrityViolation(
                    f"canonical replica is invalid at block #{violations[0].index}: "
                    f"{violations[0].reason}"
                )
            self.sequencer.check_tip(chain)

            if has_voted(chain, voter_id, election_id):
                raise StateError(f"participant has already voted in election {election_id}")

            block = mine_block(
                last_block(chain), election_id, candidate_id, voter_id, self.difficulty
            )
            try:
                self.store.append(self.canonical_id, block)
            except ReplicaWriteError as e:
                logger.error(f"[coordinator] Canonical replica refused block #{block.index}: {e}")
                raise ReplicationFailure(f"canonical replica refused block: {e}") from e
            self.sequencer.advance(block)

            logger.info(f"[coordinator] Block #{block.index} mined. Broadcasting...")
            failures = self._broadcast(block, self.participants())

        self.counter.increment(election_id, candidate_id)
        return CastResult(success=True, block=block, failures=failures)

    def _write_replica(self, participant_id: str, block: Block) -> Optional[ReplicaWriteFailure]:
        try:
            self.store.append(participant_id, block)
        except LedgerError as e:
            return ReplicaWriteFailure(participant_id, str(e))
        return None

    def _broadcast(self, block: Block, participants: List[str]) -> List[ReplicaWriteFailure]:
        """Send the block to every participant replica; collect failed writes."""
        results = self._executor.map(lambda pid: self._write_replica(pid, block), participants)
        failures = [f for f in results if f is not None]
        for failure in failures:
            logger.warning(
                f"[coordinator] Failed to write block #{block.index} "
                f"to {failure.participant_id}: {failure.reason}"
            )
        if failures:
            logger.warning(
                f"[coordinator] Block #{block.index} reached "
                f"{len(participants) - len(failures)}/{len(participants)} replicas"
            )
        return failures

    # replica lifecycle

    def register_participant(self, participant_id: str) -> bool:
        """
        Create a participant's replica and catch it up with the canonical chain.

        Returns False if the participant was already registered.
        """
        if participant_id == self.canonical_id:
            raise ValidationError("participant id is reserved")
        with self.sequencer.claim():
            try:
                self.store.create(participant_id)
            except ReplicaExists:
                return False
            chain = self.canonical_chain()
            for block in chain[1:]:
                self.store.append(participant_id, block)
        logger.info(
            f"[coordinator] Registered {participant_id} with {len(chain)} blocks"
        )
        return True

    def resync_replica(self, participant_id: str, consensus: List[Block]) -> ResyncResult:
        """
        Bring a lagging replica up to `consensus` by appending what it lacks.

        Replicas that disagree with the consensus on any existing block are
        left untouched and reported as diverged.
        """
        if participant_id == self.canonical_id:
            raise ValidationError("participant id is reserved")
        violations = check_chain(consensus, self.difficulty)
        if violations:
            raise IntegrityViolation("refusing to resync from an invalid consensus chain")

        with self.sequencer.claim():
            try:
                replica = self.store.load(participant_id)
            except ReplicaNotFound:
                self.store.create(participant_id)
                replica = self.store.load(participant_id)

            if len(replica) > len(consensus) or any(
                a.to_dict() != b.to_dict() for a, b in zip(replica, consensus)
            ):
                logger.warning(f"[coordinator] Replica {participant_id} diverged; not resynced")
                return ResyncResult(participant_id, "diverged")

            missing = consensus[len(replica):]
            for block in missing:
                self.store.append(participant_id, block)

        if not missing:
            return ResyncResult(participant_id, "in_sync")
        logger.info(f"[coordinator] Resynced {participant_id}: appended {len(missing)} blocks")
        return ResyncResult(participant_id, "resynced", appended=len(missing))

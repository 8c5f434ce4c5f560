from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Iterable

from config import (
    DIFFICULTY,
    VOTER_HASH_SALT,
    GENESIS_TIMESTAMP,
    GENESIS_MARKER,
)
from .errors import ReplicaUnreadable

BLOCK_FIELDS = (
    "index",
    "timestamp",
    "election_id",
    "candidate_id",
    "voter_hash",
    "previous_hash",
    "hash",
    "nonce",
)

INT_FIELDS = ("index", "timestamp", "nonce")


def now_ms() -> int:
    return int(time.time() * 1000)


def calculate_hash(
    index: int,
    timestamp: int,
    election_id: str,
    candidate_id: str,
    voter_hash: str,
    previous_hash: str,
    nonce: int,
) -> str:
    block_data = {
        "index": index,
        "timestamp": timestamp,
        "election_id": election_id,
        "candidate_id": candidate_id,
        "voter_hash": voter_hash,
        "previous_hash": previous_hash,
        "nonce": nonce,
    }
    block_string = json.dumps(block_data, sort_keys=True).encode()
    return hashlib.sha256(block_string).hexdigest()


def hash_voter_id(voter_id: str, salt: str = VOTER_HASH_SALT) -> str:
    """
    One-way hash of a voter id, so raw identifiers never appear in the chain.
    """
    return hashlib.sha256((voter_id + salt).encode()).hexdigest()


def meets_difficulty(block_hash: str, difficulty: int) -> bool:
    return block_hash.startswith("0" * difficulty)


@dataclass
class Block:
    """
    One cast vote, or the genesis marker at index 0.
    """
    index: int
    election_id: str
    candidate_id: str
    voter_hash: str
    previous_hash: str
    timestamp: int = field(default_factory=now_ms)
    nonce: int = 0
    hash: str = ""

    def compute_hash(self) -> str:
        # note: we don't include self.hash in the data used to compute the hash
        return calculate_hash(
            self.index,
            self.timestamp,
            self.election_id,
            self.candidate_id,
            self.voter_hash,
            self.previous_hash,
            self.nonce,
        )

    def mine(self, difficulty: int = DIFFICULTY) -> None:
        """
        Simple proof-of-work: find a hash with `difficulty` leading zeros.
        """
        self.hash = self.compute_hash()
        while not meets_difficulty(self.hash, difficulty):
            self.nonce += 1
            self.hash = self.compute_hash()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "timestamp": self.timestamp,
            "election_id": self.election_id,
            "candidate_id": self.candidate_id,
            "voter_hash": self.voter_hash,
            "previous_hash": self.previous_hash,
            "hash": self.hash,
            "nonce": self.nonce,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Block":
        missing = [name for name in BLOCK_FIELDS if name not in data]
        if missing:
            raise ReplicaUnreadable(f"block record missing fields: {', '.join(missing)}")
        # Values are taken as stored: coercing them would let differently
        # encoded replicas fingerprint alike, and recomputing the hash would
        # hide tampering.
        for name in BLOCK_FIELDS:
            value = data[name]
            if name in INT_FIELDS:
                valid = isinstance(value, int) and not isinstance(value, bool) and value >= 0
            else:
                valid = isinstance(value, str)
            if not valid:
                raise ReplicaUnreadable(f"malformed block record: {name}={value!r}")
        return cls(**{name: data[name] for name in BLOCK_FIELDS})


def _make_genesis() -> Block:
    genesis = Block(
        index=0,
        election_id=GENESIS_MARKER,
        candidate_id=GENESIS_MARKER,
        voter_hash=GENESIS_MARKER,
        previous_hash="0",
        timestamp=GENESIS_TIMESTAMP,
        nonce=0,
    )
    genesis.hash = genesis.compute_hash()
    return genesis


GENESIS_BLOCK = _make_genesis()


def genesis_block() -> Block:
    """Fresh copy of the genesis constant."""
    return Block.from_dict(GENESIS_BLOCK.to_dict())


def new_chain() -> List[Block]:
    return [genesis_block()]


def last_block(chain: List[Block]) -> Block:
    if not chain:
        return GENESIS_BLOCK
    return chain[-1]


def mine_block(
    previous: Block,
    election_id: str,
    candidate_id: str,
    voter_id: str,
    difficulty: int = DIFFICULTY,
    timestamp: Optional[int] = None,
) -> Block:
    """
    Build the block following `previous` and search nonces from 0 until its
    hash meets the difficulty target.

    With difficulty 1 this takes ~16 attempts and is fine to run inline.
    """
    block = Block(
        index=previous.index + 1,
        election_id=election_id,
        candidate_id=candidate_id,
        voter_hash=hash_voter_id(voter_id),
        previous_hash=previous.hash,
        timestamp=timestamp if timestamp is not None else now_ms(),
    )
    block.mine(difficulty)
    return block


# validation

@dataclass
class ChainViolation:
    index: int
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "reason": self.reason}


def check_block(block: Block, previous: Block, difficulty: int = DIFFICULTY) -> Optional[str]:
    """
    Return the first reason `block` cannot follow `previous`, or None.

    Checks run in order: index, previous-hash link, hash recomputation,
    proof-of-work.
    """
    if block.index != previous.index + 1:
        return "invalid_index"

    if block.previous_hash != previous.hash:
        return "previous_hash_mismatch"

    if block.hash != block.compute_hash():
        return "hash_mismatch"

    if not meets_difficulty(block.hash, difficulty):
        return "insufficient_work"

    return None


def validate_block(block: Block, previous: Block, difficulty: int = DIFFICULTY) -> bool:
    return check_block(block, previous, difficulty) is None


def check_chain(chain: List[Block], difficulty: int = DIFFICULTY) -> List[ChainViolation]:
    """
    Verify that:
    - the chain is non-empty and starts with the genesis constant
    - every block links to and follows the block before it
    """
    if not chain:
        return [ChainViolation(index=0, reason="empty_chain")]

    violations: List[ChainViolation] = []
    if chain[0].to_dict() != GENESIS_BLOCK.to_dict():
        violations.append(ChainViolation(index=0, reason="invalid_genesis"))

    for i in range(1, len(chain)):
        reason = check_block(chain[i], chain[i - 1], difficulty)
        if reason is not None:
            violations.append(ChainViolation(index=i, reason=reason))

    return violations


def validate_chain(chain: List[Block], difficulty: int = DIFFICULTY) -> bool:
    return not check_chain(chain, difficulty)


# lookups

def has_voted(chain: Iterable[Block], voter_id: str, election_id: str) -> bool:
    voter_hash = hash_voter_id(voter_id)
    return any(
        block.index >= 1
        and block.voter_hash == voter_hash
        and block.election_id == election_id
        for block in chain
    )


def tally(chain: Iterable[Block], election_id: str) -> Dict[str, int]:
    """
    Count votes per candidate for one election across the chain.
    """
    results: Dict[str, int] = {}
    for block in chain:
        if block.index >= 1 and block.election_id == election_id:
            results[block.candidate_id] = results.get(block.candidate_id, 0) + 1
    return results


def chain_stats(chain: List[Block]) -> Dict[str, Any]:
    tip = last_block(chain)
    return {
        "total_blocks": len(chain),
        "total_votes": max(len(chain) - 1, 0),
        "genesis_hash": chain[0].hash if chain else "",
        "last_block_hash": tip.hash,
        "last_block_timestamp": tip.timestamp,
    }


# persistence codec

def chain_to_records(chain: List[Block]) -> List[Dict[str, Any]]:
    return [block.to_dict() for block in chain]


def chain_from_records(records: Any) -> List[Block]:
    if not isinstance(records, list):
        raise ReplicaUnreadable("replica is not a list of block records")
    chain = []
    for record in records:
        if not isinstance(record, dict):
            raise ReplicaUnreadable("block record is not an object")
        chain.append(Block.from_dict(record))
    return chain

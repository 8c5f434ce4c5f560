# network/schemas.py
from __future__ import annotations

from typing import List
from pydantic import BaseModel, Field


class BlockRecord(BaseModel):
    """
    Wire form of one block. Field encodings match the persisted replica
    records exactly, so hashes compare equal across hosts.
    """

    index: int = Field(ge=0)
    timestamp: int
    election_id: str
    candidate_id: str
    voter_hash: str
    previous_hash: str
    hash: str
    nonce: int = Field(ge=0)


class ParticipantsResponse(BaseModel):
    participants: List[str]


class ReplicaResponse(BaseModel):
    participant_id: str
    blocks: List[BlockRecord]


class AppendResponse(BaseModel):
    ok: bool
    length: int

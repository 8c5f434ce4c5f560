from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional, Dict, Any, List

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from config import ADMIN_PARTICIPANTS, DIFFICULTY, INTEGRITY_QUORUM_PERCENT, LOG_LEVEL, UNREADABLE_POLICY
from ledger.errors import (
    IntegrityViolation,
    LedgerError,
    ReplicaNotFound,
    ReplicationFailure,
    StateError,
    ValidationError,
)
from ledger.node import LedgerNode
from network.schemas import BlockRecord

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    StateError: 409,
    IntegrityViolation: 409,
    ReplicationFailure: 503,
}


def status_for(error: LedgerError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


# models

class VoteRequest(BaseModel):
    election_id: str
    candidate_id: str


class VoteResponse(BaseModel):
    success: bool
    block_hash: Optional[str] = None
    error: Optional[str] = None
    detail: Optional[str] = None
    replication_failures: List[Dict[str, Any]] = []


class RegisterResponse(BaseModel):
    participant_id: str
    created: bool


class ReplicaStatsResponse(BaseModel):
    participant_id: str
    total_blocks: int
    total_votes: int
    genesis_hash: str
    last_block_hash: str
    last_block_timestamp: int
    chain_valid: bool


class StatisticsResponse(BaseModel):
    total_blocks: int
    total_votes: int
    integrity_status: str
    match_percentage: float


# identity

@dataclass
class Caller:
    participant_id: str
    is_admin: bool


def get_caller(x_participant_id: Optional[str] = Header(default=None)) -> Caller:
    """
    The identity collaborator sits in front of this service and forwards the
    authenticated participant id in the X-Participant-Id header.
    """
    if not x_participant_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return Caller(x_participant_id, x_participant_id in ADMIN_PARTICIPANTS)


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return caller


def create_app(node: Optional[LedgerNode] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "node", None) is None:
            app.state.node = LedgerNode()
        logger.info("[api] Ledger node ready.")
        yield
        app.state.node.close()
        logger.info("[api] Shutting down.")

    app = FastAPI(title="Vote Ledger", lifespan=lifespan)
    app.state.node = node

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_node(request: Request) -> LedgerNode:
        return request.app.state.node

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/config")
    def get_config() -> Dict[str, Any]:
        return {
            "difficulty": DIFFICULTY,
            "integrity_quorum_percent": INTEGRITY_QUORUM_PERCENT,
            "unreadable_policy": UNREADABLE_POLICY,
        }

    @app.post("/participants", response_model=RegisterResponse)
    def register(caller: Caller = Depends(get_caller), node: LedgerNode = Depends(get_node)) -> RegisterResponse:
        try:
            created = node.register_participant(caller.participant_id)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return RegisterResponse(participant_id=caller.participant_id, created=created)

    @app.post("/vote", response_model=VoteResponse)
    def cast_vote(
        req: VoteRequest,
        response: Response,
        caller: Caller = Depends(get_caller),
        node: LedgerNode = Depends(get_node),
    ) -> VoteResponse:
        try:
            result = node.cast_vote(req.election_id, req.candidate_id, caller.participant_id)
        except LedgerError as e:
            response.status_code = status_for(e)
            return VoteResponse(success=False, error=e.kind, detail=str(e))
        return VoteResponse(
            success=True,
            block_hash=result.block_hash,
            replication_failures=[f.to_dict() for f in result.failures],
        )

    @app.get("/replicas/{participant_id}/stats", response_model=ReplicaStatsResponse)
    def replica_stats(
        participant_id: str,
        caller: Caller = Depends(get_caller),
        node: LedgerNode = Depends(get_node),
    ) -> ReplicaStatsResponse:
        if participant_id != caller.participant_id and not caller.is_admin:
            raise HTTPException(status_code=403, detail="Admin access required")
        try:
            return ReplicaStatsResponse(**node.get_replica_stats(participant_id))
        except ReplicaNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except LedgerError as e:
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/integrity")
    def verify_integrity(
        include_chain: bool = False,
        _: Caller = Depends(require_admin),
        node: LedgerNode = Depends(get_node),
    ) -> Dict[str, Any]:
        report = node.verify_integrity()
        data = report.to_dict(include_chain=include_chain)
        data["status"] = (
            "All blockchains are in sync"
            if report.is_integrity_safe
            else "Some blockchains have discrepancies"
        )
        return data

    @app.get("/stats", response_model=StatisticsResponse)
    def statistics(_: Caller = Depends(require_admin), node: LedgerNode = Depends(get_node)) -> StatisticsResponse:
        return StatisticsResponse(**node.get_statistics())

    @app.post("/replicas/{participant_id}/resync")
    def resync(
        participant_id: str,
        _: Caller = Depends(require_admin),
        node: LedgerNode = Depends(get_node),
    ) -> Dict[str, Any]:
        try:
            return node.resync_replica(participant_id).to_dict()
        except LedgerError as e:
            raise HTTPException(status_code=status_for(e), detail=str(e))

    @app.get("/consensus/{election_id}", response_model=List[BlockRecord])
    def consensus_chain(election_id: str, node: LedgerNode = Depends(get_node)) -> List[BlockRecord]:
        return [BlockRecord(**block.to_dict()) for block in node.get_consensus_chain(election_id)]

    @app.get("/elections")
    def list_elections(node: LedgerNode = Depends(get_node)) -> List[Dict[str, Any]]:
        return [election.to_dict() for election in node.registry.list()]

    @app.get("/elections/{election_id}/results")
    def election_results(election_id: str, node: LedgerNode = Depends(get_node)) -> Dict[str, Any]:
        if node.registry.get(election_id) is None:
            raise HTTPException(status_code=404, detail="Election not found")
        try:
            return node.get_results(election_id)
        except IntegrityViolation as e:
            raise HTTPException(status_code=409, detail=str(e))

    return app


app = create_app()

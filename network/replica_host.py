# network/replica_host.py
"""
Replica host service.

Serves participant replicas from a JSON-file store so ledger nodes can
reach them over HTTP through `network.replica_client.HttpReplicaStore`.
"""
from __future__ import annotations

import logging
import os

from fastapi import FastAPI, HTTPException

from config import DATA_DIR, LOG_LEVEL
from ledger.blockchain import Block, chain_to_records
from ledger.errors import (
    ReplicaExists,
    ReplicaNotFound,
    ReplicaUnreadable,
    ReplicaWriteError,
    ValidationError,
)
from ledger.store import JsonFileReplicaStore, ReplicaStore
from network.schemas import AppendResponse, BlockRecord, ParticipantsResponse, ReplicaResponse

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)


def create_app(store: ReplicaStore) -> FastAPI:
    app = FastAPI(title="Replica Host")

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "replicas": len(store.list_participants())}

    @app.get("/replicas", response_model=ParticipantsResponse)
    def list_replicas() -> ParticipantsResponse:
        return ParticipantsResponse(participants=store.list_participants())

    @app.post("/replicas/{participant_id}", status_code=201)
    def create_replica(participant_id: str) -> dict:
        try:
            store.create(participant_id)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ReplicaExists as e:
            raise HTTPException(status_code=409, detail=str(e))
        logger.info(f"[replica-host] Created replica {participant_id}")
        return {"ok": True}

    @app.get("/replicas/{participant_id}", response_model=ReplicaResponse)
    def load_replica(participant_id: str) -> ReplicaResponse:
        try:
            chain = store.load(participant_id)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ReplicaNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ReplicaUnreadable as e:
            raise HTTPException(status_code=500, detail=str(e))
        return ReplicaResponse(
            participant_id=participant_id,
            blocks=[BlockRecord(**record) for record in chain_to_records(chain)],
        )

    @app.post("/replicas/{participant_id}/blocks", response_model=AppendResponse)
    def append_block(participant_id: str, record: BlockRecord) -> AppendResponse:
        block = Block.from_dict(record.model_dump())
        try:
            store.append(participant_id, block)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ReplicaWriteError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return AppendResponse(ok=True, length=block.index + 1)

    return app


def build_app() -> FastAPI:
    """Factory for uvicorn: `uvicorn network.replica_host:build_app --factory`."""
    data_dir = os.getenv("REPLICA_DATA_DIR", os.path.join(DATA_DIR, "replicas"))
    return create_app(JsonFileReplicaStore(data_dir))

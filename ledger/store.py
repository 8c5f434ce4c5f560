"""
Replica store adapters.

Each participant owns one append-only log of block records. Stores only
guarantee positional appends (a block's index must equal the current length)
and point-in-time reads; chain validation is the caller's job.
"""
from __future__ import annotations

import json
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Any

from .blockchain import Block, new_chain, chain_to_records, chain_from_records
from .errors import (
    ReplicaExists,
    ReplicaNotFound,
    ReplicaUnreadable,
    ReplicaWriteError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PARTICIPANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.@-]{1,128}$")


def check_participant_id(participant_id: str) -> str:
    if not isinstance(participant_id, str) or not PARTICIPANT_ID_PATTERN.match(participant_id):
        raise ValidationError(f"invalid participant id: {participant_id!r}")
    return participant_id


class ReplicaStore(ABC):
    """
    Append-only log per participant.
    """

    @abstractmethod
    def list_participants(self) -> List[str]:
        ...

    @abstractmethod
    def exists(self, participant_id: str) -> bool:
        ...

    @abstractmethod
    def create(self, participant_id: str) -> None:
        """Create a genesis-only replica. Raises ReplicaExists."""

    @abstractmethod
    def load(self, participant_id: str) -> List[Block]:
        """Snapshot of the replica. Raises ReplicaNotFound / ReplicaUnreadable."""

    @abstractmethod
    def append(self, participant_id: str, block: Block) -> None:
        """Append one block. Raises ReplicaWriteError on any failure."""


class _LockedStore(ReplicaStore):
    def __init__(self) -> None:
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, participant_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(participant_id)
            if lock is None:
                lock = self._locks[participant_id] = threading.Lock()
            return lock

    @staticmethod
    def _check_position(participant_id: str, length: int, block: Block) -> None:
        if block.index != length:
            raise ReplicaWriteError(
                f"replica {participant_id} has {length} blocks, refusing block #{block.index}"
            )


class MemoryReplicaStore(_LockedStore):
    """
    Replicas held as lists of block records in process memory.
    """

    def __init__(self) -> None:
        super().__init__()
        self._replicas: Dict[str, List[Dict[str, Any]]] = {}

    def list_participants(self) -> List[str]:
        with self._locks_guard:
            return sorted(self._replicas)

    def exists(self, participant_id: str) -> bool:
        return participant_id in self._replicas

    def create(self, participant_id: str) -> None:
        check_participant_id(participant_id)
        with self._lock_for(participant_id):
            if participant_id in self._replicas:
                raise ReplicaExists(f"replica {participant_id} already exists")
            records = chain_to_records(new_chain())
            with self._locks_guard:
                self._replicas[participant_id] = records

    def load(self, participant_id: str) -> List[Block]:
        with self._lock_for(participant_id):
            records = self._replicas.get(participant_id)
            if records is None:
                raise ReplicaNotFound(f"replica {participant_id} not found")
            snapshot = [dict(r) for r in records]
        return chain_from_records(snapshot)

    def append(self, participant_id: str, block: Block) -> None:
        with self._lock_for(participant_id):
            records = self._replicas.get(participant_id)
            if records is None:
                raise ReplicaWriteError(f"replica {participant_id} not found")
            self._check_position(participant_id, len(records), block)
            records.append(block.to_dict())


class JsonFileReplicaStore(_LockedStore):
    """
    One JSON file per participant under `data_dir`.

    Writes go to a temporary file that replaces the replica atomically, so a
    reader never sees a half-written replica.
    """

    def __init__(self, data_dir: str) -> None:
        super().__init__()
        self.data_dir = data_dir
        os.makedirs(self.data_dir, exist_ok=True)

    def _path(self, participant_id: str) -> str:
        check_participant_id(participant_id)
        return os.path.join(self.data_dir, f"replica_{participant_id}.json")

    def list_participants(self) -> List[str]:
        participants = []
        for name in os.listdir(self.data_dir):
            if name.startswith("replica_") and name.endswith(".json"):
                participants.append(name[len("replica_"):-len(".json")])
        return sorted(participants)

    def exists(self, participant_id: str) -> bool:
        return os.path.exists(self._path(participant_id))

    def _read_records(self, participant_id: str) -> List[Dict[str, Any]]:
        path = self._path(participant_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError as e:
            raise ReplicaNotFound(f"replica {participant_id} not found") from e
        except (OSError, ValueError) as e:
            # ValueError covers bad JSON and undecodable bytes
            raise ReplicaUnreadable(f"replica {participant_id} could not be read: {e}") from e

    def _write_records(self, participant_id: str, records: List[Dict[str, Any]]) -> None:
        path = self._path(participant_id)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2)
        os.replace(tmp_path, path)

    def create(self, participant_id: str) -> None:
        with self._lock_for(participant_id):
            if self.exists(participant_id):
                raise ReplicaExists(f"replica {participant_id} already exists")
            self._write_records(participant_id, chain_to_records(new_chain()))
        logger.info(f"[store] Created replica {participant_id} in {self.data_dir}")

    def load(self, participant_id: str) -> List[Block]:
        return chain_from_records(self._read_records(participant_id))

    def append(self, participant_id: str, block: Block) -> None:
        with self._lock_for(participant_id):
            try:
                records = self._read_records(participant_id)
            except ReplicaUnreadable as e:
                raise ReplicaWriteError(str(e)) from e
            if not isinstance(records, list):
                raise ReplicaWriteError(f"replica {participant_id} is not a block list")
            self._check_position(participant_id, len(records), block)
            records.append(block.to_dict())
            try:
                self._write_records(participant_id, records)
            except OSError as e:
                raise ReplicaWriteError(f"replica {participant_id} write failed: {e}") from e

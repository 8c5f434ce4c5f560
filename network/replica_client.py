# network/replica_client.py
from __future__ import annotations

from typing import List, Any, Optional

import requests

from config import REPLICA_TIMEOUT
from ledger.blockchain import Block, chain_from_records
from ledger.errors import (
    ReplicaExists,
    ReplicaNotFound,
    ReplicaUnreadable,
    ReplicaWriteError,
    ValidationError,
)
from ledger.store import ReplicaStore


class HttpReplicaStore(ReplicaStore):
    """
    Replica store backed by a remote replica host.

    `session` may be any requests-compatible client (a `requests.Session`,
    or a test client).
    """

    def __init__(self, base_url: str, session: Optional[Any] = None, timeout: float = REPLICA_TIMEOUT) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def list_participants(self) -> List[str]:
        try:
            resp = self.session.get(self._url("/replicas"), timeout=self.timeout)
        except requests.RequestException as e:
            raise ReplicaUnreadable(f"replica host unreachable: {e}") from e
        if resp.status_code != 200:
            raise ReplicaUnreadable(f"replica host returned {resp.status_code}")
        return resp.json()["participants"]

    def exists(self, participant_id: str) -> bool:
        try:
            self.load(participant_id)
        except ReplicaNotFound:
            return False
        return True

    def create(self, participant_id: str) -> None:
        try:
            resp = self.session.post(self._url(f"/replicas/{participant_id}"), timeout=self.timeout)
        except requests.RequestException as e:
            raise ReplicaWriteError(f"replica host unreachable: {e}") from e
        if resp.status_code == 409:
            raise ReplicaExists(f"replica {participant_id} already exists")
        if resp.status_code == 400:
            raise ValidationError(resp.json().get("detail", "invalid participant id"))
        if resp.status_code not in (200, 201):
            raise ReplicaWriteError(f"replica host returned {resp.status_code}")

    def load(self, participant_id: str) -> List[Block]:
        try:
            resp = self.session.get(self._url(f"/replicas/{participant_id}"), timeout=self.timeout)
        except requests.RequestException as e:
            raise ReplicaUnreadable(f"replica host unreachable: {e}") from e
        if resp.status_code == 404:
            raise ReplicaNotFound(f"replica {participant_id} not found")
        if resp.status_code != 200:
            raise ReplicaUnreadable(
                f"replica {participant_id} could not be loaded ({resp.status_code})"
            )
        try:
            records = resp.json()["blocks"]
        except (ValueError, KeyError, TypeError) as e:
            raise ReplicaUnreadable(f"replica {participant_id} returned a malformed body: {e!r}") from e
        return chain_from_records(records)

    def append(self, participant_id: str, block: Block) -> None:
        try:
            resp = self.session.post(
                self._url(f"/replicas/{participant_id}/blocks"),
                json=block.to_dict(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ReplicaWriteError(f"replica host unreachable: {e}") from e
        if resp.status_code != 200:
            raise ReplicaWriteError(
                f"replica {participant_id} refused block #{block.index} ({resp.status_code})"
            )

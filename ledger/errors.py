"""
Error kinds raised by the ledger core.

Request-level errors (ValidationError, StateError) are surfaced to the caller.
Replication failures and integrity violations are reporting-only once a vote
has been committed to the canonical replica.
"""
from __future__ import annotations


class LedgerError(Exception):
    kind = "ledger_error"


class ValidationError(LedgerError):
    """Missing or malformed identifier in a request."""

    kind = "validation_error"


class StateError(LedgerError):
    """Election not active, participant not registered, or already voted."""

    kind = "state_error"


class ReplicationFailure(LedgerError):
    kind = "replication_failure"


class IntegrityViolation(LedgerError):
    """A chain failed local validation (broken linkage, bad hash, bad genesis)."""

    kind = "integrity_violation"


class ReplicaUnreadable(LedgerError):
    kind = "unreadable"


# store errors

class ReplicaNotFound(ReplicaUnreadable):
    kind = "replica_not_found"


class ReplicaExists(LedgerError):
    kind = "replica_exists"


class ReplicaWriteError(LedgerError):
    kind = "replica_write_error"

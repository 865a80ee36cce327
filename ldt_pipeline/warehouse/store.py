"""
Durable store contract for the ingestion pipeline.

A StoreTransaction groups every write of one processing step (idempotency
claim, outcome, result rows, quarantine entry, audit events). Leaving the
``LdtStore.transaction()`` block with an exception rolls all of them back,
including the raw-message claim, so a redelivery can succeed.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import NamedTuple

from ldt_pipeline.core.models import (
    AuditEvent,
    LabResult,
    Observation,
    QuarantineEntry,
    QuarantineStatus,
    RawMessage,
)

# raw_message.status values
MESSAGE_RECEIVED = "received"
MESSAGE_STORED = "stored"
MESSAGE_QUARANTINED = "quarantined"
MESSAGE_PERMANENTLY_FAILED = "permanently_failed"


class ClaimResult(NamedTuple):
    """
    Outcome of an insert-if-absent on the idempotency key.

    created is True when this call inserted the message; otherwise
    existing holds the message that already owns the key.
    """

    created: bool
    existing: RawMessage | None = None


class StoreTransaction(ABC):
    """
    Writes and locked reads that run inside one store transaction.
    """

    @abstractmethod
    def claim_message(self, message: RawMessage) -> ClaimResult:
        """Insert the message unless its idempotency key is already taken."""
        pass

    @abstractmethod
    def get_raw_message(self, message_id: str) -> RawMessage | None:
        pass

    @abstractmethod
    def mark_message(self, message_id: str, status: str, result_id: str | None = None) -> None:
        """Record the processing status (and result) of a raw message."""
        pass

    @abstractmethod
    def insert_result(self, result: LabResult, observations: list[Observation]) -> None:
        pass

    @abstractmethod
    def insert_quarantine_entry(self, entry: QuarantineEntry) -> None:
        pass

    @abstractmethod
    def update_quarantine_entry(self, entry: QuarantineEntry) -> None:
        pass

    @abstractmethod
    def lock_quarantine_entry(self, entry_id: str) -> QuarantineEntry | None:
        """Read an entry and hold it for the rest of the transaction."""
        pass

    @abstractmethod
    def claim_due_entry(self, now: datetime) -> QuarantineEntry | None:
        """
        Claim the oldest due quarantined entry not held by another transaction.

        Args:
            now: Entries with next_retry_at <= now are due

        Returns:
            The locked entry, or None if nothing is due
        """
        pass

    @abstractmethod
    def insert_audit_events(self, events: list[AuditEvent]) -> None:
        pass


class LdtStore(ABC):
    """
    Transaction factory plus read-only queries used by admin tooling.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager[StoreTransaction]:
        """
        Open a transaction.

        Raises:
            StoreFailure: If the store is unreachable or any write fails
        """
        pass

    @abstractmethod
    def get_raw_message(self, message_id: str) -> RawMessage | None:
        pass

    @abstractmethod
    def get_result(self, result_id: str) -> tuple[LabResult, list[Observation]] | None:
        pass

    @abstractmethod
    def get_result_for_message(self, message_id: str) -> LabResult | None:
        pass

    @abstractmethod
    def get_quarantine_entry(self, entry_id: str) -> QuarantineEntry | None:
        pass

    @abstractmethod
    def get_quarantine_entry_for_message(self, message_id: str) -> QuarantineEntry | None:
        pass

    @abstractmethod
    def list_quarantine_entries(
        self,
        status: QuarantineStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[QuarantineEntry]:
        """List entries, oldest first, optionally filtered by status."""
        pass

    @abstractmethod
    def quarantine_counts(self) -> dict[str, int]:
        """Number of entries per status (every status present, zero if none)."""
        pass

    @abstractmethod
    def list_audit_events(self, message_id: str) -> list[AuditEvent]:
        pass

    @abstractmethod
    def audit_summary(self) -> dict:
        """Totals of audit events overall and per event type."""
        pass

    def close(self) -> None:
        pass

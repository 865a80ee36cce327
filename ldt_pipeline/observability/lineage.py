"""
Message lineage tracking for the audit trail.

A LineageTracker collects the AuditEvents of one processing step and
writes them through the same store transaction as the outcome they
describe, so the trail never records an outcome that was rolled back.
"""

from typing import Any

from ldt_pipeline.core.models import AuditEvent, Owner, RawMessage
from ldt_pipeline.core.resolver import ResolvedIdentifiers
from ldt_pipeline.observability.logger import get_logger
from ldt_pipeline.warehouse.store import StoreTransaction

logger = get_logger(__name__)

RECEIVED = "received"
DECODED = "decoded"
IDENTIFIERS_RESOLVED = "identifiers_resolved"
OWNER_MATCHED = "owner_matched"
OWNER_UNMATCHED = "owner_unmatched"
OWNER_FORCED = "owner_forced"
STORED = "stored"
QUARANTINED = "quarantined"
RETRY_FAILED = "retry_failed"
PERMANENTLY_FAILED = "permanently_failed"
DUPLICATE_IGNORED = "duplicate_ignored"


class LineageTracker:
    """
    Buffers audit events for one message.

    Usage:
        tracker = LineageTracker(message.message_id)
        tracker.track_received(message)
        tracker.track_stored(result_id, assigned=True, observation_count=3)
        tracker.flush(tx)  # inside the store transaction
    """

    def __init__(self, message_id: str):
        """
        Initialize lineage tracker.

        Args:
            message_id: Message every tracked event belongs to
        """
        self.message_id = message_id
        self._pending: list[AuditEvent] = []

    @property
    def pending(self) -> list[AuditEvent]:
        return list(self._pending)

    def track(self, event_type: str, **details: Any) -> AuditEvent:
        """
        Track a pipeline event.

        Args:
            event_type: Event name (see module constants)
            **details: Event-specific context, must be JSON-serializable

        Returns:
            AuditEvent model instance
        """
        event = AuditEvent(message_id=self.message_id, event_type=event_type, details=details)
        self._pending.append(event)
        logger.debug(f"Tracked {event_type} for message {self.message_id}")
        return event

    def track_received(self, message: RawMessage) -> AuditEvent:
        hints = message.identifier_hints
        return self.track(
            RECEIVED,
            idempotency_key=message.idempotency_key,
            source=message.source,
            size_bytes=len(message.payload),
            hint_bsnr=hints.bsnr if hints else None,
            hint_lanr=hints.lanr if hints else None,
        )

    def track_decoded(self, record_count: int, warnings: list[str]) -> AuditEvent:
        return self.track(DECODED, record_count=record_count, warnings=warnings)

    def track_identifiers(self, identifiers: ResolvedIdentifiers) -> AuditEvent:
        return self.track(IDENTIFIERS_RESOLVED, **identifiers._asdict())

    def track_owner(self, owner: Owner | None, identifiers: ResolvedIdentifiers) -> AuditEvent:
        """
        Track the owner lookup result.

        Args:
            owner: Matched owner, None when unmatched
            identifiers: Identifiers the lookup used
        """
        if owner is None:
            return self.track(
                OWNER_UNMATCHED,
                bsnr=identifiers.bsnr,
                lanr=identifiers.lanr,
                incomplete_identifiers=not identifiers.complete,
            )
        return self.track(OWNER_MATCHED, owner_id=owner.user_id, tenant_id=owner.tenant_id)

    def track_owner_forced(self, owner: Owner, entry_id: str) -> AuditEvent:
        return self.track(OWNER_FORCED, owner_id=owner.user_id, tenant_id=owner.tenant_id, entry_id=entry_id)

    def track_stored(self, result_id: str, assigned: bool, observation_count: int) -> AuditEvent:
        return self.track(STORED, result_id=result_id, assigned=assigned, observation_count=observation_count)

    def track_quarantined(self, entry_id: str, error_details: dict[str, Any]) -> AuditEvent:
        return self.track(QUARANTINED, entry_id=entry_id, **error_details)

    def track_retry_failed(self, entry_id: str, retry_count: int, error_details: dict[str, Any]) -> AuditEvent:
        return self.track(RETRY_FAILED, entry_id=entry_id, retry_count=retry_count, **error_details)

    def track_permanently_failed(self, entry_id: str, retry_count: int) -> AuditEvent:
        return self.track(PERMANENTLY_FAILED, entry_id=entry_id, retry_count=retry_count)

    def track_duplicate(self, idempotency_key: str, original_message_id: str | None,
                        original_result_id: str | None) -> AuditEvent:
        return self.track(
            DUPLICATE_IGNORED,
            idempotency_key=idempotency_key,
            original_message_id=original_message_id,
            original_result_id=original_result_id,
        )

    def flush(self, tx: StoreTransaction) -> int:
        """
        Write all pending events through a store transaction.

        Args:
            tx: Open store transaction

        Returns:
            Number of events written
        """
        if not self._pending:
            return 0
        count = len(self._pending)
        tx.insert_audit_events(self._pending)
        self._pending.clear()
        return count

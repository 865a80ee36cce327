"""
Quarantine and retry management.

State machine of a quarantined message:

    quarantined --(due retry, decode ok)--> resolved (result stored)
    quarantined --(due retry, decode fails)--> quarantined (retry_count += 1)
    quarantined --(retry_count > max_retries)--> permanently_failed
    quarantined | permanently_failed --(forced owner, decode ok)--> resolved

Entries are never deleted; permanently failed entries are only moved by
an admin through retry_with_forced_owner().
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from ldt_pipeline.core.errors import (
    DecodeError,
    EntryNotRetryable,
    OwnerNotFound,
    QuarantineEntryNotFound,
    StoreFailure,
)
from ldt_pipeline.core.models import (
    ErrorDetails,
    IngestionOutcome,
    Owner,
    PermanentlyFailed,
    Quarantined,
    QuarantineEntry,
    QuarantineStatus,
    RawMessage,
    Stored,
)
from ldt_pipeline.ingest.materializer import ResultMaterializer
from ldt_pipeline.ingest.pipeline import MessagePipeline
from ldt_pipeline.observability import metrics
from ldt_pipeline.observability.lineage import LineageTracker
from ldt_pipeline.observability.logger import get_logger
from ldt_pipeline.owners.directory import OwnerDirectory
from ldt_pipeline.utils.validation import validate_entry_id, validate_limit, validate_offset, validate_owner_id
from ldt_pipeline.warehouse.store import (
    MESSAGE_PERMANENTLY_FAILED,
    MESSAGE_QUARANTINED,
    LdtStore,
    StoreTransaction,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff with a capped number of attempts.

    Attributes:
        max_retries: Attempts allowed before an entry is permanently failed
        base_delay_seconds: Delay before the first retry
        max_delay_seconds: Upper bound of any delay
    """

    max_retries: int = 5
    base_delay_seconds: float = 60.0
    max_delay_seconds: float = 3600.0

    def delay(self, retry_count: int) -> timedelta:
        """min(base * 2**retry_count, max) as a timedelta."""
        seconds = min(self.base_delay_seconds * (2 ** retry_count), self.max_delay_seconds)
        return timedelta(seconds=seconds)

    def next_retry_at(self, last_attempt: datetime, retry_count: int) -> datetime:
        return last_attempt + self.delay(retry_count)

    def exhausted(self, retry_count: int) -> bool:
        return retry_count > self.max_retries


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuarantineManager:
    """
    Persists decode failures and replays them through the pipeline.
    """

    def __init__(
        self,
        store: LdtStore,
        pipeline: MessagePipeline,
        materializer: ResultMaterializer,
        directory: OwnerDirectory,
        policy: RetryPolicy | None = None,
    ):
        """
        Args:
            store: Durable store
            pipeline: Decode/assemble/resolve/match pipeline
            materializer: Result writer
            directory: Owner directory, used to resolve forced owners
            policy: Retry policy (defaults to RetryPolicy())
        """
        self.store = store
        self.pipeline = pipeline
        self.materializer = materializer
        self.directory = directory
        self.policy = policy or RetryPolicy()

    # =======================
    # QUARANTINE
    # =======================

    def quarantine(
        self,
        tx: StoreTransaction,
        message: RawMessage,
        error: DecodeError,
        tracker: LineageTracker,
        now: datetime | None = None,
    ) -> Quarantined:
        """
        Create the quarantine entry for a message that failed to decode.

        Args:
            tx: Processing transaction
            message: The claimed message
            error: Decode failure
            tracker: Lineage tracker of the message
            now: Failure time (defaults to now)

        Returns:
            Quarantined outcome
        """
        now = now or _utcnow()
        details = error.to_details()
        entry = QuarantineEntry(
            entry_id=f"q-{uuid.uuid4()}",
            message_id=message.message_id,
            error_details=ErrorDetails(**details),
            retry_count=0,
            next_retry_at=self.policy.next_retry_at(now, 0),
            created_at=now,
        )
        tx.insert_quarantine_entry(entry)
        tx.mark_message(message.message_id, MESSAGE_QUARANTINED)
        tracker.track_quarantined(entry.entry_id, details)

        logger.warning(
            f"Message quarantined: {error}",
            extra={
                "message_id": message.message_id,
                "idempotency_key": message.idempotency_key,
                "entry_id": entry.entry_id,
                "reason": error.reason.value,
                "line_number": error.line_number,
                "status": "quarantined",
            }
        )
        return Quarantined(
            message_id=message.message_id,
            entry_id=entry.entry_id,
            reason=error.reason.value,
            retry_count=0,
        )

    # =======================
    # SCHEDULED RETRY
    # =======================

    def retry_entry(
        self,
        tx: StoreTransaction,
        entry: QuarantineEntry,
        now: datetime | None = None,
    ) -> IngestionOutcome:
        """
        Replay one claimed entry through the pipeline.

        The caller must hold the entry's lock (claim_due_entry) for the
        duration of the transaction.

        Args:
            tx: Transaction holding the entry lock
            entry: Claimed entry
            now: Attempt time (defaults to now)

        Returns:
            Stored, Quarantined or PermanentlyFailed
        """
        now = now or _utcnow()
        message = tx.get_raw_message(entry.message_id)
        if message is None:
            raise StoreFailure("retry_entry", LookupError(f"Raw message {entry.message_id} missing"))

        tracker = LineageTracker(message.message_id)
        retry_count = entry.retry_count + 1

        try:
            decoded = self.pipeline.decode(message)
        except DecodeError as e:
            outcome = self._record_failure(tx, entry, message, e, retry_count, now, tracker)
            tracker.flush(tx)
            return outcome

        tracker.track_decoded(len(decoded.records), decoded.field_map.warnings)
        tracker.track_identifiers(decoded.identifiers)
        owner = self.pipeline.match(decoded.identifiers)
        tracker.track_owner(owner, decoded.identifiers)

        result = self.materializer.materialize(
            tx, decoded.field_map, owner, message, decoded.identifiers, tracker, created_at=now
        )
        resolved = entry.model_copy(update={
            "retry_count": retry_count,
            "last_retry_at": now,
            "next_retry_at": None,
            "status": QuarantineStatus.RESOLVED,
            "resolved_result_id": result.result_id,
        })
        tx.update_quarantine_entry(resolved)
        tracker.flush(tx)

        metrics.increment_counter(metrics.retries_total, trigger="scheduled", status="stored")
        logger.info(
            "Quarantined message stored on retry",
            extra={
                "message_id": message.message_id,
                "entry_id": entry.entry_id,
                "retry_count": retry_count,
                "result_id": result.result_id,
                "status": "stored",
            }
        )
        return Stored(
            message_id=message.message_id,
            result_id=result.result_id,
            owner=owner,
            bsnr=decoded.identifiers.bsnr,
            lanr=decoded.identifiers.lanr,
        )

    def _record_failure(
        self,
        tx: StoreTransaction,
        entry: QuarantineEntry,
        message: RawMessage,
        error: DecodeError,
        retry_count: int,
        now: datetime,
        tracker: LineageTracker,
    ) -> IngestionOutcome:
        details = error.to_details(stage="retry")
        tracker.track_retry_failed(entry.entry_id, retry_count, details)

        if self.policy.exhausted(retry_count):
            failed = entry.model_copy(update={
                "retry_count": retry_count,
                "last_retry_at": now,
                "next_retry_at": None,
                "status": QuarantineStatus.PERMANENTLY_FAILED,
                "error_details": ErrorDetails(**details),
            })
            tx.update_quarantine_entry(failed)
            tx.mark_message(message.message_id, MESSAGE_PERMANENTLY_FAILED)
            tracker.track_permanently_failed(entry.entry_id, retry_count)

            metrics.increment_counter(metrics.retries_total, trigger="scheduled", status="permanently_failed")
            metrics.record_outcome("permanently_failed")
            logger.error(
                "Quarantine entry permanently failed",
                extra={
                    "message_id": message.message_id,
                    "entry_id": entry.entry_id,
                    "retry_count": retry_count,
                    "reason": error.reason.value,
                    "status": "permanently_failed",
                }
            )
            return PermanentlyFailed(
                message_id=message.message_id,
                entry_id=entry.entry_id,
                retry_count=retry_count,
            )

        retried = entry.model_copy(update={
            "retry_count": retry_count,
            "last_retry_at": now,
            "next_retry_at": self.policy.next_retry_at(now, retry_count),
            "error_details": ErrorDetails(**details),
        })
        tx.update_quarantine_entry(retried)

        metrics.increment_counter(metrics.retries_total, trigger="scheduled", status="failed")
        logger.warning(
            f"Retry failed: {error}",
            extra={
                "message_id": message.message_id,
                "entry_id": entry.entry_id,
                "retry_count": retry_count,
                "next_retry_at": retried.next_retry_at.isoformat(),
                "status": "quarantined",
            }
        )
        return Quarantined(
            message_id=message.message_id,
            entry_id=entry.entry_id,
            reason=error.reason.value,
            retry_count=retry_count,
        )

    # =======================
    # ADMIN OPERATIONS
    # =======================

    def list_entries(
        self,
        status: QuarantineStatus | str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[QuarantineEntry]:
        """
        List quarantine entries for triage, oldest first.

        Raises:
            ValidationError: If limit/offset are out of range
            ValueError: If status is not a known status
        """
        validate_limit(limit)
        validate_offset(offset)
        status = QuarantineStatus(status) if status is not None else None
        return self.store.list_quarantine_entries(status=status, limit=limit, offset=offset)

    def get_entry(self, entry_id: str) -> QuarantineEntry:
        """
        Raises:
            QuarantineEntryNotFound: If no such entry exists
        """
        entry = self.store.get_quarantine_entry(validate_entry_id(entry_id))
        if entry is None:
            raise QuarantineEntryNotFound(entry_id)
        return entry

    def statistics(self) -> dict:
        """
        Entry counts per status, also published as the quarantine size gauge.

        Returns:
            Dict with "total" and one key per status
        """
        counts = self.store.quarantine_counts()
        metrics.record_quarantine_sizes(counts)
        return {"total": sum(counts.values()), **counts}

    def retry_with_forced_owner(self, entry_id: str, owner_id: str, now: datetime | None = None) -> IngestionOutcome:
        """
        Re-decode an entry's message and store it under the given owner.

        The matcher is bypassed and retry_count is left unchanged. If the
        message still fails to decode, the entry keeps its status with
        refreshed error details.

        Args:
            entry_id: Quarantine entry to resolve
            owner_id: User id to assign
            now: Attempt time (defaults to now)

        Returns:
            Stored on success, Quarantined (or PermanentlyFailed, for an
            already terminal entry) if decoding fails again

        Raises:
            QuarantineEntryNotFound: Unknown entry
            EntryNotRetryable: Entry is already resolved
            OwnerNotFound: Unknown owner
            StoreFailure: Store unavailable
        """
        entry_id = validate_entry_id(entry_id)
        owner = self._forced_owner(validate_owner_id(owner_id))
        now = now or _utcnow()

        with self.store.transaction() as tx:
            entry = tx.lock_quarantine_entry(entry_id)
            if entry is None:
                raise QuarantineEntryNotFound(entry_id)
            if entry.status == QuarantineStatus.RESOLVED:
                raise EntryNotRetryable(entry_id, QuarantineStatus(entry.status).value)

            message = tx.get_raw_message(entry.message_id)
            if message is None:
                raise StoreFailure("retry_with_forced_owner", LookupError(f"Raw message {entry.message_id} missing"))

            tracker = LineageTracker(message.message_id)
            tracker.track_owner_forced(owner, entry_id)
            outcome = self._store_forced(tx, entry, message, owner, tracker, now)
            tracker.flush(tx)

        metrics.increment_counter(
            metrics.retries_total,
            trigger="manual",
            status="stored" if isinstance(outcome, Stored) else "failed",
        )
        return outcome

    def _forced_owner(self, owner_id: str) -> Owner:
        owner = self.directory.get_owner(owner_id)
        if owner is None:
            raise OwnerNotFound(owner_id)
        return owner

    def _store_forced(
        self,
        tx: StoreTransaction,
        entry: QuarantineEntry,
        message: RawMessage,
        owner: Owner,
        tracker: LineageTracker,
        now: datetime,
    ) -> IngestionOutcome:
        try:
            decoded = self.pipeline.decode(message)
        except DecodeError as e:
            details = e.to_details(stage="forced_retry")
            tx.update_quarantine_entry(entry.model_copy(update={
                "last_retry_at": now,
                "error_details": ErrorDetails(**details),
            }))
            tracker.track_retry_failed(entry.entry_id, entry.retry_count, details)
            logger.warning(
                f"Forced owner retry failed: {e}",
                extra={"message_id": message.message_id, "entry_id": entry.entry_id, "owner_id": owner.user_id}
            )
            if entry.status == QuarantineStatus.PERMANENTLY_FAILED:
                return PermanentlyFailed(
                    message_id=message.message_id, entry_id=entry.entry_id, retry_count=entry.retry_count
                )
            return Quarantined(
                message_id=message.message_id,
                entry_id=entry.entry_id,
                reason=e.reason.value,
                retry_count=entry.retry_count,
            )

        tracker.track_decoded(len(decoded.records), decoded.field_map.warnings)
        tracker.track_identifiers(decoded.identifiers)
        metrics.increment_counter(metrics.owner_match_total, result="forced")

        result = self.materializer.materialize(
            tx, decoded.field_map, owner, message, decoded.identifiers, tracker, created_at=now
        )
        tx.update_quarantine_entry(entry.model_copy(update={
            "last_retry_at": now,
            "next_retry_at": None,
            "status": QuarantineStatus.RESOLVED,
            "resolved_result_id": result.result_id,
        }))
        logger.info(
            "Quarantined message stored with forced owner",
            extra={
                "message_id": message.message_id,
                "entry_id": entry.entry_id,
                "owner_id": owner.user_id,
                "result_id": result.result_id,
                "status": "stored",
            }
        )
        return Stored(
            message_id=message.message_id,
            result_id=result.result_id,
            owner=owner,
            bsnr=decoded.identifiers.bsnr,
            lanr=decoded.identifiers.lanr,
        )

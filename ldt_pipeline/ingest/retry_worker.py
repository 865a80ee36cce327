"""
Scheduled replay of due quarantine entries.

Each entry is claimed and retried in its own store transaction, so one
bad entry cannot roll back the progress of the others, and concurrent
workers skip entries another worker holds.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ldt_pipeline.core.errors import StoreFailure
from ldt_pipeline.core.models import PermanentlyFailed, Stored
from ldt_pipeline.ingest.quarantine import QuarantineManager
from ldt_pipeline.observability import metrics
from ldt_pipeline.observability.logger import get_logger, log_operation
from ldt_pipeline.warehouse.store import LdtStore

logger = get_logger(__name__)


@dataclass
class RetrySweepSummary:
    """Counts of one retry sweep."""

    attempted: int = 0
    stored: int = 0
    still_quarantined: int = 0
    permanently_failed: int = 0
    entry_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "stored": self.stored,
            "still_quarantined": self.still_quarantined,
            "permanently_failed": self.permanently_failed,
        }


class RetryWorker:
    """
    Polls the store for due quarantine entries and retries them.
    """

    def __init__(
        self,
        store: LdtStore,
        quarantine: QuarantineManager,
        batch_size: int = 50,
        poll_interval_seconds: float = 30.0,
    ):
        """
        Args:
            store: Durable store
            quarantine: Quarantine manager performing the retries
            batch_size: Maximum entries per sweep
            poll_interval_seconds: Sleep between sweeps in run_forever()
        """
        self.store = store
        self.quarantine = quarantine
        self.batch_size = batch_size
        self.poll_interval_seconds = poll_interval_seconds
        self._stop = threading.Event()

    def run_once(self, now: datetime | None = None) -> RetrySweepSummary:
        """
        Retry up to batch_size due entries.

        Args:
            now: Reference time for due-ness (defaults to now)

        Returns:
            RetrySweepSummary

        Raises:
            StoreFailure: If the store becomes unavailable mid-sweep
        """
        now = now or datetime.now(timezone.utc)
        summary = RetrySweepSummary()

        with log_operation("Retry sweep", logger=logger, batch_size=self.batch_size):
            while summary.attempted < self.batch_size and not self._stop.is_set():
                with metrics.track_duration(metrics.processing_duration_seconds, mode="retry"):
                    with self.store.transaction() as tx:
                        entry = tx.claim_due_entry(now)
                        if entry is None:
                            break
                        outcome = self.quarantine.retry_entry(tx, entry, now)

                summary.attempted += 1
                summary.entry_ids.append(entry.entry_id)
                if isinstance(outcome, Stored):
                    summary.stored += 1
                elif isinstance(outcome, PermanentlyFailed):
                    summary.permanently_failed += 1
                else:
                    summary.still_quarantined += 1

        self.quarantine.statistics()
        logger.info("Retry sweep finished", extra=summary.to_dict())
        return summary

    def run_forever(self) -> None:
        """
        Sweep until stop() is called.

        Store failures are logged and the next sweep is attempted after
        the poll interval.
        """
        logger.info(
            "Retry worker started",
            extra={"batch_size": self.batch_size, "poll_interval_seconds": self.poll_interval_seconds}
        )
        while not self._stop.is_set():
            try:
                self.run_once()
            except StoreFailure as e:
                metrics.increment_counter(metrics.errors_total, error_type="StoreFailure", component="retry_worker")
                logger.error(f"Retry sweep aborted: {e}")
            except Exception as e:
                metrics.increment_counter(metrics.errors_total, error_type=type(e).__name__, component="retry_worker")
                logger.error(f"Retry sweep crashed: {e}", exc_info=True)
            self._stop.wait(self.poll_interval_seconds)
        logger.info("Retry worker stopped")

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

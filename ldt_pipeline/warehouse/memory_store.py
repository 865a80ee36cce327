"""
In-memory implementation of the store contract.

Used by unit tests and by ``ldt-ingest --dry-run``. Transactions are
serialized by a re-entrant lock and undone from a snapshot when the block
raises, which gives the same all-or-nothing behavior as PostgreSQL.
"""

from contextlib import contextmanager
from datetime import datetime
from itertools import count
from threading import RLock
from typing import Iterator

from ldt_pipeline.core.errors import MessageIdConflict
from ldt_pipeline.core.models import (
    AuditEvent,
    LabResult,
    Observation,
    QuarantineEntry,
    QuarantineStatus,
    RawMessage,
)
from ldt_pipeline.warehouse.store import ClaimResult, LdtStore, StoreTransaction


class _State:
    def __init__(self):
        self.messages: dict[str, RawMessage] = {}
        self.keys: dict[str, str] = {}
        self.results: dict[str, tuple[LabResult, list[Observation]]] = {}
        self.quarantine: dict[str, QuarantineEntry] = {}
        self.audit: list[AuditEvent] = []

    def snapshot(self) -> "_State":
        # Stored models are never mutated in place, shallow copies suffice
        copy = _State()
        copy.messages = dict(self.messages)
        copy.keys = dict(self.keys)
        copy.results = dict(self.results)
        copy.quarantine = dict(self.quarantine)
        copy.audit = list(self.audit)
        return copy

    def restore(self, backup: "_State") -> None:
        self.messages = backup.messages
        self.keys = backup.keys
        self.results = backup.results
        self.quarantine = backup.quarantine
        self.audit = backup.audit


class InMemoryTransaction(StoreTransaction):
    """Transaction view over the shared in-memory state."""

    def __init__(self, state: _State, event_ids: Iterator[int]):
        self._state = state
        self._event_ids = event_ids

    def claim_message(self, message: RawMessage) -> ClaimResult:
        existing_id = self._state.keys.get(message.idempotency_key)
        if existing_id is not None:
            return ClaimResult(created=False, existing=self._state.messages[existing_id])
        if message.message_id in self._state.messages:
            raise MessageIdConflict(message.message_id, message.idempotency_key)
        self._state.messages[message.message_id] = message
        self._state.keys[message.idempotency_key] = message.message_id
        return ClaimResult(created=True)

    def get_raw_message(self, message_id: str) -> RawMessage | None:
        return self._state.messages.get(message_id)

    def mark_message(self, message_id: str, status: str, result_id: str | None = None) -> None:
        message = self._state.messages[message_id]
        update = {"status": status}
        if result_id is not None:
            update["result_id"] = result_id
        self._state.messages[message_id] = message.model_copy(update=update)

    def insert_result(self, result: LabResult, observations: list[Observation]) -> None:
        if result.result_id in self._state.results:
            raise ValueError(f"Duplicate result_id: {result.result_id}")
        self._state.results[result.result_id] = (result, list(observations))

    def insert_quarantine_entry(self, entry: QuarantineEntry) -> None:
        if any(e.message_id == entry.message_id for e in self._state.quarantine.values()):
            raise ValueError(f"Message {entry.message_id} is already quarantined")
        self._state.quarantine[entry.entry_id] = entry.model_copy(deep=True)

    def update_quarantine_entry(self, entry: QuarantineEntry) -> None:
        if entry.entry_id not in self._state.quarantine:
            raise KeyError(entry.entry_id)
        self._state.quarantine[entry.entry_id] = entry.model_copy(deep=True)

    def lock_quarantine_entry(self, entry_id: str) -> QuarantineEntry | None:
        entry = self._state.quarantine.get(entry_id)
        return entry.model_copy(deep=True) if entry else None

    def claim_due_entry(self, now: datetime) -> QuarantineEntry | None:
        due = [
            e for e in self._state.quarantine.values()
            if e.status == QuarantineStatus.QUARANTINED
            and e.next_retry_at is not None
            and e.next_retry_at <= now
        ]
        if not due:
            return None
        entry = min(due, key=lambda e: (e.next_retry_at, e.created_at))
        return entry.model_copy(deep=True)

    def insert_audit_events(self, events: list[AuditEvent]) -> None:
        for event in events:
            self._state.audit.append(event.model_copy(update={"event_id": next(self._event_ids)}))


class InMemoryStore(LdtStore):
    """
    Thread-safe in-memory store.
    """

    def __init__(self):
        self._lock = RLock()
        self._state = _State()
        self._event_ids = count(1)

    @contextmanager
    def transaction(self):
        with self._lock:
            backup = self._state.snapshot()
            try:
                yield InMemoryTransaction(self._state, self._event_ids)
            except BaseException:
                self._state.restore(backup)
                raise

    def get_raw_message(self, message_id: str) -> RawMessage | None:
        with self._lock:
            return self._state.messages.get(message_id)

    def get_result(self, result_id: str) -> tuple[LabResult, list[Observation]] | None:
        with self._lock:
            stored = self._state.results.get(result_id)
            return (stored[0], list(stored[1])) if stored else None

    def get_result_for_message(self, message_id: str) -> LabResult | None:
        with self._lock:
            for result, _ in self._state.results.values():
                if result.source_message_id == message_id:
                    return result
            return None

    def list_results(self) -> list[LabResult]:
        with self._lock:
            return [result for result, _ in self._state.results.values()]

    def get_quarantine_entry(self, entry_id: str) -> QuarantineEntry | None:
        with self._lock:
            entry = self._state.quarantine.get(entry_id)
            return entry.model_copy(deep=True) if entry else None

    def get_quarantine_entry_for_message(self, message_id: str) -> QuarantineEntry | None:
        with self._lock:
            for entry in self._state.quarantine.values():
                if entry.message_id == message_id:
                    return entry.model_copy(deep=True)
            return None

    def list_quarantine_entries(
        self,
        status: QuarantineStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[QuarantineEntry]:
        with self._lock:
            entries = sorted(self._state.quarantine.values(), key=lambda e: e.created_at)
            if status is not None:
                entries = [e for e in entries if e.status == status]
            return [e.model_copy(deep=True) for e in entries[offset:offset + limit]]

    def quarantine_counts(self) -> dict[str, int]:
        with self._lock:
            counts = {status.value: 0 for status in QuarantineStatus}
            for entry in self._state.quarantine.values():
                counts[QuarantineStatus(entry.status).value] += 1
            return counts

    def list_audit_events(self, message_id: str) -> list[AuditEvent]:
        with self._lock:
            return [e for e in self._state.audit if e.message_id == message_id]

    def audit_summary(self) -> dict:
        with self._lock:
            by_type: dict[str, int] = {}
            for event in self._state.audit:
                by_type[event.event_type] = by_type.get(event.event_type, 0) + 1
            return {
                "total_events": len(self._state.audit),
                "messages_traced": len({e.message_id for e in self._state.audit}),
                "events_by_type": by_type,
            }

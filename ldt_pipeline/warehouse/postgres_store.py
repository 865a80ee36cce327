"""
PostgreSQL implementation of the store contract.

Every transaction runs on one pooled connection. The idempotency claim is
an INSERT ... ON CONFLICT DO NOTHING on the unique idempotency_key index;
due quarantine entries are claimed with FOR UPDATE SKIP LOCKED so
concurrent retry workers never process the same entry.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from ldt_pipeline.core.errors import MessageIdConflict, StoreFailure
from ldt_pipeline.core.models import (
    AuditEvent,
    ErrorDetails,
    IdentifierHints,
    LabResult,
    Observation,
    QuarantineEntry,
    QuarantineStatus,
    RawMessage,
)
from ldt_pipeline.observability.logger import get_logger
from ldt_pipeline.warehouse import audit
from ldt_pipeline.warehouse.connection import DatabaseConnectionPool
from ldt_pipeline.warehouse.store import ClaimResult, LdtStore, StoreTransaction

logger = get_logger(__name__)

_RAW_MESSAGE_COLUMNS = (
    "message_id, idempotency_key, payload, received_at, source, "
    "hint_bsnr, hint_lanr, status, result_id"
)
_QUARANTINE_COLUMNS = (
    "entry_id, message_id, error_details, retry_count, last_retry_at, "
    "next_retry_at, created_at, status, resolved_result_id"
)
_RESULT_COLUMNS = [
    "result_id", "source_message_id", "bsnr", "lanr", "owner_id", "tenant_id",
    "patient_last_name", "patient_first_name", "patient_birth_date", "patient_id",
    "patient_address", "patient_postal_code", "patient_city", "patient_gender",
    "lab_name", "lab_address", "request_id", "test_date", "created_at",
]


def _row_to_message(row: dict[str, Any]) -> RawMessage:
    hints = None
    if row.get("hint_bsnr") or row.get("hint_lanr"):
        hints = IdentifierHints(bsnr=row["hint_bsnr"], lanr=row["hint_lanr"])
    return RawMessage(
        message_id=row["message_id"],
        idempotency_key=row["idempotency_key"],
        payload=bytes(row["payload"]),
        received_at=row["received_at"],
        source=row["source"],
        identifier_hints=hints,
        status=row["status"],
        result_id=row["result_id"],
    )


def _row_to_entry(row: dict[str, Any]) -> QuarantineEntry:
    return QuarantineEntry(
        entry_id=row["entry_id"],
        message_id=row["message_id"],
        error_details=ErrorDetails(**row["error_details"]),
        retry_count=row["retry_count"],
        last_retry_at=row["last_retry_at"],
        next_retry_at=row["next_retry_at"],
        created_at=row["created_at"],
        status=QuarantineStatus(row["status"]),
        resolved_result_id=row["resolved_result_id"],
    )


def _entry_params(entry: QuarantineEntry) -> dict[str, Any]:
    return {
        "entry_id": entry.entry_id,
        "message_id": entry.message_id,
        "error_details": Jsonb(entry.error_details.model_dump()),
        "retry_count": entry.retry_count,
        "last_retry_at": entry.last_retry_at,
        "next_retry_at": entry.next_retry_at,
        "created_at": entry.created_at,
        "status": QuarantineStatus(entry.status).value,
        "resolved_result_id": entry.resolved_result_id,
    }


class PostgresTransaction(StoreTransaction):
    """
    Store operations bound to one connection inside an open transaction.
    """

    def __init__(self, conn: psycopg.Connection):
        self.conn = conn

    def _fetchone(self, sql: str, params: dict[str, Any]) -> dict[str, Any] | None:
        with self.conn.cursor() as cur:
            cur.execute(sql, params)
            return cur.fetchone()

    def _execute(self, sql: str, params: dict[str, Any]) -> int:
        with self.conn.cursor() as cur:
            cur.execute(sql, params)
            return cur.rowcount

    def claim_message(self, message: RawMessage) -> ClaimResult:
        hints = message.identifier_hints
        inserted = self._fetchone(
            """
            INSERT INTO raw_message (
                message_id, idempotency_key, payload, received_at, source,
                hint_bsnr, hint_lanr, status
            ) VALUES (
                %(message_id)s, %(idempotency_key)s, %(payload)s, %(received_at)s, %(source)s,
                %(hint_bsnr)s, %(hint_lanr)s, %(status)s
            )
            ON CONFLICT DO NOTHING
            RETURNING message_id
            """,
            {
                "message_id": message.message_id,
                "idempotency_key": message.idempotency_key,
                "payload": message.payload,
                "received_at": message.received_at,
                "source": message.source,
                "hint_bsnr": hints.bsnr if hints else None,
                "hint_lanr": hints.lanr if hints else None,
                "status": message.status,
            },
        )
        if inserted is not None:
            return ClaimResult(created=True)

        # Lost the race (or a redelivery): the conflicting row is committed by now
        existing = self._fetchone(
            f"SELECT {_RAW_MESSAGE_COLUMNS} FROM raw_message WHERE idempotency_key = %(key)s",
            {"key": message.idempotency_key},
        )
        if existing is not None:
            return ClaimResult(created=False, existing=_row_to_message(existing))

        # No row under this key, so the message_id primary key was the conflict
        raise MessageIdConflict(message.message_id, message.idempotency_key)

    def get_raw_message(self, message_id: str) -> RawMessage | None:
        row = self._fetchone(
            f"SELECT {_RAW_MESSAGE_COLUMNS} FROM raw_message WHERE message_id = %(message_id)s",
            {"message_id": message_id},
        )
        return _row_to_message(row) if row else None

    def mark_message(self, message_id: str, status: str, result_id: str | None = None) -> None:
        self._execute(
            """
            UPDATE raw_message
            SET status = %(status)s,
                result_id = COALESCE(%(result_id)s, result_id),
                processed_at = %(processed_at)s
            WHERE message_id = %(message_id)s
            """,
            {
                "status": status,
                "result_id": result_id,
                "processed_at": datetime.now(timezone.utc),
                "message_id": message_id,
            },
        )

    def insert_result(self, result: LabResult, observations: list[Observation]) -> None:
        columns = ", ".join(_RESULT_COLUMNS)
        placeholders = ", ".join(f"%({c})s" for c in _RESULT_COLUMNS)
        self._execute(
            f"INSERT INTO lab_result ({columns}) VALUES ({placeholders})",
            result.model_dump(include=set(_RESULT_COLUMNS)),
        )
        if observations:
            with self.conn.cursor() as cur:
                cur.executemany(
                    """
                    INSERT INTO observation (result_id, position, field_id, content, code)
                    VALUES (%(result_id)s, %(position)s, %(field_id)s, %(content)s, %(code)s)
                    """,
                    [o.model_dump() for o in observations],
                )

    def insert_quarantine_entry(self, entry: QuarantineEntry) -> None:
        self._execute(
            f"""
            INSERT INTO quarantine_entry ({_QUARANTINE_COLUMNS})
            VALUES (
                %(entry_id)s, %(message_id)s, %(error_details)s, %(retry_count)s,
                %(last_retry_at)s, %(next_retry_at)s, %(created_at)s, %(status)s,
                %(resolved_result_id)s
            )
            """,
            _entry_params(entry),
        )

    def update_quarantine_entry(self, entry: QuarantineEntry) -> None:
        updated = self._execute(
            """
            UPDATE quarantine_entry
            SET error_details = %(error_details)s,
                retry_count = %(retry_count)s,
                last_retry_at = %(last_retry_at)s,
                next_retry_at = %(next_retry_at)s,
                status = %(status)s,
                resolved_result_id = %(resolved_result_id)s
            WHERE entry_id = %(entry_id)s
            """,
            _entry_params(entry),
        )
        if updated != 1:
            raise KeyError(entry.entry_id)

    def lock_quarantine_entry(self, entry_id: str) -> QuarantineEntry | None:
        row = self._fetchone(
            f"SELECT {_QUARANTINE_COLUMNS} FROM quarantine_entry WHERE entry_id = %(entry_id)s FOR UPDATE",
            {"entry_id": entry_id},
        )
        return _row_to_entry(row) if row else None

    def claim_due_entry(self, now: datetime) -> QuarantineEntry | None:
        row = self._fetchone(
            f"""
            SELECT {_QUARANTINE_COLUMNS}
            FROM quarantine_entry
            WHERE status = 'quarantined' AND next_retry_at <= %(now)s
            ORDER BY next_retry_at, created_at
            LIMIT 1
            FOR UPDATE SKIP LOCKED
            """,
            {"now": now},
        )
        return _row_to_entry(row) if row else None

    def insert_audit_events(self, events: list[AuditEvent]) -> None:
        audit.insert_audit_events(self.conn, events)


class PostgresStore(LdtStore):
    """
    LdtStore backed by PostgreSQL through a DatabaseConnectionPool.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Args:
            pool: Open connection pool
        """
        self.pool = pool

    @contextmanager
    def transaction(self):
        try:
            with self.pool.get_connection() as conn:
                with conn.transaction():
                    yield PostgresTransaction(conn)
        except psycopg.Error as e:
            logger.error(f"Store transaction failed: {e}", extra={"error_type": type(e).__name__})
            raise StoreFailure("transaction", e) from e

    def _query(self, operation: str, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        try:
            return self.pool.execute_query(sql, params)
        except psycopg.Error as e:
            logger.error(f"Store query '{operation}' failed: {e}")
            raise StoreFailure(operation, e) from e

    def get_raw_message(self, message_id: str) -> RawMessage | None:
        rows = self._query(
            "get_raw_message",
            f"SELECT {_RAW_MESSAGE_COLUMNS} FROM raw_message WHERE message_id = %(message_id)s",
            {"message_id": message_id},
        )
        return _row_to_message(rows[0]) if rows else None

    def get_result(self, result_id: str) -> tuple[LabResult, list[Observation]] | None:
        rows = self._query(
            "get_result",
            f"SELECT {', '.join(_RESULT_COLUMNS)} FROM lab_result WHERE result_id = %(result_id)s",
            {"result_id": result_id},
        )
        if not rows:
            return None
        observations = self._query(
            "get_observations",
            """
            SELECT result_id, position, field_id, content, code
            FROM observation WHERE result_id = %(result_id)s ORDER BY position
            """,
            {"result_id": result_id},
        )
        return LabResult(**rows[0]), [Observation(**o) for o in observations]

    def get_result_for_message(self, message_id: str) -> LabResult | None:
        rows = self._query(
            "get_result_for_message",
            f"""
            SELECT {', '.join(_RESULT_COLUMNS)} FROM lab_result
            WHERE source_message_id = %(message_id)s
            ORDER BY created_at LIMIT 1
            """,
            {"message_id": message_id},
        )
        return LabResult(**rows[0]) if rows else None

    def get_quarantine_entry(self, entry_id: str) -> QuarantineEntry | None:
        rows = self._query(
            "get_quarantine_entry",
            f"SELECT {_QUARANTINE_COLUMNS} FROM quarantine_entry WHERE entry_id = %(entry_id)s",
            {"entry_id": entry_id},
        )
        return _row_to_entry(rows[0]) if rows else None

    def get_quarantine_entry_for_message(self, message_id: str) -> QuarantineEntry | None:
        rows = self._query(
            "get_quarantine_entry_for_message",
            f"SELECT {_QUARANTINE_COLUMNS} FROM quarantine_entry WHERE message_id = %(message_id)s",
            {"message_id": message_id},
        )
        return _row_to_entry(rows[0]) if rows else None

    def list_quarantine_entries(
        self,
        status: QuarantineStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[QuarantineEntry]:
        sql = f"SELECT {_QUARANTINE_COLUMNS} FROM quarantine_entry"
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status is not None:
            sql += " WHERE status = %(status)s"
            params["status"] = QuarantineStatus(status).value
        sql += " ORDER BY created_at, entry_id LIMIT %(limit)s OFFSET %(offset)s"
        return [_row_to_entry(row) for row in self._query("list_quarantine_entries", sql, params)]

    def quarantine_counts(self) -> dict[str, int]:
        rows = self._query(
            "quarantine_counts",
            "SELECT status, COUNT(*) AS count FROM quarantine_entry GROUP BY status",
        )
        counts = {status.value: 0 for status in QuarantineStatus}
        counts.update({row["status"]: row["count"] for row in rows})
        return counts

    def list_audit_events(self, message_id: str) -> list[AuditEvent]:
        try:
            return audit.query_audit_events_by_message(self.pool, message_id)
        except psycopg.Error as e:
            raise StoreFailure("list_audit_events", e) from e

    def audit_summary(self) -> dict:
        try:
            return audit.get_audit_summary(self.pool)
        except psycopg.Error as e:
            raise StoreFailure("audit_summary", e) from e

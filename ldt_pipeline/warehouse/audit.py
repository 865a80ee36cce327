"""
Audit event operations for message lineage.

This module provides functions to insert and query the pipeline's audit
events. Inserts run on the caller's connection so they commit (or roll
back) together with the processing outcome they describe.
"""

from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ldt_pipeline.core.models.audit_event import AuditEvent
from ldt_pipeline.observability.logger import get_logger
from ldt_pipeline.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)

INSERT_AUDIT_EVENT_SQL = """
    INSERT INTO audit_event (
        message_id,
        event_type,
        details,
        created_at
    ) VALUES (
        %(message_id)s,
        %(event_type)s,
        %(details)s,
        %(created_at)s
    );
"""


def insert_audit_events(conn: psycopg.Connection, events: list[AuditEvent]) -> int:
    """
    Insert audit events on an open connection, without committing.

    Args:
        conn: Connection inside the caller's transaction
        events: Events to insert

    Returns:
        Number of events inserted

    Raises:
        psycopg.DatabaseError: If insert fails
    """
    if not events:
        return 0

    try:
        with conn.cursor() as cur:
            cur.executemany(
                INSERT_AUDIT_EVENT_SQL,
                [
                    {
                        "message_id": event.message_id,
                        "event_type": event.event_type,
                        "details": Jsonb(event.details),
                        "created_at": event.created_at,
                    }
                    for event in events
                ],
            )
        logger.debug(
            f"Inserted {len(events)} audit events",
            extra={"message_id": events[0].message_id}
        )
        return len(events)

    except psycopg.DatabaseError as e:
        logger.error(f"Failed to insert audit events: {e}")
        raise


def query_audit_events_by_message(
    pool: DatabaseConnectionPool,
    message_id: str,
    limit: int = 1000
) -> list[AuditEvent]:
    """
    Query the audit trail of one message, oldest first.

    Args:
        pool: Database connection pool
        message_id: Message to trace
        limit: Maximum number of events to return

    Returns:
        AuditEvent list in emission order

    Raises:
        psycopg.DatabaseError: If query fails
    """
    query_sql = """
        SELECT event_id, message_id, event_type, details, created_at
        FROM audit_event
        WHERE message_id = %(message_id)s
        ORDER BY event_id ASC
        LIMIT %(limit)s;
    """

    try:
        with pool.get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query_sql, {"message_id": message_id, "limit": limit})
                rows = cur.fetchall()

        logger.debug(f"Found {len(rows)} audit events for message_id={message_id}")
        return [AuditEvent(**row) for row in rows]

    except psycopg.DatabaseError as e:
        logger.error(f"Failed to query audit events by message: {e}")
        raise


def get_audit_summary(pool: DatabaseConnectionPool) -> dict[str, Any]:
    """
    Get summary statistics from the audit trail.

    Args:
        pool: Database connection pool

    Returns:
        Dictionary with:
        - total_events
        - messages_traced
        - events_by_type

    Raises:
        psycopg.DatabaseError: If query fails
    """
    query_sql = """
        SELECT
            event_type,
            COUNT(*) AS type_count,
            COUNT(DISTINCT message_id) AS message_count
        FROM audit_event
        GROUP BY event_type;
    """
    messages_sql = "SELECT COUNT(DISTINCT message_id) AS messages FROM audit_event;"

    try:
        with pool.get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query_sql)
                results = cur.fetchall()
                cur.execute(messages_sql)
                messages = cur.fetchone()["messages"]

        summary = {
            "total_events": sum(r["type_count"] for r in results),
            "messages_traced": messages,
            "events_by_type": {r["event_type"]: r["type_count"] for r in results},
        }
        logger.info("Audit summary", extra=summary)
        return summary

    except psycopg.DatabaseError as e:
        logger.error(f"Failed to get audit summary: {e}")
        raise

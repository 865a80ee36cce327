"""
Schema management for the pipeline's PostgreSQL tables.

Handles DDL for raw messages, results, quarantine, audit events and the
owner directory.
"""

from ldt_pipeline.observability.logger import get_logger
from ldt_pipeline.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)

TABLES = [
    "raw_message",
    "lab_result",
    "observation",
    "quarantine_entry",
    "audit_event",
    "owners",
]

SCHEMA_DDL = [
    """
    CREATE TABLE IF NOT EXISTS raw_message (
        message_id      TEXT PRIMARY KEY,
        idempotency_key TEXT NOT NULL,
        payload         BYTEA NOT NULL,
        received_at     TIMESTAMPTZ NOT NULL,
        source          TEXT NOT NULL DEFAULT 'webhook',
        hint_bsnr       TEXT,
        hint_lanr       TEXT,
        status          TEXT NOT NULL DEFAULT 'received'
                        CHECK (status IN ('received', 'stored', 'quarantined', 'permanently_failed')),
        result_id       TEXT,
        processed_at    TIMESTAMPTZ
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS raw_message_idempotency_key_idx ON raw_message (idempotency_key)",
    """
    CREATE TABLE IF NOT EXISTS lab_result (
        result_id           TEXT PRIMARY KEY,
        source_message_id   TEXT NOT NULL REFERENCES raw_message (message_id),
        bsnr                CHAR(8),
        lanr                VARCHAR(8),
        owner_id            TEXT,
        tenant_id           TEXT,
        patient_last_name   TEXT,
        patient_first_name  TEXT,
        patient_birth_date  TEXT,
        patient_id          TEXT,
        patient_address     TEXT,
        patient_postal_code TEXT,
        patient_city        TEXT,
        patient_gender      TEXT,
        lab_name            TEXT,
        lab_address         TEXT,
        request_id          TEXT,
        test_date           TEXT,
        created_at          TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS lab_result_owner_idx ON lab_result (owner_id)",
    "CREATE INDEX IF NOT EXISTS lab_result_message_idx ON lab_result (source_message_id)",
    """
    CREATE TABLE IF NOT EXISTS observation (
        result_id   TEXT NOT NULL REFERENCES lab_result (result_id) ON DELETE CASCADE,
        position    INTEGER NOT NULL,
        field_id    TEXT NOT NULL,
        content     TEXT NOT NULL,
        code        TEXT NOT NULL,
        PRIMARY KEY (result_id, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quarantine_entry (
        entry_id            TEXT PRIMARY KEY,
        message_id          TEXT NOT NULL UNIQUE REFERENCES raw_message (message_id),
        error_details       JSONB NOT NULL,
        retry_count         INTEGER NOT NULL DEFAULT 0,
        last_retry_at       TIMESTAMPTZ,
        next_retry_at       TIMESTAMPTZ,
        created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
        status              TEXT NOT NULL DEFAULT 'quarantined'
                            CHECK (status IN ('quarantined', 'permanently_failed', 'resolved')),
        resolved_result_id  TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS quarantine_entry_due_idx ON quarantine_entry (status, next_retry_at)",
    """
    CREATE TABLE IF NOT EXISTS audit_event (
        event_id    BIGSERIAL PRIMARY KEY,
        message_id  TEXT NOT NULL,
        event_type  TEXT NOT NULL,
        details     JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS audit_event_message_idx ON audit_event (message_id, event_id)",
    """
    CREATE TABLE IF NOT EXISTS owners (
        user_id     TEXT PRIMARY KEY,
        tenant_id   TEXT,
        bsnr        CHAR(8),
        lanr        VARCHAR(8),
        active      BOOLEAN NOT NULL DEFAULT TRUE,
        UNIQUE (bsnr, lanr)
    )
    """,
]


class SchemaManager:
    """
    Creates and inspects the pipeline tables.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize schema manager.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    def create_tables(self) -> None:
        """
        Create all tables and indexes if they do not exist.

        Runs in a single transaction, so a failure leaves no partial schema.
        """
        with self.pool.get_connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    for statement in SCHEMA_DDL:
                        cur.execute(statement)
        logger.info("Pipeline schema ready", extra={"tables": TABLES})

    def missing_tables(self) -> list[str]:
        """
        Return pipeline tables that do not exist yet.
        """
        rows = self.pool.execute_query(
            """
            SELECT table_name FROM information_schema.tables
            WHERE table_schema = current_schema() AND table_name = ANY(%s)
            """,
            (TABLES,),
        )
        existing = {row["table_name"] for row in rows}
        return [table for table in TABLES if table not in existing]

    def truncate_all(self) -> None:
        """Remove every row from the pipeline tables (test support)."""
        self.pool.execute_command(f"TRUNCATE TABLE {', '.join(TABLES)} CASCADE")

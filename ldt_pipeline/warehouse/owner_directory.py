"""
Owner directory backed by the PostgreSQL owners table.
"""

import psycopg

from ldt_pipeline.core.errors import StoreFailure
from ldt_pipeline.core.models.owner import Owner
from ldt_pipeline.observability.logger import get_logger
from ldt_pipeline.owners.directory import OwnerDirectory
from ldt_pipeline.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)

_OWNER_COLUMNS = "user_id, tenant_id, bsnr, lanr"


class PostgresOwnerDirectory(OwnerDirectory):
    """
    Reads active owners from the owners table.

    register_owner() upserts, so re-registering a user moves their
    identifiers instead of failing.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def _query(self, operation: str, sql: str, params: dict | None = None) -> list[dict]:
        try:
            return self.pool.execute_query(sql, params)
        except psycopg.Error as e:
            logger.error(f"Owner directory query '{operation}' failed: {e}")
            raise StoreFailure(operation, e) from e

    def lookup_owner(self, bsnr: str, lanr: str) -> Owner | None:
        rows = self._query(
            "lookup_owner",
            f"SELECT {_OWNER_COLUMNS} FROM owners WHERE bsnr = %(bsnr)s AND lanr = %(lanr)s AND active",
            {"bsnr": bsnr, "lanr": lanr},
        )
        return Owner(**rows[0]) if rows else None

    def get_owner(self, user_id: str) -> Owner | None:
        rows = self._query(
            "get_owner",
            f"SELECT {_OWNER_COLUMNS} FROM owners WHERE user_id = %(user_id)s AND active",
            {"user_id": user_id},
        )
        return Owner(**rows[0]) if rows else None

    def list_owners(self) -> list[Owner]:
        rows = self._query(
            "list_owners",
            f"SELECT {_OWNER_COLUMNS} FROM owners WHERE active ORDER BY user_id",
        )
        return [Owner(**row) for row in rows]

    def register_owner(self, owner: Owner) -> None:
        """
        Insert or update an owner.

        Raises:
            StoreFailure: If the (bsnr, lanr) pair belongs to another user
                or the write fails
        """
        try:
            self.pool.execute_command(
                """
                INSERT INTO owners (user_id, tenant_id, bsnr, lanr, active)
                VALUES (%(user_id)s, %(tenant_id)s, %(bsnr)s, %(lanr)s, TRUE)
                ON CONFLICT (user_id) DO UPDATE SET
                    tenant_id = EXCLUDED.tenant_id,
                    bsnr = EXCLUDED.bsnr,
                    lanr = EXCLUDED.lanr,
                    active = TRUE
                """,
                owner.model_dump(),
            )
        except psycopg.Error as e:
            logger.error(f"Failed to register owner {owner.user_id}: {e}")
            raise StoreFailure("register_owner", e) from e
        logger.info(
            "Owner registered",
            extra={"user_id": owner.user_id, "bsnr": owner.bsnr, "lanr": owner.lanr}
        )

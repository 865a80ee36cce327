"""
Wiring of pipeline components from settings.
"""

from dataclasses import dataclass
from typing import Any

from ldt_pipeline.config.settings import PipelineSettings
from ldt_pipeline.core.assembler import MessageAssembler
from ldt_pipeline.core.mapping_config import load_record_mappings
from ldt_pipeline.core.matcher import OwnerMatcher
from ldt_pipeline.core.resolver import IdentifierResolver
from ldt_pipeline.ingest.materializer import ResultMaterializer
from ldt_pipeline.ingest.pipeline import MessagePipeline
from ldt_pipeline.ingest.quarantine import QuarantineManager, RetryPolicy
from ldt_pipeline.ingest.retry_worker import RetryWorker
from ldt_pipeline.ingest.service import IngestionService
from ldt_pipeline.owners.directory import OwnerDirectory, YamlOwnerDirectory
from ldt_pipeline.warehouse.store import LdtStore


@dataclass
class PipelineComponents:
    settings: PipelineSettings
    store: LdtStore
    directory: OwnerDirectory
    pipeline: MessagePipeline
    service: IngestionService
    quarantine: QuarantineManager
    retry_worker: RetryWorker
    pool: Any = None

    def close(self) -> None:
        self.retry_worker.stop()
        self.store.close()
        if self.pool is not None:
            self.pool.close()


def retry_policy_from(settings: PipelineSettings) -> RetryPolicy:
    return RetryPolicy(
        max_retries=settings.max_retries,
        base_delay_seconds=settings.retry_base_delay_seconds,
        max_delay_seconds=settings.retry_max_delay_seconds,
    )


def build_components(
    settings: PipelineSettings,
    store: LdtStore | None = None,
    directory: OwnerDirectory | None = None,
) -> PipelineComponents:
    """
    Assemble the pipeline.

    Without an explicit store or directory, PostgreSQL is used (opening a
    connection pool from settings.database); the directory comes from
    settings.owner_directory_file when set.

    Args:
        settings: Pipeline settings
        store: Store to use instead of PostgreSQL
        directory: Owner directory to use instead of the configured one

    Returns:
        PipelineComponents
    """
    pool = None
    if store is None or (directory is None and not settings.owner_directory_file):
        # Lazy import: in-memory setups never touch psycopg
        from ldt_pipeline.warehouse.connection import DatabaseConnectionPool

        pool = DatabaseConnectionPool.from_settings(settings.database)
        pool.open()

    try:
        return _assemble(settings, store, directory, pool)
    except Exception:
        # Nothing owns the pool yet
        if pool is not None:
            pool.close()
        raise


def _assemble(
    settings: PipelineSettings,
    store: LdtStore | None,
    directory: OwnerDirectory | None,
    pool,
) -> PipelineComponents:
    if store is None:
        from ldt_pipeline.warehouse.postgres_store import PostgresStore

        store = PostgresStore(pool)

    if directory is None:
        if settings.owner_directory_file:
            directory = YamlOwnerDirectory(settings.owner_directory_file)
        else:
            from ldt_pipeline.warehouse.owner_directory import PostgresOwnerDirectory

            directory = PostgresOwnerDirectory(pool)

    pipeline = MessagePipeline(
        assembler=MessageAssembler(load_record_mappings(settings.record_mapping_file)),
        resolver=IdentifierResolver(enable_pattern_scan=settings.enable_pattern_scan),
        matcher=OwnerMatcher(directory),
        encoding=settings.payload_encoding,
    )
    materializer = ResultMaterializer()
    quarantine = QuarantineManager(store, pipeline, materializer, directory, retry_policy_from(settings))
    service = IngestionService(store, pipeline, materializer, quarantine)
    retry_worker = RetryWorker(
        store,
        quarantine,
        batch_size=settings.retry_batch_size,
        poll_interval_seconds=settings.retry_poll_interval_seconds,
    )
    return PipelineComponents(settings, store, directory, pipeline, service, quarantine, retry_worker, pool)

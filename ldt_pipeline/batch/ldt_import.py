"""
Bulk import of an archive directory of LDT files.

Spark lists and reads the files; each file is then handed to the same
IngestionService the webhook uses, so idempotency, quarantine and owner
matching behave exactly as for live deliveries. Re-importing a directory
is safe: every file is deduplicated by its payload digest.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from pyspark.sql import SparkSession

from ldt_pipeline.core.errors import MessageIdConflict, StoreFailure
from ldt_pipeline.ingest.service import IngestionService
from ldt_pipeline.observability import metrics
from ldt_pipeline.observability.logger import get_logger, log_operation
from ldt_pipeline.utils.validation import validate_directory_path

logger = get_logger(__name__)

IMPORT_SOURCE = "bulk_import"


def create_spark_session(app_name: str = "LdtBulkImport", master: str = "local[*]") -> SparkSession:
    """
    Create Spark session for bulk import.

    Args:
        app_name: Application name
        master: Spark master URL

    Returns:
        SparkSession
    """
    spark = SparkSession.builder \
        .appName(app_name) \
        .master(master) \
        .config("spark.sql.adaptive.enabled", "true") \
        .config("spark.ui.enabled", "false") \
        .getOrCreate()

    return spark


@dataclass
class ImportSummary:
    """Per-outcome counts of one directory import."""

    total_files: int = 0
    stored: int = 0
    quarantined: int = 0
    duplicate: int = 0
    failed_files: list[str] = field(default_factory=list)

    def add(self, status: str) -> None:
        if status == "stored":
            self.stored += 1
        elif status == "duplicate":
            self.duplicate += 1
        else:
            self.quarantined += 1

    def to_dict(self) -> dict:
        return {
            "total_files": self.total_files,
            "stored": self.stored,
            "quarantined": self.quarantined,
            "duplicate": self.duplicate,
            "failed": len(self.failed_files),
        }


class BulkImporter:
    """
    Feeds every file of a directory through the ingestion service.

    Files are read as raw bytes (binaryFiles) so the configured payload
    encoding is applied by the decoder, not by Spark.
    """

    def __init__(self, spark: SparkSession, service: IngestionService, max_workers: int = 4):
        """
        Initialize bulk importer.

        Args:
            spark: Active Spark session
            service: Ingestion service shared with the webhook
            max_workers: Files ingested concurrently on the driver
        """
        self.spark = spark
        self.service = service
        self.max_workers = max_workers

    def read_directory(self, directory: str | Path, pattern: str = "*.ldt") -> list[tuple[str, bytes]]:
        """
        Read all matching files of a directory.

        Args:
            directory: Archive directory
            pattern: File name glob

        Returns:
            (path, payload) pairs sorted by path

        Raises:
            ValidationError: If the path is malformed
            FileNotFoundError: If the directory does not exist
        """
        directory = Path(validate_directory_path(str(directory), "directory"))
        if not directory.is_dir():
            raise FileNotFoundError(f"Import directory not found: {directory}")
        if not any(directory.glob(pattern)):
            return []

        rdd = self.spark.sparkContext.binaryFiles(str(directory / pattern))
        return sorted((path, bytes(content)) for path, content in rdd.collect())

    def import_directory(self, directory: str | Path, pattern: str = "*.ldt") -> ImportSummary:
        """
        Ingest every matching file of a directory.

        A StoreFailure or MessageIdConflict on one file is logged and
        counted; the file can be imported again later without creating
        duplicates.

        Args:
            directory: Archive directory
            pattern: File name glob

        Returns:
            ImportSummary
        """
        summary = ImportSummary()

        with log_operation("Bulk import", logger=logger, directory=str(directory), pattern=pattern):
            files = self.read_directory(directory, pattern)
            summary.total_files = len(files)

            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {
                    executor.submit(self.service.ingest, payload, source=IMPORT_SOURCE): path
                    for path, payload in files
                }
                for future in as_completed(futures):
                    path = futures[future]
                    try:
                        outcome = future.result()
                    except (StoreFailure, MessageIdConflict) as e:
                        metrics.increment_counter(
                            metrics.errors_total, error_type=type(e).__name__, component="bulk_import"
                        )
                        logger.error(f"Import of {path} failed: {e}", extra={"path": path})
                        summary.failed_files.append(path)
                        continue

                    summary.add(outcome.status)
                    logger.debug(
                        f"Imported {path}",
                        extra={"path": path, "message_id": outcome.message_id, "status": outcome.status}
                    )

        logger.info("Bulk import finished", extra=summary.to_dict())
        return summary

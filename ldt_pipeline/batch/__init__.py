"""
Spark bulk import of LDT archives.
"""

from .ldt_import import BulkImporter, ImportSummary, create_spark_session

__all__ = [
    "BulkImporter",
    "ImportSummary",
    "create_spark_session",
]

"""
Ingestion orchestration: idempotency, materialization, quarantine and retries.
"""

from .factory import PipelineComponents, build_components
from .idempotency import IdempotencyGuard, compute_idempotency_key
from .quarantine import QuarantineManager, RetryPolicy
from .retry_worker import RetryWorker
from .service import IngestionService

__all__ = [
    "IngestionService",
    "IdempotencyGuard",
    "compute_idempotency_key",
    "QuarantineManager",
    "RetryPolicy",
    "RetryWorker",
    "PipelineComponents",
    "build_components",
]

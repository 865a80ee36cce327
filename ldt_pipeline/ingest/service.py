"""
Ingestion service: orchestrates one delivery end to end.

raw payload -> IdempotencyGuard -> Decoder -> Assembler -> Resolver ->
OwnerMatcher -> (ResultMaterializer | QuarantineManager)

The claim, the processing outcome and the audit trail of a delivery are
written in one store transaction.
"""

from ldt_pipeline.core.errors import DecodeError
from ldt_pipeline.core.models import IdentifierHints, IngestionOutcome, RawMessage, Stored
from ldt_pipeline.ingest.idempotency import IdempotencyGuard, new_raw_message
from ldt_pipeline.ingest.materializer import ResultMaterializer
from ldt_pipeline.ingest.pipeline import MessagePipeline
from ldt_pipeline.ingest.quarantine import QuarantineManager
from ldt_pipeline.observability import metrics
from ldt_pipeline.observability.lineage import LineageTracker
from ldt_pipeline.observability.logger import get_logger
from ldt_pipeline.warehouse.store import LdtStore

logger = get_logger(__name__)


class IngestionService:
    """
    Processes inbound LDT deliveries.

    Every delivery ends in exactly one of Stored, Quarantined or
    DuplicateIgnored. StoreFailure propagates so the transport can
    redeliver; nothing is written in that case.
    """

    def __init__(
        self,
        store: LdtStore,
        pipeline: MessagePipeline,
        materializer: ResultMaterializer,
        quarantine: QuarantineManager,
        guard: IdempotencyGuard | None = None,
    ):
        self.store = store
        self.pipeline = pipeline
        self.materializer = materializer
        self.quarantine = quarantine
        self.guard = guard or IdempotencyGuard()

    def ingest(
        self,
        payload: bytes,
        message_id: str | None = None,
        idempotency_key: str | None = None,
        hints: IdentifierHints | None = None,
        source: str = "webhook",
    ) -> IngestionOutcome:
        """
        Ingest one raw payload.

        Args:
            payload: Bytes as received
            message_id: Transport message id (generated when absent)
            idempotency_key: Transport idempotency key (payload digest when absent)
            hints: Transport-supplied BSNR/LANR
            source: Inbound surface name

        Returns:
            Stored, Quarantined or DuplicateIgnored

        Raises:
            StoreFailure: Store or owner directory unavailable
            ValidationError: Malformed message id or idempotency key
        """
        message = new_raw_message(payload, message_id, idempotency_key, hints, source)
        return self.ingest_message(message)

    def ingest_message(self, message: RawMessage) -> IngestionOutcome:
        """
        Ingest an already wrapped RawMessage.

        Raises:
            StoreFailure: Store or owner directory unavailable
            MessageIdConflict: message_id already stored under another key
        """
        with metrics.track_duration(metrics.processing_duration_seconds, mode="ingest"):
            try:
                outcome = self._process(message)
            except Exception as e:
                metrics.increment_counter(metrics.errors_total, error_type=type(e).__name__, component="ingest")
                logger.error(
                    f"Ingestion failed, nothing committed: {e}",
                    extra={"message_id": message.message_id, "idempotency_key": message.idempotency_key}
                )
                raise

        metrics.record_outcome(outcome.status)
        return outcome

    def _process(self, message: RawMessage) -> IngestionOutcome:
        with self.store.transaction() as tx:
            claim = self.guard.claim(tx, message)
            if not claim.created:
                outcome = self.guard.duplicate_outcome(message, claim)
                tracker = LineageTracker(outcome.message_id)
                tracker.track_duplicate(
                    message.idempotency_key,
                    claim.existing.message_id if claim.existing else None,
                    outcome.original_result_id,
                )
                tracker.flush(tx)
                return outcome

            tracker = LineageTracker(message.message_id)
            tracker.track_received(message)

            try:
                decoded = self.pipeline.decode(message)
            except DecodeError as e:
                outcome = self.quarantine.quarantine(tx, message, e, tracker)
                tracker.flush(tx)
                return outcome

            tracker.track_decoded(len(decoded.records), decoded.field_map.warnings)
            tracker.track_identifiers(decoded.identifiers)
            for warning in decoded.field_map.warnings:
                logger.warning(warning, extra={"message_id": message.message_id})

            owner = self.pipeline.match(decoded.identifiers)
            tracker.track_owner(owner, decoded.identifiers)

            result = self.materializer.materialize(
                tx, decoded.field_map, owner, message, decoded.identifiers, tracker
            )
            tracker.flush(tx)

        logger.info(
            "Message stored" if owner else "Message stored unassigned",
            extra={
                "message_id": message.message_id,
                "idempotency_key": message.idempotency_key,
                "status": "stored",
                "result_id": result.result_id,
                "bsnr": decoded.identifiers.bsnr,
                "lanr": decoded.identifiers.lanr,
                "bsnr_source": decoded.identifiers.bsnr_source,
                "lanr_source": decoded.identifiers.lanr_source,
                "owner_id": owner.user_id if owner else None,
                "record_count": len(decoded.records),
            }
        )
        return Stored(
            message_id=message.message_id,
            result_id=result.result_id,
            owner=owner,
            bsnr=decoded.identifiers.bsnr,
            lanr=decoded.identifiers.lanr,
        )

"""
Result materializer: turns an assembled message into result rows.
"""

import uuid
from datetime import datetime, timezone

from ldt_pipeline.core.models import FieldMap, LabResult, Observation, Owner, RawMessage
from ldt_pipeline.core.resolver import ResolvedIdentifiers
from ldt_pipeline.observability.lineage import LineageTracker
from ldt_pipeline.warehouse.store import MESSAGE_STORED, StoreTransaction

# Result ids are derived from the message id, so a replay cannot create a second result
RESULT_NAMESPACE = uuid.UUID("6f1c7a52-3a0e-4c55-9d0e-6b2f0d3b8e11")


def result_id_for(message_id: str) -> str:
    return f"res-{uuid.uuid5(RESULT_NAMESPACE, message_id)}"


class ResultMaterializer:
    """
    Builds and writes LabResult/Observation rows.
    """

    def build(
        self,
        field_map: FieldMap,
        owner: Owner | None,
        message: RawMessage,
        identifiers: ResolvedIdentifiers,
        created_at: datetime | None = None,
    ) -> tuple[LabResult, list[Observation]]:
        """
        Build result rows. Deterministic for a given input and created_at.

        Args:
            field_map: Assembled message
            owner: Matched or forced owner; None stores the result unassigned
            message: Source message
            identifiers: Resolved BSNR/LANR
            created_at: Result timestamp (defaults to now)

        Returns:
            Tuple of (LabResult, observations in message order)
        """
        result_id = result_id_for(message.message_id)
        patient = field_map.patient
        result = LabResult(
            result_id=result_id,
            source_message_id=message.message_id,
            bsnr=identifiers.bsnr,
            lanr=identifiers.lanr,
            owner_id=owner.user_id if owner else None,
            tenant_id=owner.tenant_id if owner else None,
            patient_last_name=patient.last_name,
            patient_first_name=patient.first_name,
            patient_birth_date=patient.birth_date,
            patient_id=patient.patient_id,
            patient_address=patient.address,
            patient_postal_code=patient.postal_code,
            patient_city=patient.city,
            patient_gender=patient.gender,
            lab_name=field_map.lab.name,
            lab_address=field_map.lab.address,
            request_id=field_map.test.request_id,
            test_date=field_map.test.test_date,
            created_at=created_at or datetime.now(timezone.utc),
        )
        observations = [
            Observation(
                result_id=result_id,
                position=position,
                field_id=field_id,
                content=content,
                code=field_id + content,
            )
            for position, (field_id, content) in enumerate(field_map.test.parameters)
        ]
        return result, observations

    def materialize(
        self,
        tx: StoreTransaction,
        field_map: FieldMap,
        owner: Owner | None,
        message: RawMessage,
        identifiers: ResolvedIdentifiers,
        tracker: LineageTracker | None = None,
        created_at: datetime | None = None,
    ) -> LabResult:
        """
        Write result rows and mark the message stored, in the caller's transaction.

        Returns:
            The written LabResult
        """
        result, observations = self.build(field_map, owner, message, identifiers, created_at)
        tx.insert_result(result, observations)
        tx.mark_message(message.message_id, MESSAGE_STORED, result.result_id)
        if tracker is not None:
            tracker.track_stored(result.result_id, result.assigned, len(observations))
        return result

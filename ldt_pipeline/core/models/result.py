"""
Materialized lab result and observation models.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class Observation(BaseModel):
    """
    One requested test parameter of a lab result.

    Attributes:
        result_id: Owning lab result
        position: 0-based order within the message
        field_id: Field identifier of the 8410 record
        content: Remaining text of the 8410 record
        code: Parameter code (field_id + content, e.g. "HBA1C")
    """

    result_id: str
    position: int = Field(..., ge=0)
    field_id: str
    content: str
    code: str


class LabResult(BaseModel):
    """
    Structured, ownership-tagged lab result.

    owner_id and tenant_id are None for results stored unassigned.
    """

    result_id: str
    source_message_id: str
    bsnr: str | None = None
    lanr: str | None = None
    owner_id: str | None = None
    tenant_id: str | None = None
    patient_last_name: str | None = None
    patient_first_name: str | None = None
    patient_birth_date: str | None = None
    patient_id: str | None = None
    patient_address: str | None = None
    patient_postal_code: str | None = None
    patient_city: str | None = None
    patient_gender: str | None = None
    lab_name: str | None = None
    lab_address: str | None = None
    request_id: str | None = None
    test_date: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def assigned(self) -> bool:
        return self.owner_id is not None

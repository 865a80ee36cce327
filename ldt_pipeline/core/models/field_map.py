"""
FieldMap model: the structured view of a message after assembly.
"""

from pydantic import BaseModel, Field

from .record import Record


class PatientData(BaseModel):
    """Patient attributes collected from 31xx records."""

    last_name: str | None = None
    first_name: str | None = None
    birth_date: str | None = None
    patient_id: str | None = None
    address: str | None = None
    postal_code: str | None = None
    city: str | None = None
    gender: str | None = None


class LabData(BaseModel):
    """Sending laboratory attributes."""

    name: str | None = None
    address: str | None = None


class RequestData(BaseModel):
    """
    Request attributes and the ordered list of requested parameters.

    Attributes:
        request_id: Lab request identifier (8300)
        test_date: Collection/test date as sent (8432)
        parameters: (field_id, content) tuples in message order (8410)
    """

    request_id: str | None = None
    test_date: str | None = None
    parameters: list[tuple[str, str]] = Field(default_factory=list)


class FieldMap(BaseModel):
    """
    Result of folding a message's records through the dispatch table.

    Attributes:
        bsnr: Facility number captured positionally (8 digits), if any
        lanr: Physician number captured positionally, if any
        patient: Patient attributes
        lab: Lab attributes
        test: Test request attributes
        unrecognized: Records whose type has no mapping
        warnings: Non-blocking observations (e.g. length mismatches)
        record_count: Number of records folded
    """

    bsnr: str | None = None
    lanr: str | None = None
    patient: PatientData = Field(default_factory=PatientData)
    lab: LabData = Field(default_factory=LabData)
    test: RequestData = Field(default_factory=RequestData)
    unrecognized: list[Record] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    record_count: int = 0

    @property
    def has_identifiers(self) -> bool:
        return self.bsnr is not None and self.lanr is not None

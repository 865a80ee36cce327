"""
Request and response schemas of the HTTP surface.
"""

from typing import Literal

from pydantic import BaseModel, Field

from ldt_pipeline.core.models import QuarantineEntry


class IngestResponse(BaseModel):
    """Summary returned to the delivering broker."""

    status: Literal["stored", "quarantined", "duplicate"]
    message_id: str
    bsnr: str | None = None
    lanr: str | None = None
    owner_id: str | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "status": "stored",
                "message_id": "msg-20250430-0001",
                "bsnr": "93860200",
                "lanr": "72720053",
                "owner_id": "user-0042",
            }
        }


class QuarantineEntryList(BaseModel):
    items: list[QuarantineEntry]
    limit: int
    offset: int


class QuarantineStatistics(BaseModel):
    total: int
    quarantined: int
    permanently_failed: int
    resolved: int


class AssignOwnerRequest(BaseModel):
    owner_id: str = Field(..., min_length=1, max_length=255)


class AssignOwnerResponse(BaseModel):
    entry_id: str
    status: str
    message_id: str
    result_id: str | None = None
    owner_id: str | None = None

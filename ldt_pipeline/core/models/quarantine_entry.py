"""
QuarantineEntry model representing a message that failed to decode.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class QuarantineStatus(str, Enum):
    """Lifecycle states of a quarantine entry."""

    QUARANTINED = "quarantined"
    PERMANENTLY_FAILED = "permanently_failed"
    RESOLVED = "resolved"


class ErrorDetails(BaseModel):
    """
    Structured description of why a message was quarantined.

    Attributes:
        reason: DecodeFailureReason value
        stage: Pipeline stage that failed (decode, forced_retry, ...)
        message: Human-readable summary
        line_number: Offending line, if the failure is line-specific
        line_excerpt: First 80 chars of the offending line
        field_name: Positional part that failed its format check
    """

    reason: str
    stage: str = "decode"
    message: str
    line_number: int | None = None
    line_excerpt: str | None = None
    field_name: str | None = None


class QuarantineEntry(BaseModel):
    """
    Quarantined message with retry bookkeeping. Never auto-deleted.

    Attributes:
        entry_id: Primary key
        message_id: Referenced RawMessage
        error_details: Latest failure details
        retry_count: Number of retry attempts so far
        last_retry_at: When the last attempt ran
        next_retry_at: When the entry becomes due again
        created_at: When first quarantined
        status: quarantined, permanently_failed or resolved
        resolved_result_id: Result created by a successful retry
    """

    entry_id: str
    message_id: str
    error_details: ErrorDetails
    retry_count: int = Field(0, ge=0)
    last_retry_at: datetime | None = None
    next_retry_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: QuarantineStatus = QuarantineStatus.QUARANTINED
    resolved_result_id: str | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "entry_id": "q-7f3c",
                "message_id": "msg-20250430-0002",
                "error_details": {
                    "reason": "TOO_SHORT",
                    "stage": "decode",
                    "message": "Line 2 is shorter than 8 characters",
                    "line_number": 2,
                    "line_excerpt": "01380",
                    "field_name": None,
                },
                "retry_count": 1,
                "status": "quarantined",
            }
        }

"""
AuditEvent model: lineage entry emitted by the pipeline per message.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


class AuditEvent(BaseModel):
    """
    Pipeline lineage entry.

    Attributes:
        event_id: Auto-increment primary key (None until stored)
        message_id: Message the event belongs to
        event_type: e.g. "received", "decoded", "stored", "quarantined"
        details: Event-specific context
        created_at: When the event occurred
    """

    event_id: int | None = None
    message_id: str
    event_type: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        json_schema_extra = {
            "example": {
                "event_id": 1,
                "message_id": "msg-20250430-0001",
                "event_type": "identifiers_resolved",
                "details": {"bsnr": "93860200", "bsnr_source": "positional"},
            }
        }

"""
RawMessage model representing one inbound LDT delivery exactly as received.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class IdentifierHints(BaseModel):
    """
    BSNR/LANR values supplied by the transport alongside the payload.

    Hints never override a positional identifier; they only steer the
    pattern-scan fallback when present in the message text.
    """

    bsnr: str | None = None
    lanr: str | None = None

    class Config:
        frozen = True


class RawMessage(BaseModel):
    """
    Immutable inbound payload, retained for replay and audit.

    Attributes:
        message_id: Transport or generated message identifier
        idempotency_key: Transport-supplied key, else SHA-256 hex of payload
        payload: Bytes exactly as received
        received_at: When the delivery arrived
        source: Which inbound surface produced the message
        identifier_hints: Optional BSNR/LANR supplied by the transport
        status: Processing status recorded by the store
        result_id: Lab result materialized from this message, once stored
    """

    message_id: str = Field(..., min_length=1)
    idempotency_key: str = Field(..., min_length=1)
    payload: bytes
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "webhook"
    identifier_hints: IdentifierHints | None = None
    status: str = "received"
    result_id: str | None = None

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "message_id": "msg-20250430-0001",
                "idempotency_key": "5f2b0d9c3a...e1",
                "payload": "01380008230\r\n0180201793860200\r\n0180212772720053\r\n",
                "source": "webhook",
                "identifier_hints": {"bsnr": "93860200", "lanr": None},
            }
        }

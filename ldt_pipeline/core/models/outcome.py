"""
Ingestion outcome models.

Every RawMessage ends in exactly one of these four outcomes. Each renders
the summary returned to the delivering transport.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from .owner import Owner


class _OutcomeBase(BaseModel):
    message_id: str
    bsnr: str | None = None
    lanr: str | None = None

    def to_response(self) -> dict[str, Any]:
        """
        Build the transport response summary.

        Returns:
            Dict with status, message_id and whichever of bsnr, lanr and
            owner_id are known
        """
        response: dict[str, Any] = {"status": self.response_status, "message_id": self.message_id}
        if self.bsnr:
            response["bsnr"] = self.bsnr
        if self.lanr:
            response["lanr"] = self.lanr
        owner_id = self.owner_id
        if owner_id:
            response["owner_id"] = owner_id
        return response

    @property
    def response_status(self) -> str:
        return self.status

    @property
    def owner_id(self) -> str | None:
        return None


class Stored(_OutcomeBase):
    """Message materialized; owner is None when stored unassigned."""

    status: Literal["stored"] = "stored"
    result_id: str
    owner: Owner | None = None

    @property
    def owner_id(self) -> str | None:
        return self.owner.user_id if self.owner else None

    @property
    def assigned(self) -> bool:
        return self.owner is not None


class Quarantined(_OutcomeBase):
    """Message failed to decode and awaits retry."""

    status: Literal["quarantined"] = "quarantined"
    entry_id: str
    reason: str
    retry_count: int = 0


class DuplicateIgnored(_OutcomeBase):
    """Idempotency key already seen; nothing was written."""

    status: Literal["duplicate"] = "duplicate"
    original_result_id: str | None = None


class PermanentlyFailed(_OutcomeBase):
    """Retries exhausted; only a forced owner can move the entry."""

    status: Literal["permanently_failed"] = "permanently_failed"
    entry_id: str
    retry_count: int

    @property
    def response_status(self) -> str:
        # Transports only know the three delivery statuses
        return "quarantined"


IngestionOutcome = Annotated[
    Union[Stored, Quarantined, DuplicateIgnored, PermanentlyFailed],
    Field(discriminator="status"),
]

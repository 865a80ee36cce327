"""
Error taxonomy for the LDT ingestion pipeline.

DecodeError, StoreFailure and MessageIdConflict are raised across component
boundaries. An assembly gap (missing attribute) is represented as None, an
unmatched owner results in an unassigned result, and a duplicate delivery
becomes a DuplicateIgnored outcome; none of those are exceptions.
"""

from enum import Enum

LINE_EXCERPT_LENGTH = 80


class DecodeFailureReason(str, Enum):
    """Why a payload could not be decoded into records."""

    TOO_SHORT = "TOO_SHORT"
    INVALID_FORMAT = "INVALID_FORMAT"
    EMPTY_MESSAGE = "EMPTY_MESSAGE"
    INVALID_ENCODING = "INVALID_ENCODING"


class PipelineError(Exception):
    """Base class for all pipeline errors."""
    pass


class DecodeError(PipelineError):
    """Raised when a line (or the payload as a whole) cannot be decoded."""

    def __init__(
        self,
        reason: DecodeFailureReason,
        message: str,
        line_number: int | None = None,
        line: str | None = None,
        field_name: str | None = None,
    ):
        self.reason = reason
        self.message = message
        self.line_number = line_number
        self.line_excerpt = line[:LINE_EXCERPT_LENGTH] if line is not None else None
        self.field_name = field_name
        location = f"line {line_number}: " if line_number is not None else ""
        super().__init__(f"[{reason.value}] {location}{message}")

    def to_details(self, stage: str = "decode") -> dict:
        """Structured form stored with a quarantine entry."""
        return {
            "reason": self.reason.value,
            "stage": stage,
            "message": self.message,
            "line_number": self.line_number,
            "line_excerpt": self.line_excerpt,
            "field_name": self.field_name,
        }


class StoreFailure(PipelineError):
    """Durable store unreachable or a write failed; the transaction was rolled back."""

    def __init__(self, operation: str, cause: Exception | None = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Store operation '{operation}' failed{detail}")


class QuarantineEntryNotFound(PipelineError):
    """Raised when an admin operation references an unknown entry."""

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Quarantine entry not found: {entry_id}")


class EntryNotRetryable(PipelineError):
    """Raised when a forced retry targets an entry that is already resolved."""

    def __init__(self, entry_id: str, status: str):
        self.entry_id = entry_id
        self.status = status
        super().__init__(f"Quarantine entry {entry_id} has status '{status}' and cannot be retried")


class OwnerNotFound(PipelineError):
    """Raised when a forced owner assignment names an unknown user."""

    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        super().__init__(f"Owner not found: {owner_id}")


class ConfigurationError(PipelineError):
    """Raised when a mapping, owner or settings file is invalid."""
    pass


class MessageIdConflict(PipelineError):
    """Raised when a message id is already stored under a different idempotency key."""

    def __init__(self, message_id: str, idempotency_key: str):
        self.message_id = message_id
        self.idempotency_key = idempotency_key
        super().__init__(
            f"Message id {message_id} is already stored under a different idempotency key"
        )

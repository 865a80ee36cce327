"""
Idempotency guard: every delivery is claimed once by its idempotency key.
"""

import hashlib
import uuid

from ldt_pipeline.core.models import DuplicateIgnored, IdentifierHints, RawMessage
from ldt_pipeline.observability.logger import get_logger
from ldt_pipeline.utils.validation import validate_idempotency_key, validate_message_id
from ldt_pipeline.warehouse.store import ClaimResult, StoreTransaction

logger = get_logger(__name__)


def compute_idempotency_key(payload: bytes, explicit_key: str | None = None) -> str:
    """
    Return the transport key if given, else the SHA-256 hex digest of the payload.

    Args:
        payload: Raw message bytes
        explicit_key: Key supplied by the transport (X-Idempotency-Key)

    Returns:
        Idempotency key

    Examples:
        >>> compute_idempotency_key(b"", explicit_key="mirth-42")
        'mirth-42'
        >>> compute_idempotency_key(b"abc")[:12]
        'ba7816bf8f01'
    """
    if explicit_key:
        return validate_idempotency_key(explicit_key)
    return hashlib.sha256(payload).hexdigest()


def new_raw_message(
    payload: bytes,
    message_id: str | None = None,
    idempotency_key: str | None = None,
    hints: IdentifierHints | None = None,
    source: str = "webhook",
) -> RawMessage:
    """
    Wrap an inbound payload in a RawMessage.

    Args:
        payload: Bytes as received
        message_id: Transport message id (generated when absent)
        idempotency_key: Transport idempotency key (payload digest when absent)
        hints: Transport-supplied identifiers
        source: Inbound surface name

    Returns:
        New RawMessage
    """
    return RawMessage(
        message_id=validate_message_id(message_id) if message_id else f"msg-{uuid.uuid4()}",
        idempotency_key=compute_idempotency_key(payload, idempotency_key),
        payload=payload,
        identifier_hints=hints,
        source=source,
    )


class IdempotencyGuard:
    """
    Atomic insert-if-absent on the unique idempotency key.
    """

    def claim(self, tx: StoreTransaction, message: RawMessage) -> ClaimResult:
        """
        Claim a message inside the processing transaction.

        The claim is rolled back together with the rest of the transaction,
        so a failed attempt does not block a redelivery.

        Args:
            tx: Open store transaction
            message: Inbound message

        Returns:
            ClaimResult; created is False for duplicates
        """
        claim = tx.claim_message(message)
        if not claim.created:
            logger.info(
                "Duplicate delivery ignored",
                extra={
                    "message_id": message.message_id,
                    "idempotency_key": message.idempotency_key,
                    "original_message_id": claim.existing.message_id if claim.existing else None,
                }
            )
        return claim

    @staticmethod
    def duplicate_outcome(message: RawMessage, claim: ClaimResult) -> DuplicateIgnored:
        """Build the DuplicateIgnored outcome for a lost claim."""
        existing = claim.existing
        return DuplicateIgnored(
            message_id=existing.message_id if existing else message.message_id,
            original_result_id=existing.result_id if existing else None,
        )

"""
Input validation utilities for the LDT ingestion pipeline.

Provides reusable validation functions for identifiers that arrive from
transports, the admin API and the CLI, so malformed input is rejected
before it reaches the store.
"""

import re

from ldt_pipeline.core.identifiers import is_valid_bsnr, is_valid_lanr

_IDENTIFIER_CHARS = re.compile(r"^[a-zA-Z0-9_\-\.:]+$")


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


def _validate_token(value: str, field_name: str, max_length: int = 255) -> str:
    if not value or not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    value = value.strip()

    if not value:
        raise ValidationError(f"{field_name} cannot be empty or whitespace-only")

    if not _IDENTIFIER_CHARS.match(value):
        raise ValidationError(
            f"{field_name} contains invalid characters. "
            "Only alphanumeric, hyphens, underscores, dots and colons are allowed."
        )

    # Prevent excessively long IDs (DOS protection)
    if len(value) > max_length:
        raise ValidationError(f"{field_name} exceeds maximum length of {max_length} characters")

    return value


def validate_message_id(message_id: str, field_name: str = "message_id") -> str:
    """
    Validate a transport message id.

    Args:
        message_id: The message id to validate
        field_name: Name of the field (for error messages)

    Returns:
        The validated message id (stripped of whitespace)

    Raises:
        ValidationError: If validation fails

    Examples:
        >>> validate_message_id("mirth-2025-04-30-0001")
        'mirth-2025-04-30-0001'
        >>> validate_message_id("bad id!")  # doctest: +SKIP
        ValidationError: message_id contains invalid characters
    """
    return _validate_token(message_id, field_name)


def validate_idempotency_key(key: str, field_name: str = "idempotency_key") -> str:
    """Validate a transport-supplied idempotency key."""
    return _validate_token(key, field_name)


def validate_entry_id(entry_id: str, field_name: str = "entry_id") -> str:
    """Validate a quarantine entry id."""
    return _validate_token(entry_id, field_name)


def validate_owner_id(owner_id: str, field_name: str = "owner_id") -> str:
    """Validate an owner (user) id."""
    return _validate_token(owner_id, field_name)


def validate_identifier_hint(kind: str, value: str | None) -> str | None:
    """
    Validate an optional BSNR/LANR hint.

    Blank values count as absent.

    Args:
        kind: "bsnr" or "lanr"
        value: Header value

    Returns:
        The hint, or None if absent

    Raises:
        ValidationError: If a non-blank hint is malformed
    """
    if value is None or not value.strip():
        return None
    value = value.strip()
    valid = is_valid_bsnr(value) if kind == "bsnr" else is_valid_lanr(value)
    if not valid:
        expected = "8 digits" if kind == "bsnr" else "7 or 8 digits"
        raise ValidationError(f"{kind} hint must be {expected}, got '{value}'")
    return value


def validate_limit(limit: int, field_name: str = "limit", max_limit: int = 10000) -> int:
    """
    Validate a limit parameter for queries.

    Args:
        limit: The limit value to validate
        field_name: Name of the field (for error messages)
        max_limit: Maximum allowed limit value

    Returns:
        The validated limit value

    Raises:
        ValidationError: If validation fails

    Examples:
        >>> validate_limit(100)
        100
        >>> validate_limit(0)  # doctest: +SKIP
        ValidationError: limit must be a positive integer
    """
    if not isinstance(limit, int) or isinstance(limit, bool):
        raise ValidationError(f"{field_name} must be an integer, got {type(limit).__name__}")

    if limit <= 0:
        raise ValidationError(f"{field_name} must be a positive integer, got {limit}")

    if limit > max_limit:
        raise ValidationError(f"{field_name} exceeds maximum of {max_limit}")

    return limit


def validate_offset(offset: int, field_name: str = "offset") -> int:
    """
    Validate an offset parameter for pagination.

    Raises:
        ValidationError: If offset is not a non-negative integer
    """
    if not isinstance(offset, int) or isinstance(offset, bool):
        raise ValidationError(f"{field_name} must be an integer, got {type(offset).__name__}")

    if offset < 0:
        raise ValidationError(f"{field_name} must be a non-negative integer, got {offset}")

    return offset


def validate_directory_path(path: str, field_name: str = "path") -> str:
    """
    Validate a directory path or URI passed to the bulk importer.

    Raises:
        ValidationError: If the path is empty, contains null bytes or
            path traversal
    """
    if not path or not isinstance(path, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    path = path.strip()

    if not path:
        raise ValidationError(f"{field_name} cannot be empty or whitespace-only")

    if ".." in path.split("/"):
        raise ValidationError(f"{field_name} contains path traversal characters (..)")

    if "\x00" in path:
        raise ValidationError(f"{field_name} contains null bytes")

    if len(path) > 4096:  # Linux PATH_MAX
        raise ValidationError(f"{field_name} exceeds maximum length of 4096 characters")

    return path

"""
BSNR/LANR formats shared by the assembler, resolver and owner directories.

BSNR (Betriebsstaettennummer) identifies the practice/facility, LANR
(Lebenslange Arztnummer) the physician.
"""

import re
from re import Pattern

BSNR_PATTERN: Pattern = re.compile(r"[0-9]{8}")
# Historic feeds carry 7-digit LANRs, current ones 8 digits
LANR_PATTERN: Pattern = re.compile(r"[0-9]{7,8}")

BSNR = "bsnr"
LANR = "lanr"


def is_valid_bsnr(value: str | None) -> bool:
    return value is not None and BSNR_PATTERN.fullmatch(value) is not None


def is_valid_lanr(value: str | None) -> bool:
    return value is not None and LANR_PATTERN.fullmatch(value) is not None


def is_valid(kind: str, value: str | None) -> bool:
    """
    Check an identifier value against its format.

    Args:
        kind: "bsnr" or "lanr"
        value: Candidate value
    """
    if kind == BSNR:
        return is_valid_bsnr(value)
    if kind == LANR:
        return is_valid_lanr(value)
    raise ValueError(f"Unknown identifier kind: {kind}")


def normalize_identifier(kind: str, value: str) -> str | None:
    """
    Extract an identifier from the text of a facility/physician record.

    The record text is the identifier's digits, optionally preceded by one
    LDT designator digit (e.g. "793860200" carries BSNR "93860200").

    Args:
        kind: "bsnr" or "lanr"
        value: Record text following the record type

    Returns:
        The identifier, or None if the text is not a well-formed identifier

    Examples:
        >>> normalize_identifier("bsnr", "793860200")
        '93860200'
        >>> normalize_identifier("lanr", "1234567")
        '1234567'
    """
    value = value.strip()
    if not value.isascii() or not value.isdigit():
        return None
    if is_valid(kind, value):
        return value
    if len(value) > 1 and is_valid(kind, value[1:]):
        return value[1:]
    return None

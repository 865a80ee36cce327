"""
Record decoder for the LDT line-record wire format.

Each line is laid out positionally:

    LLL TTTT FFFF content...
    |   |    |
    |   |    field id ([A-Za-z0-9*]{4}; a single [A-Za-z0-9] on 8-10 char lines)
    |   record type (4 digits)
    declared length (3 digits, encoded line length + 2 for CR/LF)

Decoding is pure: no I/O, no logging, so it can be fuzzed directly.
"""

import re
from re import Pattern

from ldt_pipeline.core.errors import DecodeError, DecodeFailureReason
from ldt_pipeline.core.models.record import Record

MIN_LINE_LENGTH = 8
FULL_LINE_LENGTH = 11
LINE_TERMINATOR_LENGTH = 2  # CR/LF

LENGTH_PATTERN: Pattern = re.compile(r"^[0-9]{3}$")
RECORD_TYPE_PATTERN: Pattern = re.compile(r"^[0-9]{4}$")
FIELD_ID_PATTERN: Pattern = re.compile(r"^[A-Za-z0-9*]{4}$")
SHORT_FIELD_ID_PATTERN: Pattern = re.compile(r"^[A-Za-z0-9]$")

_LINE_SPLIT: Pattern = re.compile(r"\r\n|\r|\n")


def _check(pattern: Pattern, value: str, field_name: str, line: str, line_number: int) -> None:
    if not pattern.fullmatch(value):
        raise DecodeError(
            DecodeFailureReason.INVALID_FORMAT,
            f"{field_name} '{value}' does not match pattern '{pattern.pattern}'",
            line_number=line_number,
            line=line,
            field_name=field_name,
        )


def decode_line(line: str, line_number: int, encoding: str = "utf-8") -> Record:
    """
    Decode one line into a Record.

    Rules are applied in order and the first failure wins.

    Args:
        line: Line text without its terminator
        line_number: 1-based line position, carried into errors
        encoding: Encoding used to measure the line for the declared-length check

    Returns:
        Decoded Record

    Raises:
        DecodeError: TOO_SHORT or INVALID_FORMAT, pointing at this line
    """
    if len(line) < MIN_LINE_LENGTH:
        raise DecodeError(
            DecodeFailureReason.TOO_SHORT,
            f"Line has {len(line)} characters, at least {MIN_LINE_LENGTH} required",
            line_number=line_number,
            line=line,
        )

    length = line[0:3]
    record_type = line[3:7]
    if len(line) >= FULL_LINE_LENGTH:
        field_id = line[7:11]
        content = line[11:]
        field_pattern = FIELD_ID_PATTERN
    else:
        field_id = line[7:8]
        content = ""
        field_pattern = SHORT_FIELD_ID_PATTERN

    _check(LENGTH_PATTERN, length, "length", line, line_number)
    _check(RECORD_TYPE_PATTERN, record_type, "record_type", line, line_number)
    _check(field_pattern, field_id, "field_id", line, line_number)

    try:
        encoded_length = len(line.encode(encoding))
    except UnicodeEncodeError:
        encoded_length = len(line.encode("utf-8", errors="replace"))

    return Record(
        raw=line,
        line_number=line_number,
        length=length,
        record_type=record_type,
        field_id=field_id,
        content=content,
        declared_length_ok=int(length) == encoded_length + LINE_TERMINATOR_LENGTH,
    )


def split_lines(text: str) -> list[str]:
    """
    Split payload text into non-blank lines.

    Args:
        text: Decoded payload text (CR/LF, LF or CR terminated)

    Returns:
        Lines without terminators, blank lines removed
    """
    return [line for line in _LINE_SPLIT.split(text) if line.strip()]


def decode_payload(text: str, encoding: str = "utf-8") -> list[Record]:
    """
    Decode every non-blank line of a payload.

    A failure on any line fails the whole payload.

    Args:
        text: Decoded payload text
        encoding: Encoding used for the declared-length check

    Returns:
        Records in line order

    Raises:
        DecodeError: EMPTY_MESSAGE if there is no non-blank line, otherwise
            the first line failure
    """
    lines = split_lines(text)
    if not lines:
        raise DecodeError(DecodeFailureReason.EMPTY_MESSAGE, "Payload contains no records")

    return [decode_line(line, number, encoding) for number, line in enumerate(lines, start=1)]


def decode_text(payload: bytes, encoding: str = "utf-8") -> str:
    """
    Decode raw payload bytes to text.

    Raises:
        DecodeError: INVALID_ENCODING if the bytes are not valid in the encoding
    """
    try:
        return payload.decode(encoding)
    except UnicodeDecodeError as e:
        raise DecodeError(
            DecodeFailureReason.INVALID_ENCODING,
            f"Payload is not valid {encoding} (byte offset {e.start})",
        ) from e
    except LookupError as e:
        raise DecodeError(
            DecodeFailureReason.INVALID_ENCODING,
            f"Unknown payload encoding '{encoding}'",
        ) from e


def decode_bytes(payload: bytes, encoding: str = "utf-8") -> tuple[str, list[Record]]:
    """
    Decode raw payload bytes into text and records.

    Args:
        payload: Bytes as received
        encoding: Configured payload encoding

    Returns:
        Tuple of (decoded text, records)

    Raises:
        DecodeError: On any encoding or line failure
    """
    text = decode_text(payload, encoding)
    return text, decode_payload(text, encoding)

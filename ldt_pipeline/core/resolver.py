"""
Identifier resolver: decides the BSNR/LANR of a message.

Resolution tiers, in priority order:

1. positional: captured by the assembler from a facility/physician record
2. hint: a well-formed transport hint that occurs in the message text
3. pattern_scan: first run of 8 (BSNR) / 7 (LANR) digits in the raw text,
   skipping each line's all-digit length and record type prefix
4. none
"""

import re
from re import Pattern
from typing import NamedTuple

from ldt_pipeline.core.decoder import split_lines
from ldt_pipeline.core.identifiers import BSNR, LANR, is_valid
from ldt_pipeline.core.models.field_map import FieldMap
from ldt_pipeline.core.models.raw_message import IdentifierHints

SOURCE_POSITIONAL = "positional"
SOURCE_HINT = "hint"
SOURCE_PATTERN_SCAN = "pattern_scan"
SOURCE_NONE = "none"

SCAN_PATTERNS: dict[str, Pattern] = {
    BSNR: re.compile(r"[0-9]{8}"),
    LANR: re.compile(r"[0-9]{7}"),
}

# Length (3) and record type (4) are digits on every line and would always match
LINE_PREFIX_LENGTH = 7


def scan_text(raw_text: str) -> str:
    """Raw text with each line's length and record type prefix removed."""
    return "\n".join(line[LINE_PREFIX_LENGTH:] for line in split_lines(raw_text))


class ResolvedIdentifiers(NamedTuple):
    bsnr: str | None
    lanr: str | None
    bsnr_source: str
    lanr_source: str

    @property
    def complete(self) -> bool:
        return self.bsnr is not None and self.lanr is not None


class IdentifierResolver:
    """
    Resolves BSNR and LANR for an assembled message. Never raises.
    """

    def __init__(self, enable_pattern_scan: bool = True):
        """
        Args:
            enable_pattern_scan: Whether to fall back to scanning the raw text
        """
        self.enable_pattern_scan = enable_pattern_scan

    def resolve(
        self,
        field_map: FieldMap,
        raw_text: str,
        hints: IdentifierHints | None = None,
    ) -> ResolvedIdentifiers:
        """
        Resolve both identifiers.

        Args:
            field_map: Assembled message
            raw_text: Decoded payload text, used by the fallback tiers
            hints: Optional transport-supplied identifiers

        Returns:
            ResolvedIdentifiers with the value and winning tier of each
        """
        body = scan_text(raw_text)
        bsnr, bsnr_source = self._resolve_one(BSNR, field_map.bsnr, body, hints)
        lanr, lanr_source = self._resolve_one(LANR, field_map.lanr, body, hints)
        return ResolvedIdentifiers(bsnr, lanr, bsnr_source, lanr_source)

    def _resolve_one(
        self,
        kind: str,
        positional: str | None,
        body: str,
        hints: IdentifierHints | None,
    ) -> tuple[str | None, str]:
        if positional is not None and is_valid(kind, positional):
            return positional, SOURCE_POSITIONAL

        if not self.enable_pattern_scan:
            return None, SOURCE_NONE

        hint = getattr(hints, kind, None) if hints is not None else None
        if hint and is_valid(kind, hint) and hint in body:
            return hint, SOURCE_HINT

        match = SCAN_PATTERNS[kind].search(body)
        if match:
            return match.group(0), SOURCE_PATTERN_SCAN

        return None, SOURCE_NONE

"""
Record model representing one decoded LDT line.
"""

from pydantic import BaseModel, Field


class Record(BaseModel):
    """
    One line of an LDT message split into its positional parts.

    Attributes:
        raw: Original line text, kept for lossless replay
        line_number: 1-based position among the message's non-blank lines
        length: 3-digit declared line length
        record_type: 4-digit record type
        field_id: 4-char field identifier (1 char for 8-10 char lines)
        content: Remaining text, possibly empty
        declared_length_ok: Whether the declared length equals the encoded
            line length plus the CR/LF terminator
    """

    raw: str
    line_number: int = Field(..., ge=1)
    length: str = Field(..., pattern=r"^[0-9]{3}$")
    record_type: str = Field(..., pattern=r"^[0-9]{4}$")
    field_id: str
    content: str = ""
    declared_length_ok: bool = True

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "raw": "0180201793860200",
                "line_number": 2,
                "length": "018",
                "record_type": "0201",
                "field_id": "7938",
                "content": "60200",
                "declared_length_ok": True,
            }
        }

    @property
    def value(self) -> str:
        """Text following the record type (field_id + content)."""
        return self.field_id + self.content

    @property
    def declared_length(self) -> int:
        return int(self.length)

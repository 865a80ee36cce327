"""
Message assembler: folds decoded records into a FieldMap.
"""

from ldt_pipeline.core.identifiers import BSNR, LANR, normalize_identifier
from ldt_pipeline.core.mapping_config import (
    BSNR_TARGET,
    DEFAULT_RECORD_MAPPINGS,
    LANR_TARGET,
    PARAMETER_TARGET,
    SCALAR_TARGETS,
    VALID_TARGETS,
)
from ldt_pipeline.core.models.field_map import FieldMap
from ldt_pipeline.core.models.record import Record
from ldt_pipeline.observability.logger import get_logger

logger = get_logger(__name__)

_IDENTIFIER_TARGETS = {BSNR_TARGET: BSNR, LANR_TARGET: LANR}


class MessageAssembler:
    """
    Builds a FieldMap from records using a record-type dispatch table.

    Assembly never fails: unknown record types are kept in
    ``FieldMap.unrecognized`` and missing attributes stay None. For scalar
    attributes the last record wins.
    """

    def __init__(self, mappings: dict[str, str] | None = None):
        """
        Initialize the assembler.

        Args:
            mappings: Record type to target table (defaults to the built-in table)
        """
        self.mappings = dict(DEFAULT_RECORD_MAPPINGS if mappings is None else mappings)
        unknown = set(self.mappings.values()) - VALID_TARGETS
        if unknown:
            raise ValueError(f"Unknown mapping targets: {sorted(unknown)}")

    def assemble(self, records: list[Record]) -> FieldMap:
        """
        Fold records into a FieldMap.

        Args:
            records: Decoded records in message order

        Returns:
            Assembled FieldMap
        """
        field_map = FieldMap(record_count=len(records))

        for record in records:
            if not record.declared_length_ok:
                field_map.warnings.append(
                    f"line {record.line_number}: declared length {record.declared_length} "
                    f"does not match line length {len(record.raw)}"
                )

            target = self.mappings.get(record.record_type)
            if target is None:
                field_map.unrecognized.append(record)
            elif target == PARAMETER_TARGET:
                field_map.test.parameters.append((record.field_id, record.content))
            elif target in _IDENTIFIER_TARGETS:
                self._apply_identifier(field_map, _IDENTIFIER_TARGETS[target], record)
            elif target in SCALAR_TARGETS:
                section, attribute = target.split(".", 1)
                setattr(getattr(field_map, section), attribute, record.value)

        logger.debug(
            "Assembled message",
            extra={
                "record_count": field_map.record_count,
                "unrecognized_count": len(field_map.unrecognized),
                "parameter_count": len(field_map.test.parameters),
                "warning_count": len(field_map.warnings),
            }
        )
        return field_map

    def _apply_identifier(self, field_map: FieldMap, kind: str, record: Record) -> None:
        identifier = normalize_identifier(kind, record.value)
        if identifier is None:
            field_map.warnings.append(
                f"line {record.line_number}: record type {record.record_type} "
                f"value '{record.value}' is not a valid {kind.upper()}"
            )
            return
        setattr(field_map, kind, identifier)

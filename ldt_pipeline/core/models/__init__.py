"""
Core data models for the LDT ingestion pipeline.

All models use Pydantic for runtime validation and type safety.
"""

from .audit_event import AuditEvent
from .field_map import FieldMap, LabData, PatientData, RequestData
from .outcome import DuplicateIgnored, IngestionOutcome, PermanentlyFailed, Quarantined, Stored
from .owner import Owner
from .quarantine_entry import ErrorDetails, QuarantineEntry, QuarantineStatus
from .raw_message import IdentifierHints, RawMessage
from .record import Record
from .result import LabResult, Observation

__all__ = [
    "RawMessage",
    "IdentifierHints",
    "Record",
    "FieldMap",
    "PatientData",
    "LabData",
    "RequestData",
    "Owner",
    "Stored",
    "Quarantined",
    "DuplicateIgnored",
    "PermanentlyFailed",
    "IngestionOutcome",
    "QuarantineEntry",
    "QuarantineStatus",
    "ErrorDetails",
    "LabResult",
    "Observation",
    "AuditEvent",
]

"""
Unit tests for the ingestion service over the in-memory store.

Covers the delivery outcomes: stored (assigned or unassigned),
quarantined, duplicate, and the all-or-nothing behavior on store failures.
"""

from contextlib import contextmanager

import pytest

from ldt_pipeline.core.errors import MessageIdConflict, StoreFailure
from ldt_pipeline.core.models import DuplicateIgnored, IdentifierHints, Quarantined, Stored
from ldt_pipeline.ingest.factory import build_components
from ldt_pipeline.ingest.materializer import result_id_for
from ldt_pipeline.owners.directory import InMemoryOwnerDirectory
from ldt_pipeline.utils.validation import ValidationError
from ldt_pipeline.warehouse.memory_store import InMemoryStore

pytestmark = pytest.mark.unit


class FlakyStore(InMemoryStore):
    """In-memory store whose audit writes fail while fail_writes is set"""

    def __init__(self):
        super().__init__()
        self.fail_writes = True

    @contextmanager
    def transaction(self):
        with super().transaction() as tx:
            if self.fail_writes:
                tx.insert_audit_events = self._lost_connection
            yield tx

    @staticmethod
    def _lost_connection(events):
        raise StoreFailure("insert_audit_events", ConnectionError("server closed the connection"))


def event_types(store, message_id):
    return [e.event_type for e in store.list_audit_events(message_id)]


class TestStoredOutcome:
    """Tests for messages that decode"""

    def test_example_message_is_stored_with_owner(self, components, example_message):
        """Test the example message resolves identifiers and its owner"""
        outcome = components.service.ingest(example_message, message_id="msg-0001")

        assert isinstance(outcome, Stored)
        assert outcome.owner_id == "dr-mueller"
        assert outcome.to_response() == {
            "status": "stored",
            "message_id": "msg-0001",
            "bsnr": "93860200",
            "lanr": "72720053",
            "owner_id": "dr-mueller",
        }

        result, _ = components.store.get_result(outcome.result_id)
        assert result.owner_id == "dr-mueller"
        assert result.tenant_id == "praxis-nord"
        assert components.store.get_raw_message("msg-0001").status == "stored"

    def test_unregistered_pair_is_stored_unassigned(self, settings, memory_store, example_message):
        """Test a message without a registered owner is still stored"""
        components = build_components(settings, store=memory_store, directory=InMemoryOwnerDirectory())

        outcome = components.service.ingest(example_message, message_id="msg-0001")

        assert isinstance(outcome, Stored)
        assert not outcome.assigned
        assert "owner_id" not in outcome.to_response()
        assert outcome.to_response()["bsnr"] == "93860200"
        result, _ = memory_store.get_result(outcome.result_id)
        assert result.owner_id is None
        assert "owner_unmatched" in event_types(memory_store, "msg-0001")

    def test_message_without_identifiers_is_stored_unassigned(self, components):
        """Test a message with no BSNR or LANR anywhere is stored without identifiers"""
        outcome = components.service.ingest(b"01380008230\n0193101Mustermann", message_id="msg-0002")

        assert isinstance(outcome, Stored)
        assert outcome.to_response() == {"status": "stored", "message_id": "msg-0002"}

    def test_hints_complete_missing_identifiers(self, components):
        """Test transport hints fill identifiers the message only carries in free text"""
        payload = b"01380008230\n0318300AUF1 93860200 72720053"
        outcome = components.service.ingest(
            payload,
            message_id="msg-0003",
            hints=IdentifierHints(bsnr="93860200", lanr="72720053"),
        )

        assert outcome.owner_id == "dr-mueller"
        resolved = [e for e in components.store.list_audit_events("msg-0003")
                    if e.event_type == "identifiers_resolved"][0]
        assert resolved.details["bsnr_source"] == "hint"
        assert resolved.details["lanr_source"] == "hint"

    @pytest.mark.parametrize("terminator", [b"\r", b"\r\n", b"\n"])
    def test_line_terminators(self, components, terminator):
        """Test CR-only, CR/LF and LF payloads resolve the same identifiers and owner"""
        payload = terminator.join([b"01380008230", b"0180201793860200", b"0180212772720053"])

        outcome = components.service.ingest(payload, message_id="msg-0001")

        assert isinstance(outcome, Stored)
        assert outcome.to_response()["bsnr"] == "93860200"
        assert outcome.to_response()["lanr"] == "72720053"
        assert outcome.owner_id == "dr-mueller"

    def test_result_id_is_derived_from_message_id(self, components, example_message):
        """Test the result id is deterministic per message"""
        outcome = components.service.ingest(example_message, message_id="msg-0001")
        assert outcome.result_id == result_id_for("msg-0001")

    def test_audit_trail(self, components, sample_message):
        """Test the trail of a stored message, in order"""
        components.service.ingest(sample_message, message_id="msg-sample")

        assert event_types(components.store, "msg-sample") == [
            "received",
            "decoded",
            "identifiers_resolved",
            "owner_matched",
            "stored",
        ]

    def test_invalid_message_id(self, components, example_message):
        """Test malformed transport ids are rejected before any write"""
        with pytest.raises(ValidationError):
            components.service.ingest(example_message, message_id="bad id!")
        assert components.store.quarantine_counts()["quarantined"] == 0


class TestQuarantinedOutcome:
    """Tests for messages that fail to decode"""

    def test_short_line_is_quarantined_at_that_line(self, components):
        """Test a 5-char line quarantines the message with the exact line"""
        payload = b"01380008230\n0180201793860200\n0180212772720053\n01380"

        outcome = components.service.ingest(payload, message_id="msg-bad")

        assert isinstance(outcome, Quarantined)
        assert outcome.reason == "TOO_SHORT"
        assert outcome.to_response() == {"status": "quarantined", "message_id": "msg-bad"}

        entry = components.store.get_quarantine_entry(outcome.entry_id)
        assert entry.message_id == "msg-bad"
        assert entry.retry_count == 0
        assert entry.status == "quarantined"
        assert entry.next_retry_at is not None
        assert entry.error_details.line_number == 4
        assert entry.error_details.line_excerpt == "01380"
        assert components.store.get_raw_message("msg-bad").status == "quarantined"
        assert components.store.get_result_for_message("msg-bad") is None

    def test_invalid_format_names_the_field(self, components):
        """Test the entry records which positional field failed"""
        outcome = components.service.ingest(b"0180X01793860200", message_id="msg-bad")

        entry = components.store.get_quarantine_entry(outcome.entry_id)
        assert entry.error_details.reason == "INVALID_FORMAT"
        assert entry.error_details.field_name == "record_type"

    def test_first_retry_is_scheduled_after_base_delay(self, components, settings):
        """Test next_retry_at is the base delay after quarantine"""
        outcome = components.service.ingest(b"", message_id="msg-empty")

        entry = components.store.get_quarantine_entry(outcome.entry_id)
        delay = entry.next_retry_at - entry.created_at
        assert delay.total_seconds() == settings.retry_base_delay_seconds

    def test_quarantine_audit_trail(self, components):
        """Test a quarantined message records received then quarantined"""
        components.service.ingest(b"01380", message_id="msg-bad")
        assert event_types(components.store, "msg-bad") == ["received", "quarantined"]


class TestDuplicateOutcome:
    """Tests for redelivered messages"""

    def test_same_payload_is_a_duplicate(self, components, example_message):
        """Test a redelivery is ignored and points at the original"""
        first = components.service.ingest(example_message, message_id="msg-0001")
        second = components.service.ingest(example_message, message_id="msg-0002")

        assert isinstance(second, DuplicateIgnored)
        assert second.message_id == "msg-0001"
        assert second.original_result_id == first.result_id
        assert second.to_response() == {"status": "duplicate", "message_id": "msg-0001"}
        assert len(components.store.list_results()) == 1
        assert components.store.get_raw_message("msg-0002") is None

    def test_transport_key_controls_duplicates(self, components, example_message):
        """Test an explicit idempotency key overrides the payload digest"""
        first = components.service.ingest(example_message, idempotency_key="mirth-1")
        second = components.service.ingest(example_message, idempotency_key="mirth-2")
        third = components.service.ingest(b"01380008230", idempotency_key="mirth-1")

        assert isinstance(first, Stored)
        assert isinstance(second, Stored)
        assert isinstance(third, DuplicateIgnored)

    def test_duplicate_of_quarantined_message(self, components):
        """Test redelivering a quarantined payload does not create a second entry"""
        components.service.ingest(b"01380", message_id="msg-bad")
        outcome = components.service.ingest(b"01380", message_id="msg-bad-again")

        assert isinstance(outcome, DuplicateIgnored)
        assert components.store.quarantine_counts()["quarantined"] == 1
        assert "duplicate_ignored" in event_types(components.store, "msg-bad")

    def test_reused_message_id_with_new_payload(self, components, example_message):
        """Test a message id reused under another idempotency key is rejected and rolled back"""
        components.service.ingest(example_message, message_id="msg-0001")

        with pytest.raises(MessageIdConflict) as exc_info:
            components.service.ingest(b"01380", message_id="msg-0001")

        assert exc_info.value.message_id == "msg-0001"
        assert components.store.get_raw_message("msg-0001").payload == example_message
        assert components.store.quarantine_counts()["quarantined"] == 0
        assert len(components.store.list_results()) == 1


class TestStoreFailure:
    """Tests for the all-or-nothing guarantee"""

    def test_failed_write_commits_nothing(self, settings, owner_directory, example_message):
        """Test a store failure rolls back claim, result and audit trail"""
        store = FlakyStore()
        components = build_components(settings, store=store, directory=owner_directory)

        with pytest.raises(StoreFailure):
            components.service.ingest(example_message, message_id="msg-0001")

        assert store.get_raw_message("msg-0001") is None
        assert store.list_results() == []
        assert store.list_audit_events("msg-0001") == []

    def test_redelivery_after_failure_succeeds(self, settings, owner_directory, example_message):
        """Test the rolled-back claim does not turn the redelivery into a duplicate"""
        store = FlakyStore()
        components = build_components(settings, store=store, directory=owner_directory)

        with pytest.raises(StoreFailure):
            components.service.ingest(example_message, message_id="msg-0001")
        store.fail_writes = False
        outcome = components.service.ingest(example_message, message_id="msg-0001")

        assert isinstance(outcome, Stored)
        assert outcome.owner_id == "dr-mueller"

    def test_failed_quarantine_commits_nothing(self, settings, owner_directory):
        """Test a failure while quarantining leaves no entry behind"""
        store = FlakyStore()
        components = build_components(settings, store=store, directory=owner_directory)

        with pytest.raises(StoreFailure):
            components.service.ingest(b"01380", message_id="msg-bad")

        assert store.quarantine_counts()["quarantined"] == 0
        assert store.get_raw_message("msg-bad") is None

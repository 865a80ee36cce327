"""
Integration tests for the PostgreSQL store and owner directory.

These run against a disposable PostgreSQL container (testcontainers).
"""

from datetime import datetime, timedelta, timezone

import pytest

from ldt_pipeline.core.errors import MessageIdConflict, StoreFailure
from ldt_pipeline.core.models import (
    AuditEvent,
    ErrorDetails,
    IdentifierHints,
    LabResult,
    Observation,
    Owner,
    QuarantineEntry,
    QuarantineStatus,
)
from ldt_pipeline.ingest.idempotency import new_raw_message
from ldt_pipeline.warehouse.owner_directory import PostgresOwnerDirectory
from ldt_pipeline.warehouse.postgres_store import PostgresStore
from ldt_pipeline.warehouse.schema_mgmt import SchemaManager

pytestmark = pytest.mark.integration

FAR_FUTURE = datetime.now(timezone.utc) + timedelta(days=1)


@pytest.fixture
def store(clean_db):
    return PostgresStore(clean_db)


@pytest.fixture
def directory(clean_db):
    return PostgresOwnerDirectory(clean_db)


def quarantine_entry(entry_id, message_id, next_retry_at=None):
    return QuarantineEntry(
        entry_id=entry_id,
        message_id=message_id,
        error_details=ErrorDetails(reason="TOO_SHORT", message="Line 2 is too short", line_number=2),
        next_retry_at=next_retry_at or datetime.now(timezone.utc),
    )


def claim(store, payload, message_id, **kwargs):
    message = new_raw_message(payload, message_id, **kwargs)
    with store.transaction() as tx:
        return tx.claim_message(message)


class TestSchema:
    """Tests for SchemaManager"""

    def test_all_tables_exist(self, clean_db):
        assert SchemaManager(clean_db).missing_tables() == []

    def test_create_tables_is_idempotent(self, clean_db):
        SchemaManager(clean_db).create_tables()
        assert SchemaManager(clean_db).missing_tables() == []


class TestRawMessages:
    """Tests for the idempotency claim"""

    def test_claim_and_read_back(self, store, example_message):
        """Test a claimed message is stored with its hints"""
        result = claim(
            store, example_message, "msg-0001", hints=IdentifierHints(bsnr="93860200", lanr=None)
        )

        assert result.created
        message = store.get_raw_message("msg-0001")
        assert message.payload == example_message
        assert message.identifier_hints.bsnr == "93860200"
        assert message.identifier_hints.lanr is None
        assert message.status == "received"

    def test_duplicate_claim_returns_existing(self, store, example_message):
        """Test a second claim on the same key reports the original"""
        claim(store, example_message, "msg-0001")

        result = claim(store, example_message, "msg-0002")

        assert not result.created
        assert result.existing.message_id == "msg-0001"
        assert store.get_raw_message("msg-0002") is None

    def test_reused_message_id_is_a_conflict(self, store, example_message):
        """Test a known message id under a new key raises MessageIdConflict, not StoreFailure"""
        claim(store, example_message, "msg-0001")

        with pytest.raises(MessageIdConflict) as exc_info:
            claim(store, b"01380008230", "msg-0001")

        assert exc_info.value.message_id == "msg-0001"
        assert store.get_raw_message("msg-0001").payload == example_message
        # The connection is usable again after the rolled back claim
        assert claim(store, b"01380008230", "msg-0002").created

    def test_rolled_back_claim_is_released(self, store, example_message):
        """Test a claim undone by a failed transaction lets a redelivery in"""
        with pytest.raises(RuntimeError):
            with store.transaction() as tx:
                tx.claim_message(new_raw_message(example_message, "msg-0001"))
                raise RuntimeError("processing failed")

        assert store.get_raw_message("msg-0001") is None
        assert claim(store, example_message, "msg-0001").created

    def test_mark_message(self, store, example_message):
        claim(store, example_message, "msg-0001")

        with store.transaction() as tx:
            tx.mark_message("msg-0001", "quarantined")

        assert store.get_raw_message("msg-0001").status == "quarantined"


class TestResults:
    """Tests for lab results and observations"""

    def test_insert_and_get_result(self, store, example_message):
        """Test a result is read back with its observations in order"""
        claim(store, example_message, "msg-0001")
        result = LabResult(
            result_id="res-1",
            source_message_id="msg-0001",
            bsnr="93860200",
            lanr="72720053",
            owner_id="dr-mueller",
            patient_last_name="Schmidt",
        )
        observations = [
            Observation(result_id="res-1", position=0, field_id="8410", content="LEUK", code="LEUK6.4 G/l"),
            Observation(result_id="res-1", position=1, field_id="8410", content="HGB", code="HGB14.1 g/dl"),
        ]

        with store.transaction() as tx:
            tx.insert_result(result, observations)
            tx.mark_message("msg-0001", "stored", result_id="res-1")

        stored, stored_observations = store.get_result("res-1")
        assert stored.owner_id == "dr-mueller"
        assert stored.patient_last_name == "Schmidt"
        assert [o.content for o in stored_observations] == ["LEUK", "HGB"]
        assert store.get_result_for_message("msg-0001").result_id == "res-1"
        assert store.get_raw_message("msg-0001").result_id == "res-1"

    def test_unknown_result(self, store):
        assert store.get_result("res-missing") is None
        assert store.get_result_for_message("msg-missing") is None


class TestQuarantineEntries:
    """Tests for quarantine persistence and due-entry claiming"""

    def test_insert_update_and_list(self, store):
        """Test entries round-trip their error details and status"""
        claim(store, b"01380", "msg-bad")
        with store.transaction() as tx:
            tx.insert_quarantine_entry(quarantine_entry("q-1", "msg-bad"))

        entry = store.get_quarantine_entry("q-1")
        assert entry.error_details.reason == "TOO_SHORT"
        assert entry.error_details.line_number == 2
        assert store.get_quarantine_entry_for_message("msg-bad").entry_id == "q-1"

        entry.retry_count = 3
        entry.status = QuarantineStatus.PERMANENTLY_FAILED
        with store.transaction() as tx:
            tx.update_quarantine_entry(entry)

        assert store.get_quarantine_entry("q-1").retry_count == 3
        assert store.list_quarantine_entries(QuarantineStatus.QUARANTINED) == []
        assert [e.entry_id for e in store.list_quarantine_entries(QuarantineStatus.PERMANENTLY_FAILED)] == ["q-1"]
        assert store.quarantine_counts() == {"quarantined": 0, "permanently_failed": 1, "resolved": 0}

    def test_update_unknown_entry(self, store):
        """Test updating a missing entry raises KeyError"""
        with pytest.raises(KeyError):
            with store.transaction() as tx:
                tx.update_quarantine_entry(quarantine_entry("q-missing", "msg-missing"))

    def test_claim_due_entry_skips_locked_rows(self, store):
        """Test concurrent sweeps never claim the same entry"""
        for i in range(2):
            claim(store, f"0138{i}".encode(), f"msg-bad-{i}")
        with store.transaction() as tx:
            tx.insert_quarantine_entry(quarantine_entry("q-0", "msg-bad-0"))
            tx.insert_quarantine_entry(quarantine_entry("q-1", "msg-bad-1", datetime.now(timezone.utc) + timedelta(seconds=1)))

        with store.transaction() as first:
            claimed_first = first.claim_due_entry(FAR_FUTURE)
            with store.transaction() as second:
                claimed_second = second.claim_due_entry(FAR_FUTURE)
                with store.transaction() as third:
                    assert third.claim_due_entry(FAR_FUTURE) is None

        assert claimed_first.entry_id == "q-0"
        assert claimed_second.entry_id == "q-1"

    def test_entries_not_due_are_not_claimed(self, store):
        claim(store, b"01380", "msg-bad")
        with store.transaction() as tx:
            tx.insert_quarantine_entry(quarantine_entry("q-1", "msg-bad", FAR_FUTURE))

        with store.transaction() as tx:
            assert tx.claim_due_entry(datetime.now(timezone.utc)) is None

    def test_database_error_becomes_store_failure(self, store):
        """Test a constraint violation rolls back and surfaces as StoreFailure"""
        with pytest.raises(StoreFailure):
            with store.transaction() as tx:
                tx.claim_message(new_raw_message(b"01380", "msg-bad"))
                tx.insert_quarantine_entry(quarantine_entry("q-1", "msg-unknown"))

        assert store.get_raw_message("msg-bad") is None


class TestAuditEvents:
    """Tests for the audit trail tables"""

    def test_events_in_insertion_order(self, store):
        with store.transaction() as tx:
            tx.insert_audit_events([
                AuditEvent(message_id="msg-0001", event_type="received", details={"size_bytes": 42}),
                AuditEvent(message_id="msg-0001", event_type="stored", details={"result_id": "res-1"}),
                AuditEvent(message_id="msg-0002", event_type="received"),
            ])

        events = store.list_audit_events("msg-0001")

        assert [e.event_type for e in events] == ["received", "stored"]
        assert events[0].details == {"size_bytes": 42}
        assert events[0].event_id < events[1].event_id

        summary = store.audit_summary()
        assert summary["total_events"] == 3
        assert summary["messages_traced"] == 2
        assert summary["events_by_type"] == {"received": 2, "stored": 1}


class TestPostgresOwnerDirectory:
    """Tests for the owners table"""

    def test_register_and_lookup(self, directory, example_owner):
        directory.register_owner(example_owner)

        assert directory.lookup_owner("93860200", "72720053") == example_owner
        assert directory.get_owner("dr-mueller") == example_owner
        assert directory.lookup_owner("93860200", "1234567") is None
        assert directory.list_owners() == [example_owner]

    def test_reregistering_moves_identifiers(self, directory, example_owner):
        """Test an upsert replaces the user's identifiers"""
        directory.register_owner(example_owner)
        directory.register_owner(Owner(user_id="dr-mueller", tenant_id="praxis-nord", bsnr="93860200", lanr="1234567"))

        assert directory.lookup_owner("93860200", "72720053") is None
        assert directory.lookup_owner("93860200", "1234567").user_id == "dr-mueller"

    def test_pair_taken_by_another_user(self, directory, example_owner):
        """Test a (bsnr, lanr) pair can belong to one user only"""
        directory.register_owner(example_owner)

        with pytest.raises(StoreFailure):
            directory.register_owner(Owner(user_id="dr-other", bsnr="93860200", lanr="72720053"))

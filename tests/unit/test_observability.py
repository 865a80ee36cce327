"""
Unit tests for logging, metrics and lineage tracking.
"""

import json
import logging

import pytest

from ldt_pipeline.core.models import Owner
from ldt_pipeline.core.resolver import ResolvedIdentifiers
from ldt_pipeline.ingest.idempotency import new_raw_message
from ldt_pipeline.observability import metrics
from ldt_pipeline.observability.lineage import LineageTracker
from ldt_pipeline.observability.logger import CustomJsonFormatter, log_operation

pytestmark = pytest.mark.unit


def sample_value(name, **labels):
    return metrics.REGISTRY.get_sample_value(name, labels) or 0.0


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestJsonLogging:
    """Tests for the structured log format"""

    def test_json_fields(self):
        """Test the formatter emits level, logger and extra fields"""
        formatter = CustomJsonFormatter(fmt="%(timestamp)s %(level)s %(logger)s %(message)s")
        record = logging.LogRecord(
            name="ldt_pipeline.ingest.service",
            level=logging.WARNING,
            pathname=__file__,
            lineno=1,
            msg="Message quarantined",
            args=(),
            exc_info=None,
        )
        record.message_id = "msg-bad"

        log = json.loads(formatter.format(record))

        assert log["level"] == "WARNING"
        assert log["logger"] == "ldt_pipeline.ingest.service"
        assert log["message"] == "Message quarantined"
        assert log["message_id"] == "msg-bad"
        assert log["timestamp"]

    def test_log_operation_success_and_failure(self):
        """Test log_operation logs start, completion and failure"""
        logger = logging.getLogger("ldt-test-operation")
        logger.propagate = False
        handler = ListHandler()
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

        with log_operation("Retry sweep", logger=logger, batch_size=5):
            pass
        with pytest.raises(RuntimeError):
            with log_operation("Retry sweep", logger=logger):
                raise RuntimeError("boom")

        messages = [r.getMessage() for r in handler.records]
        assert messages == [
            "Starting: Retry sweep",
            "Completed: Retry sweep",
            "Starting: Retry sweep",
            "Failed: Retry sweep",
        ]
        assert handler.records[1].batch_size == 5
        assert handler.records[3].error_type == "RuntimeError"


class TestMetrics:
    """Tests for pipeline metrics"""

    def test_outcome_counter(self, components, example_message):
        """Test each ingestion counts its outcome"""
        before = sample_value("ldt_messages_ingested_total", status="stored")
        components.service.ingest(example_message)
        components.service.ingest(example_message)

        assert sample_value("ldt_messages_ingested_total", status="stored") == before + 1
        assert sample_value("ldt_messages_ingested_total", status="duplicate") >= 1

    def test_decode_failure_counter(self, components):
        """Test decode failures are counted by reason and field"""
        before = sample_value("ldt_decode_failures_total", reason="INVALID_FORMAT", field_name="record_type")
        components.service.ingest(b"0180X01793860200")

        after = sample_value("ldt_decode_failures_total", reason="INVALID_FORMAT", field_name="record_type")
        assert after == before + 1

    def test_identifier_resolution_counter(self, components, example_message):
        """Test the resolution tier is counted per identifier"""
        before = sample_value("ldt_identifier_resolution_total", identifier="bsnr", tier="positional")
        components.service.ingest(example_message)

        after = sample_value("ldt_identifier_resolution_total", identifier="bsnr", tier="positional")
        assert after == before + 1

    def test_quarantine_size_gauge(self, components):
        """Test statistics publish the quarantine gauge"""
        components.service.ingest(b"01380")
        components.quarantine.statistics()

        assert sample_value("ldt_quarantine_size", status="quarantined") == 1
        assert sample_value("ldt_quarantine_size", status="resolved") == 0

    def test_exposition(self):
        """Test the registry renders in Prometheus text format"""
        assert b"ldt_retries_total" in metrics.generate_metrics()
        assert metrics.get_content_type().startswith("text/plain")


class TestLineageTracker:
    """Tests for LineageTracker"""

    def test_events_are_buffered_until_flush(self, memory_store, example_message, example_owner):
        """Test events reach the store only through flush"""
        message = new_raw_message(example_message, "msg-0001")
        identifiers = ResolvedIdentifiers("93860200", "72720053", "positional", "positional")
        tracker = LineageTracker("msg-0001")

        tracker.track_received(message)
        tracker.track_identifiers(identifiers)
        tracker.track_owner(example_owner, identifiers)
        assert memory_store.list_audit_events("msg-0001") == []

        with memory_store.transaction() as tx:
            assert tracker.flush(tx) == 3

        events = memory_store.list_audit_events("msg-0001")
        assert [e.event_type for e in events] == ["received", "identifiers_resolved", "owner_matched"]
        assert events[0].details["size_bytes"] == len(example_message)
        assert events[1].details["bsnr_source"] == "positional"
        assert events[2].details["owner_id"] == "dr-mueller"
        assert all(e.event_id is not None for e in events)
        assert tracker.pending == []

    def test_unmatched_owner_event(self):
        """Test an unmatched lookup records incomplete identifiers"""
        tracker = LineageTracker("msg-0001")
        identifiers = ResolvedIdentifiers("93860200", None, "positional", "none")

        event = tracker.track_owner(None, identifiers)

        assert event.event_type == "owner_unmatched"
        assert event.details["incomplete_identifiers"] is True

    def test_forced_owner_event(self):
        tracker = LineageTracker("msg-0001")
        event = tracker.track_owner_forced(Owner(user_id="dr-mueller", tenant_id="praxis-nord"), "q-1")

        assert event.details == {"owner_id": "dr-mueller", "tenant_id": "praxis-nord", "entry_id": "q-1"}

    def test_rolled_back_events_are_not_stored(self, memory_store):
        """Test events flushed in a failed transaction disappear with it"""
        tracker = LineageTracker("msg-0001")
        tracker.track("received")

        with pytest.raises(RuntimeError):
            with memory_store.transaction() as tx:
                tracker.flush(tx)
                raise RuntimeError("rollback")

        assert memory_store.list_audit_events("msg-0001") == []

    def test_audit_summary(self, components, example_message):
        """Test the audit summary counts events per type"""
        components.service.ingest(example_message, message_id="msg-0001")
        components.service.ingest(b"01380", message_id="msg-bad")

        summary = components.store.audit_summary()

        assert summary["messages_traced"] == 2
        assert summary["events_by_type"]["received"] == 2
        assert summary["events_by_type"]["quarantined"] == 1
        assert summary["total_events"] == sum(summary["events_by_type"].values())

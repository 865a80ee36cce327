"""
Unit tests for the ldt-ingest and ldt-admin command-line tools.

Commands run against the in-memory pipeline; nothing touches PostgreSQL.
"""

import argparse
import json
from pathlib import Path

import pytest

from ldt_pipeline.cli import admin_cli, ingest_cli

pytestmark = pytest.mark.unit

CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"


@pytest.fixture(autouse=True)
def quiet_environment(monkeypatch):
    """Keep the developer's environment out of settings and silence info logs"""
    monkeypatch.delenv("LDT_CONFIG_FILE", raising=False)
    monkeypatch.setenv("LOG_LEVEL", "ERROR")
    monkeypatch.setattr(ingest_cli, "load_dotenv", lambda: None)
    monkeypatch.setattr(admin_cli, "load_dotenv", lambda: None)


def result_lines(output):
    lines = []
    for line in output.splitlines():
        if line.startswith("{"):
            parsed = json.loads(line)
            if "file" in parsed:
                lines.append(parsed)
    return lines


def run_admin(components, *argv):
    args = admin_cli.build_parser().parse_args(list(argv))
    admin_cli.COMMANDS[args.command](args, components)


class TestIngestCli:
    """Tests for ldt-ingest"""

    def test_dry_run(self, tmp_path, capsys, sample_message):
        """Test files are ingested in memory and reported as JSON lines"""
        good = tmp_path / "good.ldt"
        good.write_bytes(sample_message)
        bad = tmp_path / "bad.ldt"
        bad.write_bytes(b"01380008230\r\n01380\r\n")

        with pytest.raises(SystemExit) as exc_info:
            ingest_cli.main([
                str(good), str(bad), "--dry-run", "--owners", str(CONFIG_DIR / "owners.example.yaml"),
            ])

        assert exc_info.value.code == 0
        results = {Path(r["file"]).name: r for r in result_lines(capsys.readouterr().out)}
        assert results["good.ldt"]["status"] == "stored"
        assert results["good.ldt"]["owner_id"] == "dr-mueller"
        assert results["bad.ldt"]["status"] == "quarantined"

    def test_single_file_options(self, tmp_path, capsys, example_message):
        """Test message id and hints apply to a single file"""
        path = tmp_path / "result.ldt"
        path.write_bytes(example_message)

        with pytest.raises(SystemExit) as exc_info:
            ingest_cli.main([str(path), "--dry-run", "--message-id", "msg-cli-1", "--bsnr", "93860200"])

        assert exc_info.value.code == 0
        [result] = result_lines(capsys.readouterr().out)
        assert result["message_id"] == "msg-cli-1"
        assert "owner_id" not in result

    def test_missing_file(self, tmp_path):
        """Test a missing input file exits with an error"""
        with pytest.raises(SystemExit) as exc_info:
            ingest_cli.main([str(tmp_path / "missing.ldt"), "--dry-run"])
        assert exc_info.value.code == 1

    def test_message_id_with_several_files(self, tmp_path):
        """Test --message-id is refused for more than one file"""
        with pytest.raises(SystemExit) as exc_info:
            ingest_cli.main(["a.ldt", "b.ldt", "--message-id", "msg-1"])
        assert exc_info.value.code == 2

    def test_malformed_hint(self, tmp_path, example_message):
        """Test a malformed hint exits with a usage error"""
        path = tmp_path / "result.ldt"
        path.write_bytes(example_message)

        with pytest.raises(SystemExit) as exc_info:
            ingest_cli.main([str(path), "--dry-run", "--lanr", "12"])
        assert exc_info.value.code == 2

    def test_invalid_config(self, tmp_path, capsys):
        """Test an invalid settings file is reported as a configuration error"""
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("max_retries: -1\n")

        with pytest.raises(SystemExit) as exc_info:
            ingest_cli.main(["x.ldt", "--dry-run", "--config", str(config_file)])

        assert exc_info.value.code == 1
        assert "Configuration error" in capsys.readouterr().out

    def test_reused_message_id_fails_the_file(self, components, tmp_path, capsys, example_message):
        """Test a message id already stored for another payload is reported, not printed"""
        components.service.ingest(example_message, message_id="msg-cli-1")
        path = tmp_path / "other.ldt"
        path.write_bytes(b"01380008230\n0193101Mustermann")
        args = argparse.Namespace(
            files=[str(path)], message_id="msg-cli-1", idempotency_key=None, bsnr=None, lanr=None, workers=1,
        )

        assert ingest_cli.ingest_command(args, components) == 1
        assert result_lines(capsys.readouterr().out) == []
        assert components.store.get_raw_message("msg-cli-1").payload == example_message


class TestAdminCli:
    """Tests for ldt-admin commands"""

    def test_quarantine_review(self, components, capsys):
        """Test quarantine review lists entries with their errors"""
        components.service.ingest(b"01380008230\n01380", message_id="msg-bad")

        run_admin(components, "quarantine-review", "--status", "quarantined", "--show-errors")

        out = capsys.readouterr().out
        assert "QUARANTINE REVIEW - Status: quarantined" in out
        assert "TOO_SHORT" in out
        assert "Line 2: '01380'" in out

    def test_quarantine_review_empty(self, components, capsys):
        run_admin(components, "quarantine-review")
        assert "No quarantine entries found" in capsys.readouterr().out

    def test_quarantine_stats(self, components, capsys):
        """Test statistics are printed per status"""
        components.service.ingest(b"01380", message_id="msg-bad")

        run_admin(components, "quarantine-stats")

        out = capsys.readouterr().out
        assert "Total entries: 1" in out
        assert "quarantined" in out

    def test_assign_owner(self, components, capsys):
        """Test assign-owner reports the outcome of the forced retry"""
        entry_id = components.service.ingest(b"01380", message_id="msg-bad").entry_id

        run_admin(components, "assign-owner", "--entry-id", entry_id, "--owner-id", "dr-mueller")

        assert "Outcome: quarantined" in capsys.readouterr().out

    def test_retry_due(self, components, capsys):
        """Test a sweep with nothing due"""
        run_admin(components, "retry-due", "--batch-size", "10")

        assert "Attempted:          0" in capsys.readouterr().out
        assert components.retry_worker.batch_size == 10

    def test_trace_message(self, components, capsys, example_message):
        """Test the audit trail of a stored message is shown"""
        components.service.ingest(example_message, message_id="msg-0001")

        run_admin(components, "trace-message", "--message-id", "msg-0001")

        out = capsys.readouterr().out
        assert "AUDIT TRAIL FOR MESSAGE: msg-0001" in out
        assert "owner_matched" in out
        assert "Status: stored" in out

    def test_trace_unknown_message(self, components, capsys):
        run_admin(components, "trace-message", "--message-id", "msg-unknown")
        assert "No audit trail found" in capsys.readouterr().out

    def test_list_owners(self, components, capsys):
        run_admin(components, "list-owners")
        assert "dr-mueller" in capsys.readouterr().out

    def test_register_owner_needs_database_directory(self, components):
        """Test register-owner refuses file or in-memory directories"""
        with pytest.raises(SystemExit) as exc_info:
            run_admin(
                components, "register-owner", "--user-id", "dr-x", "--bsnr", "93860200", "--lanr", "1234567"
            )
        assert exc_info.value.code == 1

    def test_audit_summary(self, components, capsys, example_message):
        components.service.ingest(example_message, message_id="msg-0001")

        run_admin(components, "audit-summary")

        out = capsys.readouterr().out
        assert "Messages traced: 1" in out
        assert "received" in out

    def test_missing_command(self, capsys):
        """Test running without a command prints help"""
        with pytest.raises(SystemExit) as exc_info:
            admin_cli.main([])
        assert exc_info.value.code == 1

    def test_missing_config_file(self, tmp_path, capsys):
        """Test a missing settings file is reported before connecting"""
        with pytest.raises(SystemExit) as exc_info:
            admin_cli.main(["--config", str(tmp_path / "missing.yaml"), "quarantine-stats"])

        assert exc_info.value.code == 1
        assert "Configuration error" in capsys.readouterr().out

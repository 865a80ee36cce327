"""
Admin CLI for the LDT ingestion pipeline.

Usage:
    ldt-admin init-db
    ldt-admin quarantine-review [--status quarantined] [--limit 50] [--show-errors]
    ldt-admin quarantine-stats
    ldt-admin assign-owner --entry-id <entry_id> --owner-id <user_id>
    ldt-admin retry-due [--batch-size 50]
    ldt-admin run-retry-worker [--metrics-port 9100]
    ldt-admin trace-message --message-id <message_id>
    ldt-admin import-dir --directory <path> [--pattern "*.ldt"]
    ldt-admin register-owner --user-id <id> --bsnr <bsnr> --lanr <lanr> [--tenant-id <id>]
    ldt-admin list-owners
    ldt-admin audit-summary
    ldt-admin serve-api [--host 0.0.0.0] [--port 8000]
"""

import argparse
import json
import signal
import sys
from datetime import datetime

from dotenv import load_dotenv

from ldt_pipeline.config.settings import PipelineSettings, load_settings
from ldt_pipeline.core.errors import ConfigurationError
from ldt_pipeline.core.models import Owner
from ldt_pipeline.ingest.factory import PipelineComponents, build_components
from ldt_pipeline.observability import metrics
from ldt_pipeline.observability.logger import configure_logging, get_logger

logger = get_logger(__name__)


def format_timestamp(ts: datetime | str | None) -> str:
    """Format timestamp for display."""
    if isinstance(ts, str):
        return ts
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else "N/A"


def load_cli_settings(args) -> PipelineSettings:
    """
    Load settings and apply the --db-* overrides given on the command line.

    Args:
        args: Command line arguments

    Returns:
        PipelineSettings
    """
    settings = load_settings(args.config)
    overrides = {
        "host": args.db_host,
        "port": args.db_port,
        "database": args.db_name,
        "user": args.db_user,
        "password": args.db_password,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if overrides:
        database = settings.database.model_copy(update=overrides)
        settings = settings.model_copy(update={"database": database})

    configure_logging(settings.log_level, settings.log_format)
    return settings


def build_cli_components(args) -> PipelineComponents:
    return build_components(load_cli_settings(args))


def init_db_command(args, components: PipelineComponents):
    """
    Create the pipeline tables.

    Args:
        args: Command line arguments
        components: Pipeline components
    """
    # Lazy import: psycopg is only needed for PostgreSQL deployments
    from ldt_pipeline.warehouse.schema_mgmt import SchemaManager

    manager = SchemaManager(components.pool)
    manager.create_tables()
    missing = manager.missing_tables()

    print(f"\n{'=' * 60}")
    print("DATABASE INITIALIZED")
    print(f"{'=' * 60}\n")
    if missing:
        print(f"Missing tables: {', '.join(missing)}")
        sys.exit(1)
    print("All tables present.\n")


def quarantine_review_command(args, components: PipelineComponents):
    """
    Display quarantine entries with filtering options.

    Args:
        args: Command line arguments
        components: Pipeline components
    """
    entries = components.quarantine.list_entries(status=args.status, limit=args.limit, offset=args.offset)

    if not entries:
        print("\nNo quarantine entries found matching the criteria.")
        return

    print(f"\n{'=' * 100}")
    print(f"QUARANTINE REVIEW{f' - Status: {args.status}' if args.status else ''}")
    print(f"{'=' * 100}\n")
    print(f"Entries: {len(entries)}\n")

    print(f"{'Entry ID':<42} {'Reason':<18} {'Retries':>7}  {'Next retry':<20} {'Status'}")
    print(f"{'-' * 100}")

    for entry in entries:
        print(
            f"{entry.entry_id:<42} {entry.error_details.reason:<18} {entry.retry_count:>7}  "
            f"{format_timestamp(entry.next_retry_at):<20} {entry.status.value}"
        )

    print(f"\n{'=' * 100}\n")

    if args.show_errors:
        print("Error Details:")
        print(f"{'-' * 100}\n")
        for entry in entries[:10]:
            details = entry.error_details
            print(f"Entry: {entry.entry_id} (message {entry.message_id})")
            print(f"  Error: {details.message}")
            if details.line_number is not None:
                print(f"  Line {details.line_number}: {details.line_excerpt!r}")
            if details.field_name:
                print(f"  Field: {details.field_name}")
            print()


def quarantine_stats_command(args, components: PipelineComponents):
    """
    Display quarantine statistics.

    Args:
        args: Command line arguments
        components: Pipeline components
    """
    stats = components.quarantine.statistics()

    print(f"\n{'=' * 60}")
    print("QUARANTINE STATISTICS")
    print(f"{'=' * 60}\n")

    print(f"  Total entries: {stats['total']}\n")
    print("By Status:")
    for status, count in sorted(
        ((k, v) for k, v in stats.items() if k != "total"),
        key=lambda x: x[1],
        reverse=True
    ):
        print(f"  {status:<30} {count:>8}")

    print(f"\n{'=' * 60}\n")


def assign_owner_command(args, components: PipelineComponents):
    """
    Retry a quarantine entry under an explicitly chosen owner.

    Args:
        args: Command line arguments
        components: Pipeline components
    """
    outcome = components.quarantine.retry_with_forced_owner(args.entry_id, args.owner_id)

    print(f"\n{'=' * 60}")
    print("ASSIGN OWNER")
    print(f"{'=' * 60}\n")
    print(f"  Entry:   {args.entry_id}")
    print(f"  Owner:   {args.owner_id}")
    print(f"  Outcome: {outcome.status}")
    if outcome.status == "stored":
        print(f"  Result:  {outcome.result_id}")
    print(f"\n{'=' * 60}\n")


def retry_due_command(args, components: PipelineComponents):
    """
    Run a single retry sweep over due quarantine entries.

    Args:
        args: Command line arguments
        components: Pipeline components
    """
    worker = components.retry_worker
    if args.batch_size:
        worker.batch_size = args.batch_size
    summary = worker.run_once()

    print(f"\n{'=' * 60}")
    print("RETRY SWEEP")
    print(f"{'=' * 60}\n")
    print(f"  Attempted:          {summary.attempted}")
    print(f"  Stored:             {summary.stored}")
    print(f"  Still quarantined:  {summary.still_quarantined}")
    print(f"  Permanently failed: {summary.permanently_failed}")
    print(f"\n{'=' * 60}\n")


def run_retry_worker_command(args, components: PipelineComponents):
    """
    Run the retry worker until SIGINT/SIGTERM.

    Args:
        args: Command line arguments
        components: Pipeline components
    """
    worker = components.retry_worker

    def signal_handler(sig, frame):
        logger.info("Received shutdown signal, stopping retry worker...")
        worker.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    metrics_port = args.metrics_port or components.settings.metrics_port
    metrics.start_metrics_server(metrics_port)
    logger.info(f"Metrics server listening on port {metrics_port}")

    worker.run_forever()


def trace_message_command(args, components: PipelineComponents):
    """
    Show the audit trail of one message.

    Args:
        args: Command line arguments
        components: Pipeline components
    """
    events = components.store.list_audit_events(args.message_id)[: args.limit]

    if not events:
        print(f"\nNo audit trail found for message ID: {args.message_id}")
        return

    print(f"\n{'=' * 80}")
    print(f"AUDIT TRAIL FOR MESSAGE: {args.message_id}")
    print(f"{'=' * 80}\n")
    print(f"Total events: {len(events)}\n")

    print(f"{'Timestamp':<20} {'Event':<22} {'Details'}")
    print(f"{'-' * 80}")
    for event in events:
        details = json.dumps(event.details, sort_keys=True, default=str) if event.details else "-"
        print(f"{format_timestamp(event.created_at):<20} {event.event_type:<22} {details}")

    message = components.store.get_raw_message(args.message_id)
    if message is not None:
        print(f"\nStatus: {message.status}")
        if message.result_id:
            print(f"Result: {message.result_id}")

    print(f"\n{'=' * 80}\n")


def import_dir_command(args, components: PipelineComponents):
    """
    Import a directory of LDT files through the pipeline with Spark.

    Args:
        args: Command line arguments
        components: Pipeline components
    """
    # Lazy import: Spark startup is only paid by this command
    from ldt_pipeline.batch.ldt_import import BulkImporter, create_spark_session

    spark = create_spark_session("LdtBulkImport")
    try:
        importer = BulkImporter(spark, components.service, max_workers=args.workers)
        summary = importer.import_directory(args.directory, pattern=args.pattern)
    finally:
        spark.stop()

    print(f"\n{'=' * 60}")
    print("IMPORT COMPLETE")
    print(f"{'=' * 60}\n")
    print(f"  Files:       {summary.total_files}")
    print(f"  Stored:      {summary.stored}")
    print(f"  Quarantined: {summary.quarantined}")
    print(f"  Duplicates:  {summary.duplicate}")
    print(f"  Failed:      {len(summary.failed_files)}")
    for path in summary.failed_files:
        print(f"    - {path}")
    print(f"\n{'=' * 60}\n")

    if summary.failed_files:
        sys.exit(1)


def register_owner_command(args, components: PipelineComponents):
    """
    Insert or update an owner in the owners table.

    Args:
        args: Command line arguments
        components: Pipeline components
    """
    directory = components.directory
    if not hasattr(directory, "register_owner"):
        print("\nError: owners are read from a YAML file; edit that file instead.")
        sys.exit(1)

    owner = Owner(user_id=args.user_id, tenant_id=args.tenant_id, bsnr=args.bsnr, lanr=args.lanr)
    directory.register_owner(owner)
    print(f"\nRegistered owner {owner.user_id} (BSNR {owner.bsnr}, LANR {owner.lanr})")


def list_owners_command(args, components: PipelineComponents):
    """
    List the owner directory.

    Args:
        args: Command line arguments
        components: Pipeline components
    """
    owners = components.directory.list_owners()
    if not owners:
        print("\nNo owners registered.")
        return

    print(f"\n{'User ID':<25} {'Tenant':<20} {'BSNR':<10} {'LANR':<10}")
    print(f"{'-' * 68}")
    for owner in owners:
        print(f"{owner.user_id:<25} {owner.tenant_id or '-':<20} {owner.bsnr or '-':<10} {owner.lanr or '-':<10}")
    print()


def audit_summary_command(args, components: PipelineComponents):
    """
    Display audit event statistics.

    Args:
        args: Command line arguments
        components: Pipeline components
    """
    summary = components.store.audit_summary()

    print(f"\n{'=' * 60}")
    print("AUDIT SUMMARY")
    print(f"{'=' * 60}\n")
    print(f"  Total events:    {summary['total_events']}")
    print(f"  Messages traced: {summary['messages_traced']}\n")
    print("Events by Type:")
    for event_type, count in sorted(summary["events_by_type"].items(), key=lambda x: x[1], reverse=True):
        print(f"  {event_type:<30} {count:>8}")
    print(f"\n{'=' * 60}\n")


def serve_api_command(args, components: PipelineComponents):
    """
    Serve the webhook and admin API with uvicorn.

    Args:
        args: Command line arguments
        components: Pipeline components
    """
    import uvicorn

    from ldt_pipeline.api.app import create_app

    uvicorn.run(create_app(components), host=args.host, port=args.port, log_config=None)


COMMANDS = {
    "init-db": init_db_command,
    "quarantine-review": quarantine_review_command,
    "quarantine-stats": quarantine_stats_command,
    "assign-owner": assign_owner_command,
    "retry-due": retry_due_command,
    "run-retry-worker": run_retry_worker_command,
    "trace-message": trace_message_command,
    "import-dir": import_dir_command,
    "register-owner": register_owner_command,
    "list-owners": list_owners_command,
    "audit-summary": audit_summary_command,
    "serve-api": serve_api_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ldt-admin",
        description="Admin CLI for the LDT ingestion pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        "--config",
        help="Settings YAML file (default: $LDT_CONFIG_FILE)"
    )

    # Global database connection options; unset values come from settings
    parser.add_argument("--db-host", help="Database host")
    parser.add_argument("--db-port", type=int, help="Database port")
    parser.add_argument("--db-name", help="Database name")
    parser.add_argument("--db-user", help="Database user")
    parser.add_argument("--db-password", help="Database password")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create pipeline tables")

    review_parser = subparsers.add_parser("quarantine-review", help="Review quarantine entries")
    review_parser.add_argument(
        "--status",
        choices=["quarantined", "permanently_failed", "resolved"],
        help="Filter by entry status"
    )
    review_parser.add_argument("--limit", type=int, default=50, help="Maximum entries (default: 50)")
    review_parser.add_argument("--offset", type=int, default=0, help="Entries to skip (default: 0)")
    review_parser.add_argument("--show-errors", action="store_true", help="Show error details")

    subparsers.add_parser("quarantine-stats", help="Show quarantine statistics")

    assign_parser = subparsers.add_parser("assign-owner", help="Retry an entry under a chosen owner")
    assign_parser.add_argument("--entry-id", required=True, help="Quarantine entry ID")
    assign_parser.add_argument("--owner-id", required=True, help="Owner user ID")

    retry_parser = subparsers.add_parser("retry-due", help="Run one retry sweep")
    retry_parser.add_argument("--batch-size", type=int, help="Entries per sweep (default: from settings)")

    worker_parser = subparsers.add_parser("run-retry-worker", help="Run the retry worker until stopped")
    worker_parser.add_argument("--metrics-port", type=int, help="Prometheus port (default: from settings)")

    trace_parser = subparsers.add_parser("trace-message", help="Show the audit trail of a message")
    trace_parser.add_argument("--message-id", required=True, help="Message ID to trace")
    trace_parser.add_argument("--limit", type=int, default=100, help="Maximum events (default: 100)")

    import_parser = subparsers.add_parser("import-dir", help="Import a directory of LDT files")
    import_parser.add_argument("--directory", required=True, help="Directory containing LDT files")
    import_parser.add_argument("--pattern", default="*.ldt", help='File glob (default: "*.ldt")')
    import_parser.add_argument("--workers", type=int, default=4, help="Concurrent ingestions (default: 4)")

    register_parser = subparsers.add_parser("register-owner", help="Add or update an owner")
    register_parser.add_argument("--user-id", required=True, help="Owner user ID")
    register_parser.add_argument("--tenant-id", help="Tenant ID")
    register_parser.add_argument("--bsnr", required=True, help="Site number (8 digits)")
    register_parser.add_argument("--lanr", required=True, help="Physician number (7 or 8 digits)")

    subparsers.add_parser("list-owners", help="List registered owners")
    subparsers.add_parser("audit-summary", help="Show audit event statistics")

    serve_parser = subparsers.add_parser("serve-api", help="Serve the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    return parser


def main(argv: list[str] | None = None):
    """Main entry point for admin CLI."""
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        sys.exit(1)

    try:
        components = build_cli_components(args)
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"\nConfiguration error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Could not start pipeline: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)

    try:
        command(args, components)

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)

    except Exception as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)

    finally:
        components.close()


if __name__ == "__main__":
    main()

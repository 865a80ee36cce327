"""
Command-line ingestion of LDT files.

Usage:
    ldt-ingest <file> [<file> ...] [options]

With --dry-run the in-memory store and a YAML owner directory are used,
so nothing is persisted.
"""

import argparse
import json
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from dotenv import load_dotenv

from ldt_pipeline.config.settings import load_settings
from ldt_pipeline.core.errors import ConfigurationError, MessageIdConflict, StoreFailure
from ldt_pipeline.core.models import IdentifierHints
from ldt_pipeline.ingest.factory import PipelineComponents, build_components
from ldt_pipeline.observability.logger import configure_logging, get_logger
from ldt_pipeline.owners.directory import InMemoryOwnerDirectory, YamlOwnerDirectory
from ldt_pipeline.utils.validation import ValidationError, validate_identifier_hint
from ldt_pipeline.warehouse.memory_store import InMemoryStore

logger = get_logger(__name__)

EXAMPLES = """
Examples:
  ldt-ingest inbox/result-0001.ldt
  ldt-ingest result.ldt --message-id msg-0001 --bsnr 93860200 --lanr 72720053
  ldt-ingest inbox/*.ldt --dry-run --owners config/owners.example.yaml
"""


def build_ingest_components(args) -> PipelineComponents:
    """
    Build the pipeline, in memory for --dry-run.

    Args:
        args: Command-line arguments

    Returns:
        PipelineComponents
    """
    settings = load_settings(args.config)
    configure_logging(settings.log_level, settings.log_format)

    if not args.dry_run:
        return build_components(settings)

    owners_file = args.owners or settings.owner_directory_file
    directory = YamlOwnerDirectory(owners_file) if owners_file else InMemoryOwnerDirectory()
    logger.info("DRY RUN MODE: using the in-memory store, nothing will be persisted")
    return build_components(settings, store=InMemoryStore(), directory=directory)


def ingest_command(args, components: PipelineComponents) -> int:
    """
    Ingest every file given on the command line.

    Each outcome is printed as one JSON line.

    Args:
        args: Command-line arguments
        components: Pipeline components

    Returns:
        Process exit code
    """
    hints = IdentifierHints(
        bsnr=validate_identifier_hint("bsnr", args.bsnr),
        lanr=validate_identifier_hint("lanr", args.lanr),
    )
    paths = [Path(p) for p in args.files]
    for path in paths:
        if not path.is_file():
            logger.error(f"Input file not found: {path}")
            return 1

    def ingest_file(path: Path):
        return components.service.ingest(
            path.read_bytes(),
            message_id=args.message_id,
            idempotency_key=args.idempotency_key,
            hints=hints,
            source="cli",
        )

    failures = 0
    with ThreadPoolExecutor(max_workers=args.workers) as executor:
        futures = [(path, executor.submit(ingest_file, path)) for path in paths]
        for path, future in futures:
            try:
                outcome = future.result()
            except (StoreFailure, MessageIdConflict) as e:
                logger.error(f"Could not ingest {path}: {e}")
                failures += 1
                continue
            print(json.dumps({"file": str(path), **outcome.to_response()}))

    return 1 if failures else 0


def main(argv: list[str] | None = None):
    """Main CLI entry point."""
    load_dotenv()
    parser = argparse.ArgumentParser(
        prog="ldt-ingest",
        description="Ingest LDT lab messages from files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EXAMPLES,
    )
    parser.add_argument("files", nargs="+", help="LDT files to ingest")
    parser.add_argument("--config", help="Settings YAML file (default: $LDT_CONFIG_FILE)")
    parser.add_argument("--message-id", help="Transport message ID (single file only)")
    parser.add_argument("--idempotency-key", help="Idempotency key (single file only; default: payload digest)")
    parser.add_argument("--bsnr", help="BSNR hint supplied by the sender")
    parser.add_argument("--lanr", help="LANR hint supplied by the sender")
    parser.add_argument("--workers", type=int, default=4, help="Files ingested concurrently (default: 4)")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use the in-memory store; nothing is written to the database"
    )
    parser.add_argument("--owners", help="Owner YAML file for --dry-run (default: from settings)")

    args = parser.parse_args(argv)

    if len(args.files) > 1 and (args.message_id or args.idempotency_key):
        parser.error("--message-id and --idempotency-key apply to a single file")

    try:
        components = build_ingest_components(args)
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"\nConfiguration error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Could not start pipeline: {e}", exc_info=True)
        sys.exit(1)

    try:
        sys.exit(ingest_command(args, components))
    except ValidationError as e:
        print(f"\nError: {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    finally:
        components.close()


if __name__ == "__main__":
    main()

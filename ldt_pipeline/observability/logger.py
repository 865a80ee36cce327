"""
Structured logging for the LDT ingestion pipeline.

Every pipeline module logs through ``get_logger(__name__)``. Records are
rendered as one JSON object per line (python-json-logger) so message ids,
idempotency keys and outcomes passed via ``extra`` stay machine-readable.
LOG_LEVEL and LOG_FORMAT seed the configuration until the entry points
call ``configure_logging`` with the loaded settings.
"""
import logging
import os
import sys
import time

from pythonjsonlogger import jsonlogger

ROOT_LOGGER_NAME = "ldt_pipeline"

JSON_FORMAT = "%(timestamp)s %(level)s %(logger)s %(message)s"
TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with a fixed envelope.

    Each line carries timestamp, level, logger and the call site; fields
    passed through ``extra`` (message_id, status, ...) are merged in.
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["location"] = f"{record.module}:{record.funcName}:{record.lineno}"
        log_record["thread"] = record.threadName


def _build_handler(level: int, format_type: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if format_type == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(CustomJsonFormatter(fmt=JSON_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z"))
    return handler


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: str | None = None,
    format_type: str | None = None,
) -> logging.Logger:
    """
    (Re)configure one logger with a single stdout handler.

    Args:
        name: Logger name
        level: Level name; falls back to $LOG_LEVEL, then INFO
        format_type: "json" or "text"; falls back to $LOG_FORMAT, then json

    Returns:
        The configured logger
    """
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)
    logger.handlers.clear()
    logger.addHandler(_build_handler(numeric_level, format_type or os.getenv("LOG_FORMAT", "json")))
    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Return a logger, attaching the pipeline handler the first time."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    return setup_logger(name)


def configure_logging(level: str | None = None, format_type: str | None = None) -> None:
    """
    Apply level and format to every pipeline logger created so far.

    Args:
        level: Level name from settings
        format_type: "json" or "text" from settings
    """
    existing = [
        name for name in logging.root.manager.loggerDict
        if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + ".")
    ]
    for name in existing or [ROOT_LOGGER_NAME]:
        setup_logger(name, level=level, format_type=format_type)


class log_operation:
    """
    Log the start, end and duration of a pipeline operation.

    Usage:
        with log_operation("Retry sweep", logger=logger, batch_size=50):
            worker.run_once()

    Exceptions are logged with their type and re-raised.
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **extra_fields):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.extra_fields = extra_fields
        self.started: float | None = None

    def _extra(self, **fields) -> dict:
        return {"operation": self.operation_name, **fields, **self.extra_fields}

    def __enter__(self):
        self.started = time.monotonic()
        self.logger.info(f"Starting: {self.operation_name}", extra=self._extra())
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = round(time.monotonic() - self.started, 3)

        if exc_type is None:
            self.logger.info(
                f"Completed: {self.operation_name}",
                extra=self._extra(duration_seconds=elapsed, status="success"),
            )
        else:
            self.logger.error(
                f"Failed: {self.operation_name}",
                extra=self._extra(
                    duration_seconds=elapsed,
                    status="error",
                    error_type=exc_type.__name__,
                    error_message=str(exc_val),
                ),
                exc_info=(exc_type, exc_val, exc_tb),
            )
        return False

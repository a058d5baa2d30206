"""Logging for Company Finder.

Three channels are configured at startup by the CLI and the API lifespan:

- the root logger, written to the console and a rotating ``company_finder.log``
- ``company_finder.audit``: one JSON line per search, lookup and export
- ``company_finder.performance``: one JSON line per timed registry call

The audit and performance channels never propagate to the root logger.
"""

import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

AUDIT_LOGGER_NAME = "company_finder.audit"
PERFORMANCE_LOGGER_NAME = "company_finder.performance"


class JSONFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload.update(getattr(record, "extra_fields", None) or {})
        return json.dumps(payload, default=str)


def _rotating_handler(
    log_file: Path, formatter: logging.Formatter, max_bytes: int, backup_count: int
) -> RotatingFileHandler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
    handler.setFormatter(formatter)
    return handler


def _event_logger(name: str, log_file: Optional[Path], backup_count: int) -> logging.Logger:
    event_logger = logging.getLogger(name)
    event_logger.setLevel(logging.INFO)
    event_logger.propagate = False
    if log_file is not None:
        event_logger.addHandler(
            _rotating_handler(log_file, JSONFormatter(), 10 * 1024 * 1024, backup_count)
        )
    return event_logger


class AuditLogger:
    """Records which registry data each client searched, opened or exported."""

    def __init__(self, log_file: Optional[Path] = None):
        self.logger = _event_logger(AUDIT_LOGGER_NAME, log_file, backup_count=10)

    def _event(self, message: str, event_type: str, client: str, **fields: Any) -> None:
        fields.update(event_type=event_type, client=client)
        self.logger.info(message, extra={"extra_fields": fields})

    def log_search(
        self,
        client: str,
        filters: Dict[str, Any],
        results_count: int = 0,
        total: int = 0,
    ) -> None:
        """Record one page of search results.

        Args:
            client: Caller identity (remote address, or ``cli_user``)
            filters: Only the constrained filter fields
            results_count: Rows on the returned page
            total: Rows matching the filters overall
        """
        self._event(
            "Search performed",
            "search",
            client,
            filters=filters,
            results_count=results_count,
            total=total,
        )

    def log_lookup(self, client: str, company_id: str, found: bool) -> None:
        self._event("Company lookup", "lookup", client, company_id=company_id, found=found)

    def log_export(
        self,
        client: str,
        export_format: str,
        filters: Dict[str, Any],
        record_count: int,
    ) -> None:
        self._event(
            "Data exported",
            "export",
            client,
            export_format=export_format,
            filters=filters,
            record_count=record_count,
        )


class PerformanceLogger:
    """Timings of registry calls as structured events."""

    def __init__(self, log_file: Optional[Path] = None):
        self.logger = _event_logger(PERFORMANCE_LOGGER_NAME, log_file, backup_count=5)

    def log_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        fields: Dict[str, Any] = dict(metadata or {})
        fields.update(
            event_type="performance",
            operation=operation,
            duration_ms=duration_ms,
            success=success,
        )
        self.logger.info(f"{operation} took {duration_ms:.2f}ms", extra={"extra_fields": fields})


@contextmanager
def log_performance(
    operation: str,
    logger: Optional[logging.Logger] = None,
    performance_logger: Optional[PerformanceLogger] = None,
) -> Iterator[None]:
    """Time the enclosed block and log how long it took.

    Exceptions from the block propagate; the timing is logged either way
    with ``success`` reflecting whether the block completed.

    Example:
        with log_performance("registry_search", performance_logger=perf):
            companies, total = await registry.search(filters, limit=limit)
    """
    target = logger or logging.getLogger()
    started = time.perf_counter()
    success = False
    try:
        yield
        success = True
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        target.info(f"{operation} completed in {duration_ms:.2f}ms (success={success})")
        if performance_logger is not None:
            performance_logger.log_operation(operation, duration_ms, success)


def configure_logging(
    log_file: Optional[Path] = None,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    use_json: bool = False,
    console_output: bool = True,
) -> None:
    """Attach console and rotating file handlers to the root logger.

    Does nothing when the root logger already has handlers, so calling it
    from both the CLI and the app lifespan is harmless.

    Parameters
    ----------
    log_file: Path, optional
        Rotating log file; its directory is created on demand.
    level: int
        Root logging level.
    max_bytes, backup_count: int
        Rotation size and number of kept files.
    use_json: bool
        Emit JSON lines instead of the plain text format.
    console_output: bool
        Also log to stderr.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(level)
    formatter: logging.Formatter = (
        JSONFormatter() if use_json else logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    )

    handlers = []
    if console_output:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        handlers.append(console)
    if log_file is not None:
        handlers.append(_rotating_handler(log_file, formatter, max_bytes, backup_count))

    for handler in handlers:
        handler.setLevel(level)
        root.addHandler(handler)


def configure_comprehensive_logging(
    log_dir: Path = Path("logs"),
    level: int = logging.INFO,
    use_json: bool = False,
    console_output: bool = True,
) -> tuple[AuditLogger, PerformanceLogger]:
    """Configure the root, audit and performance channels under ``log_dir``.

    Returns:
        Tuple of (audit_logger, performance_logger)
    """
    log_dir = Path(log_dir)
    configure_logging(
        log_file=log_dir / "company_finder.log",
        level=level,
        use_json=use_json,
        console_output=console_output,
    )
    audit_logger = AuditLogger(log_dir / "audit.log")
    performance_logger = PerformanceLogger(log_dir / "performance.log")

    logging.getLogger(__name__).info("Logging configured under %s", log_dir)
    return audit_logger, performance_logger

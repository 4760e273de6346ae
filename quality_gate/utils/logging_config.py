"""Logging configuration for the quality gate."""

import logging
import sys
import threading
import time
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

DEFAULT_LOG_FILE = Path(__file__).parent.parent.parent / "logs" / "quality_gate.log"


class ContextFilter(logging.Filter):
    """Add the current correlation ID to log records.

    The ID is thread-local: concurrent regeneration sessions each log under
    their own content ID.
    """

    def __init__(self) -> None:
        super().__init__()
        self._local = threading.local()

    @property
    def correlation_id(self) -> str | None:
        """Correlation ID for the calling thread."""
        return getattr(self._local, "correlation_id", None)

    @correlation_id.setter
    def correlation_id(self, value: str | None) -> None:
        self._local.correlation_id = value

    def filter(self, record: logging.LogRecord) -> bool:
        """Attach correlation_id (or "-") to the record."""
        record.correlation_id = self.correlation_id or "-"
        return True


_context_filter = ContextFilter()


class FlushingRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler that flushes immediately after each record."""

    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        self.flush()


def setup_logging(level: str = "INFO", log_file: str | None = "default") -> None:
    """Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_file: File path for logs. "default" uses logs/quality_gate.log,
            None disables file logging.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] [%(correlation_id)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Filter goes on handlers, not the logger, so child logger records get it
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(_context_filter)
    root_logger.addHandler(console_handler)

    if log_file == "default":
        log_path: Path | None = DEFAULT_LOG_FILE
    elif log_file:
        log_path = Path(log_file)
    else:
        log_path = None

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        # 10MB per file, 5 backups
        file_handler = FlushingRotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(_context_filter)
        root_logger.addHandler(file_handler)
        root_logger.info("Logging to file: %s (max 10MB, 5 backups)", log_path)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@contextmanager
def log_context(correlation_id: str | None = None) -> Generator[str]:
    """Set the correlation ID for log records emitted by this thread.

    Args:
        correlation_id: Optional ID. A short UUID is generated when omitted.

    Yields:
        The correlation ID in use.

    Example:
        with log_context(session.content_id):
            logger.info("Scoring attempt 1")
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())[:8]

    old_id = _context_filter.correlation_id
    _context_filter.correlation_id = correlation_id
    try:
        yield correlation_id
    finally:
        _context_filter.correlation_id = old_id


@contextmanager
def log_performance(logger: logging.Logger, operation: str) -> Generator[None]:
    """Log how long an operation took, or how long it ran before failing.

    Args:
        logger: Logger instance to use.
        operation: Name of the operation being timed.
    """
    start_time = time.perf_counter()
    logger.debug("%s: starting", operation)
    try:
        yield
    except Exception as e:
        logger.error(
            "%s: failed after %.2fs - %s", operation, time.perf_counter() - start_time, e
        )
        raise
    else:
        logger.info("%s: completed in %.2fs", operation, time.perf_counter() - start_time)

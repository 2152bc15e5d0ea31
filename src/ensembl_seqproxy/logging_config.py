"""Logging setup for the ``ensembl_seqproxy`` logger tree.

Everything logs below the ``ensembl_seqproxy`` logger. The console handler
writes to stderr, leaving stdout to sequence output, and an optional
rotating file handler records the full debug trail of a run.
"""

import logging
import logging.handlers
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

PACKAGE_LOGGER = 'ensembl_seqproxy'

# Short names handed back by setup_logging, mapped to their logger suffix.
CHILD_LOGGERS = {
    'rest': 'rest',
    'seq_proxy': 'seq_proxy',
    'gene': 'gene',
    'api': 'api',
    'error': 'error',
    'performance': 'performance',
}

FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
CONSOLE_FORMAT = '%(levelname)s - %(message)s'


class ColoredFormatter(logging.Formatter):
    """Colours the level name when stderr is a terminal."""

    LEVEL_COLOURS = {
        logging.DEBUG: '\033[36m',
        logging.INFO: '\033[32m',
        logging.WARNING: '\033[33m',
        logging.ERROR: '\033[31m',
        logging.CRITICAL: '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelno) if self.use_colors else None
        if colour is None:
            return super().format(record)

        plain = record.levelname
        record.levelname = f"{colour}{plain}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


class ProgressLogger:
    """Reports per-item progress of a gene or accession run."""

    def __init__(self, logger: logging.Logger, total: int, operation: str = "Fetching"):
        self.logger = logger
        self.total = total
        self.operation = operation
        self.processed = 0
        self.failed = 0
        self._started = time.monotonic()

    @property
    def percent(self) -> float:
        return self.processed * 100 / self.total if self.total > 0 else 0.0

    def update(self, success: bool = True, item: Optional[str] = None):
        """Count one finished item and log where the run stands."""
        self.processed += 1
        if not success:
            self.failed += 1

        position = f"{self.processed}/{self.total} ({self.percent:.1f}%)"
        if item:
            outcome = "ok" if success else "dropped"
            self.logger.info(f"{self.operation}: {item} {outcome} [{position}]")
        else:
            self.logger.info(f"{self.operation}: {position} - {self.failed} failed")

    def complete(self):
        elapsed = time.monotonic() - self._started
        kept = self.processed - self.failed
        rate = kept * 100 / self.processed if self.processed > 0 else 0.0
        self.logger.info(
            f"{self.operation} complete: {self.processed} items in {elapsed:.1f}s ({rate:.1f}% success rate)"
        )


def _file_handler(path: Path, rotate: bool, max_bytes: int, backup_count: int) -> logging.Handler:
    if rotate:
        handler = logging.handlers.RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
    else:
        handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    return handler


def _log_path(log_dir: str, log_file: Optional[str]) -> Path:
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    return directory / (log_file or f"{PACKAGE_LOGGER}_{datetime.now():%Y%m%d}.log")


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_dir: Optional[str] = None,
    console: bool = True,
    colors: bool = True,
    rotate_logs: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    quiet: bool = False
) -> Dict[str, logging.Logger]:
    """
    Attach handlers to the package logger, replacing any from an earlier call.

    Args:
        log_level: Threshold for both handlers (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: File name inside ``log_dir``; defaults to a dated name
        log_dir: Directory for the log file, or None for console only
        console: Attach the stderr handler
        colors: Colour level names on a terminal
        rotate_logs: Rotate the log file at ``max_bytes``
        max_bytes: Size at which the file rotates
        backup_count: Rotated files to keep
        quiet: Raise the console threshold to ERROR

    Returns:
        The package logger under ``'main'`` plus its named children
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.DEBUG)
    package_logger.propagate = False

    log_path = _log_path(log_dir, log_file) if log_dir else None
    if log_path is not None:
        file_handler = _file_handler(log_path, rotate_logs, max_bytes, backup_count)
        file_handler.setLevel(level)
        package_logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.ERROR if quiet else level)
        console_handler.setFormatter(ColoredFormatter(CONSOLE_FORMAT, use_colors=colors))
        package_logger.addHandler(console_handler)

    loggers = {'main': package_logger}
    loggers.update({key: get_logger(suffix) for key, suffix in CHILD_LOGGERS.items()})

    package_logger.debug(f"Logging initialized - Level: {log_level}, File: {log_path}")
    return loggers


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")


def log_api_call(endpoint: str, params: Dict[str, Any], response_time: float, success: bool,
                 status: Optional[int] = None):
    """Record one REST round trip on the ``api`` logger; failures at WARNING."""
    detail = f"(params: {params}, status: {status}, response_time: {response_time:.2f}s)"
    if success:
        get_logger('api').debug(f"GET/POST {endpoint} {detail}")
    else:
        get_logger('api').warning(f"Request failed: {endpoint} {detail}")


def log_performance(operation: str, duration: float, items: Optional[int] = None):
    perf = get_logger('performance')
    if not items:
        perf.info(f"{operation}: completed in {duration:.2f}s")
        return
    rate = items / duration if duration > 0 else 0.0
    perf.info(f"{operation}: {items} items in {duration:.2f}s ({rate:.1f} items/s)")


class LogTimer:
    """
    Times a block and logs its duration at DEBUG.

    ``elapsed`` holds the measured seconds after the block exits, whether it
    finished or raised.
    """

    def __init__(self, operation: str, logger: Optional[logging.Logger] = None):
        self.operation = operation
        self.logger = logger or get_logger('performance')
        self.elapsed = 0.0
        self._started: Optional[float] = None

    def __enter__(self):
        self._started = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._started is None:
            return
        self.elapsed = time.monotonic() - self._started
        outcome = "completed in" if exc_type is None else "failed after"
        self.logger.debug(f"{self.operation} {outcome} {self.elapsed:.2f}s")

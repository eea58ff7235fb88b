"""
Structured JSON Logging for the audio optimizer

Provides JSON-structured logging with run correlation for the optimizer
daemon, plus a human-readable console stream. Component modules log through
``logging.getLogger(__name__)``; their records propagate into the handlers
installed here on the ``audio_optimizer`` package logger.
"""

import json
import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

PACKAGE_LOGGER_NAME = "audio_optimizer"


class JSONFormatter(logging.Formatter):
    """Custom formatter that outputs structured JSON logs"""

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON"""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "run_id": self.run_id,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "process": record.process,
        }

        if record.exc_info:
            exc_info = (
                record.exc_info if isinstance(record.exc_info, tuple) else sys.exc_info()
            )
            if exc_info and isinstance(exc_info, tuple):
                log_data["exception"] = {
                    "type": exc_info[0].__name__ if exc_info[0] else None,
                    "message": str(exc_info[1]) if exc_info[1] else None,
                    "traceback": self.formatException(exc_info),
                }

        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def _writable_log_file(*candidates: Optional[Path]) -> Optional[Path]:
    """First candidate that can be appended to, or None when none can."""
    for candidate in candidates:
        if candidate is None:
            continue
        try:
            candidate.parent.mkdir(parents=True, exist_ok=True)
            with open(candidate, "a"):
                pass
            return candidate
        except OSError:
            continue
    return None


class ProductionLogger:
    """
    Production logger with structured JSON output and run correlation.

    Features:
    - Structured JSON log file with rotation
    - Run ID correlation for tracing a daemon session
    - Human-readable console output (suppressed with ``quiet=True``)
    - Falls back to a per-user log file when the system path is not writable
    """

    def __init__(
        self,
        run_id: Optional[str] = None,
        log_level: str = "INFO",
        log_file: Optional[Path] = None,
        fallback_log_file: Optional[Path] = None,
        quiet: bool = False,
    ):
        """
        Initialize production logger

        Args:
            run_id: Unique identifier for this daemon session. Generated if not provided.
            log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_file: Preferred JSON log file. None disables file logging.
            fallback_log_file: Used when ``log_file`` cannot be written.
            quiet: Disable the console handler.
        """
        self.run_id = run_id or self._generate_run_id()
        self.log_level = getattr(logging, log_level.upper())
        self.log_file: Optional[Path] = None
        self._setup_logging(log_file, fallback_log_file, quiet)

    def _generate_run_id(self) -> str:
        """Generate unique run ID with timestamp and UUID"""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        unique_suffix = str(uuid.uuid4())[:8]
        return f"{timestamp}-{unique_suffix}"

    def _setup_logging(
        self,
        log_file: Optional[Path],
        fallback_log_file: Optional[Path],
        quiet: bool,
    ) -> None:
        """Setup console + rotating JSON file logging on the package logger"""
        self.logger = logging.getLogger(PACKAGE_LOGGER_NAME)
        self.logger.setLevel(self.log_level)

        # Replace handlers left by a previous instance in the same process
        for handler in self.logger.handlers[:]:
            handler.close()
            self.logger.removeHandler(handler)

        target = None
        if log_file is not None:
            target = _writable_log_file(
                Path(log_file), Path(fallback_log_file) if fallback_log_file else None
            )
        if target is not None:
            self.log_file = target
            json_handler = RotatingFileHandler(
                target,
                maxBytes=5 * 1024 * 1024,  # 5MB
                backupCount=5,
            )
            json_handler.setFormatter(JSONFormatter(self.run_id))
            json_handler.setLevel(self.log_level)
            self.logger.addHandler(json_handler)

        # No writable log file: console only, even when quiet
        if not quiet or (log_file is not None and target is None):
            console_handler = logging.StreamHandler()
            console_formatter = logging.Formatter(
                "%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
            console_handler.setFormatter(console_formatter)
            console_handler.setLevel(self.log_level)
            self.logger.addHandler(console_handler)

        self.logger.propagate = False

    def log_event(self, level: str, message: str, **kwargs) -> None:
        """
        Log structured event with additional context

        Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            message: Human-readable log message
            **kwargs: Additional structured data to include in JSON
        """
        record = self.logger.makeRecord(
            name=self.logger.name,
            level=getattr(logging, level.upper()),
            fn="",
            lno=0,
            msg=message,
            args=(),
            exc_info=None,
        )
        record.extra_data = kwargs
        self.logger.handle(record)

    def debug(self, message: str, **kwargs) -> None:
        self.log_event("DEBUG", message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        self.log_event("INFO", message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self.log_event("WARNING", message, **kwargs)

    def error(self, message: str, **kwargs) -> None:
        self.log_event("ERROR", message, **kwargs)

    def exception(self, message: str, **kwargs) -> None:
        """Log exception with traceback"""
        record = self.logger.makeRecord(
            name=self.logger.name,
            level=logging.ERROR,
            fn="",
            lno=0,
            msg=message,
            args=(),
            exc_info=sys.exc_info(),
        )
        record.extra_data = kwargs
        self.logger.handle(record)

    def get_run_id(self) -> str:
        """Get the run ID for this logger instance"""
        return self.run_id

    def close(self) -> None:
        """Close all handlers and cleanup"""
        for handler in self.logger.handlers[:]:
            handler.close()
            self.logger.removeHandler(handler)


def get_logger(
    run_id: Optional[str] = None,
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    fallback_log_file: Optional[Path] = None,
    quiet: Optional[bool] = None,
) -> ProductionLogger:
    """
    Factory function to get a configured production logger

    ``quiet`` defaults to the ``AUDIO_OPTIMIZER_QUIET_LOG`` environment
    variable ("1" keeps output off the console).
    """
    if quiet is None:
        quiet = os.getenv("AUDIO_OPTIMIZER_QUIET_LOG", "0") == "1"
    return ProductionLogger(
        run_id=run_id,
        log_level=log_level,
        log_file=log_file,
        fallback_log_file=fallback_log_file,
        quiet=quiet,
    )

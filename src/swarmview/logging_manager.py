"""Structured logging setup for swarmview.

Console output is human readable; the rotating file log is one JSON object
per line, including any ``extra=`` fields passed at the call site.
"""

import json
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path

ROOT_LOGGER_NAME = "swarmview"

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = frozenset(
    [
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "exc_info",
        "exc_text",
        "stack_info",
        "asctime",
        "taskName",
    ]
)


def collect_extras(record: logging.LogRecord) -> dict:
    """Return the JSON-serializable extra fields attached to a record."""
    extras = {}
    for key, value in record.__dict__.items():
        if key in _RESERVED_ATTRS:
            continue
        try:
            json.dumps(value)
            extras[key] = value
        except (TypeError, ValueError):
            extras[key] = str(value)
    return extras


class JsonLineFormatter(logging.Formatter):
    """Formats each record as a single JSON line."""

    def format(self, record):
        log_obj = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        log_obj.update(collect_extras(record))
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_obj)


class LoggingManager:
    """Configures the ``swarmview`` logger hierarchy."""

    def __init__(self, log_dir: str | Path | None = "/tmp/swarmview_logs", log_level: str = "INFO"):
        """Initialize logging.

        Args:
            log_dir: Directory for the rotating JSON log, or None for console only
            log_level: Console log level
        """
        self.log_level = getattr(logging, log_level.upper())
        self.log_dir = Path(log_dir) if log_dir else None
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self.logger = self._setup_root_logger()

        # Child loggers created before setup must defer to the root handlers
        for name in list(logging.Logger.manager.loggerDict.keys()):
            if name.startswith(ROOT_LOGGER_NAME + "."):
                child_logger = logging.getLogger(name)
                if isinstance(child_logger, logging.Logger):  # Skip PlaceHolders
                    child_logger.setLevel(logging.NOTSET)
                    child_logger.propagate = True
                    child_logger.handlers.clear()

    def _setup_root_logger(self) -> logging.Logger:
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        logger.setLevel(logging.DEBUG)
        logger.propagate = False
        logger.handlers.clear()

        console_handler = logging.StreamHandler()
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(console_handler)

        if self.log_dir is not None:
            file_handler = logging.handlers.RotatingFileHandler(
                self.log_dir / "swarmview.log",
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(JsonLineFormatter())
            logger.addHandler(file_handler)

        return logger

    @property
    def log_file(self) -> Path | None:
        """Path of the JSON log file, if file logging is enabled."""
        return self.log_dir / "swarmview.log" if self.log_dir is not None else None

"""
Logging configuration for Boostkeeper workers and the orchestrator.
Colored console output plus rotating log files.
"""

import os
import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Log directory
LOG_DIR = Path(os.getenv("LOG_DIR", Path(__file__).parent.parent / "logs"))

# Log level from environment
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CONSOLE_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
FILE_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    COLORS = {
        'DEBUG': '\033[90m',     # Grey
        'INFO': '\033[36m',      # Cyan
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        # Copy so file handlers sharing the record keep the plain level name
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(
    name: str = "boostkeeper",
    log_dir: Optional[Path] = None,
    level: Optional[str] = None,
    color: bool = True,
) -> logging.Logger:
    """
    Configure the root logger and return the named one.

    Every module logs through ``logging.getLogger(__name__)``, so handlers
    are attached to the root logger and ``name`` only picks the file names.

    Args:
        name: Stem for <name>.log and <name>_errors.log
        log_dir: Directory for the files (default: LOG_DIR)
        level: Level name overriding LOG_LEVEL
        color: Colored console output (off when relayed by the orchestrator)

    Returns:
        Configured logger instance
    """
    root = logging.getLogger()

    # Avoid duplicate handlers
    if getattr(root, "_boostkeeper_configured", False):
        return logging.getLogger(name)

    root.setLevel(getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO))

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    formatter_cls = ColoredFormatter if color else logging.Formatter
    console_handler.setFormatter(formatter_cls(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(console_handler)

    directory = Path(log_dir) if log_dir else LOG_DIR
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        root.warning(f"Log directory {directory} unavailable, file logging disabled: {e}")
    else:
        file_format = logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT)

        # File handler with rotation
        file_handler = RotatingFileHandler(
            directory / f"{name}.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_format)
        root.addHandler(file_handler)

        # Error file handler (errors and above)
        error_handler = RotatingFileHandler(
            directory / f"{name}_errors.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_format)
        root.addHandler(error_handler)

    # Quiet asyncio's slow-callback chatter
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    root._boostkeeper_configured = True
    return logging.getLogger(name)


def log_tick(logger: logging.Logger, fired: tuple, next_refinery_at: Optional[int] = None):
    """Log a one-line summary of an outer-loop iteration."""
    if fired:
        logger.info(f"🔁 Tick fired: {', '.join(fired)}")
    else:
        logger.debug(f"🔁 Tick idle (next refinery at {next_refinery_at})")

#!/usr/bin/env python3
"""
roomchat Logging Configuration

Centralized logging setup for consistent formatting across the client.
Supports both development (console) and production (file) modes.

Usage:
    from shared.log import get_logger

    logger = get_logger(__name__)
    logger.info("Opening connection...")
    logger.warning("Dropped entry", extra={"room": "lobby", "user": "alice", "gen": 3})
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional, Any
import os


# ========================================
#           LOGGING FORMATTERS
# ========================================

class GenericFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        # Session context passed through extra=
        context = []

        if hasattr(record, 'room'):
            context.append(f"room={record.room}")
        if hasattr(record, 'user'):
            context.append(f"user={record.user}")
        if hasattr(record, 'gen'):
            context.append(f"gen={record.gen}")
        if hasattr(record, 'frame'):
            context.append(f"frame={record.frame}")

        if not context:
            return super().format(record)

        original = record.msg
        record.msg = f"[{' '.join(context)}] {record.msg}"
        try:
            return super().format(record)
        finally:
            record.msg = original


class ColoredFormatter(GenericFormatter):
    """Colored formatter for console output, keeps the session context prefix"""

    # ANSI Color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


# ========================================
#           LOGGING CONFIGURATION
# ========================================

_loggers_configured = set()

def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger for the given module.

    Args:
        name: Usually __name__ from the calling module
        level: Override log level ("DEBUG", "INFO", "WARNING", "ERROR")

    Session context goes through extra= and is rendered as a
    [room= user= gen= frame=] prefix by GenericFormatter.
    """
    logger = logging.getLogger(name)

    # Only configure each logger once
    if name not in _loggers_configured:
        _configure_logger(logger, level)
        _loggers_configured.add(name)

    return logger


def _configure_logger(logger: logging.Logger, level: Optional[str] = None) -> None:
    """Configure a logger with appropriate handlers and formatters"""

    log_level = _get_log_level(level)
    logger.setLevel(log_level)

    # Clear existing handlers to avoid duplicates
    logger.handlers.clear()

    if _is_development():
        _add_console_handler(logger, colored=True)
    else:
        # Production: Clean console + file logging
        _add_console_handler(logger, colored=False)
        _add_file_handler(logger)

    # Prevent duplicate messages from parent loggers
    logger.propagate = False


def _get_log_level(level: Optional[str] = None) -> int:
    """Determine appropriate log level"""

    if level:
        return getattr(logging, level.upper(), logging.INFO)

    env_level = os.getenv('ROOMCHAT_LOG_LEVEL')
    if env_level:
        return getattr(logging, env_level.upper(), logging.INFO)

    return logging.DEBUG if _is_development() else logging.INFO


def _is_development() -> bool:
    """Detect if we're in development mode"""
    env = (os.getenv('ROOMCHAT_ENV') or os.getenv('PYTHON_ENV') or '').lower()
    if env == 'production':
        return False
    return (
        env in ['dev', 'development'] or
        'pytest' in sys.modules or
        __debug__  # Python -O flag not used
    )


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    """Add console handler with appropriate formatter"""

    fmt = '[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    # stderr keeps the interactive transcript on stdout clean
    handler = logging.StreamHandler(sys.stderr)

    if colored and _supports_color():
        formatter: logging.Formatter = ColoredFormatter(
            fmt=fmt,
            datefmt='%H:%M:%S'
        )
    else:
        formatter = GenericFormatter(
            fmt=fmt,
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _add_file_handler(logger: logging.Logger) -> None:
    """Add file handler for production logging"""

    log_dir = Path(os.getenv('ROOMCHAT_LOG_DIR', 'logs'))
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / "roomchat.log"
    handler = logging.FileHandler(log_file, encoding="utf-8")

    formatter = GenericFormatter(
        fmt='%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _supports_color() -> bool:
    """Check if terminal supports color output"""

    if not (hasattr(sys.stderr, "isatty") and sys.stderr.isatty()):
        return False

    return os.getenv("TERM", "") != "dumb" and not os.getenv("NO_COLOR")


# ========================================
#           CONVENIENCE FUNCTIONS
# ========================================

def configure_root_logging(level: str = "INFO") -> None:
    """
    Configure root logging for the entire application.
    Call this once at application startup.

    Args:
        level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
    """
    root_logger = logging.getLogger()
    _configure_logger(root_logger, level)
    # Module loggers configured earlier keep their own level otherwise
    for name in _loggers_configured:
        logging.getLogger(name).setLevel(_get_log_level(level))


def log_frame(logger: logging.Logger, level: str, message: str,
              frame: Optional[Any] = None,
              **context: Any) -> None:
    """
    Log a protocol event with structured context.

    Args:
        logger: Logger instance
        level: Log level ("debug", "info", "warning", "error")
        message: Log message
        frame: Classified inbound frame for automatic context extraction
        **context: Additional context fields (room, user, gen)

    Example:
        log_frame(logger, "debug", "Applied frame", frame=frame, gen=3)
    """

    extra_context = {}

    if frame is not None:
        frame_type = getattr(frame, 'type', None)
        extra_context['frame'] = getattr(frame_type, 'value', frame_type)

    extra_context.update({k: v for k, v in context.items() if v is not None})

    log_func = getattr(logger, level.lower())
    log_func(message, extra=extra_context)

"""Logging configuration for the MCP HTTP bridge."""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Dict, Any


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
BRIDGE_LOGGERS = ("bridge_server", "rpc_session", "stream_framer", "supervisor")
PEER_STDERR_LOGGER = "rpc_session.stderr"


def rotating_file_handler(
    log_file: str,
    level: int,
    log_format: str = DEFAULT_FORMAT,
    max_file_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> logging.Handler:
    """Create a size-rotated file handler, making the log directory if needed."""
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_file_size,
        backupCount=backup_count
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(log_format))
    return handler


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    max_file_size: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    enable_console: bool = True
) -> None:
    """Configure the root logger.

    The console handler writes to stderr: the bridge's stdout is reserved for
    whoever launched it, and uvicorn's own output goes through these handlers.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Also write to this file, rotated by size (optional)
        log_format: Custom log format (optional)
        max_file_size: Maximum log file size in bytes before rotation
        backup_count: Number of rotated files to keep
        enable_console: Whether to log to stderr
    """
    log_format = log_format or DEFAULT_FORMAT
    level = getattr(logging, log_level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(log_format))
        root_logger.addHandler(console_handler)

    if log_file:
        root_logger.addHandler(
            rotating_file_handler(log_file, level, log_format, max_file_size, backup_count)
        )


def setup_bridge_logging(config: Dict[str, Any]) -> None:
    """Setup logging for the bridge and its named loggers.

    ``peer_log_file``, when set, additionally collects the MCP server's stderr
    in a file of its own.

    Args:
        config: Configuration dictionary containing logging settings
    """
    log_level = config.get("log_level", "INFO")
    level = getattr(logging, log_level.upper())

    setup_logging(log_level=log_level, log_file=config.get("log_file"))

    for name in BRIDGE_LOGGERS:
        logging.getLogger(name).setLevel(level)

    peer_logger = logging.getLogger(PEER_STDERR_LOGGER)
    for handler in peer_logger.handlers[:]:
        peer_logger.removeHandler(handler)
        handler.close()
    if config.get("peer_log_file"):
        peer_logger.addHandler(rotating_file_handler(config["peer_log_file"], level))

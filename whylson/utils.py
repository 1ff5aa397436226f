"""
Utility functions for whylson.

Includes logging setup and the small file operations used by the context.
"""

import asyncio
import json
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


# Global console for pretty output
console = Console()


def setup_logging(
    log_file: Optional[Path] = None,
    log_level: str = "INFO",
    log_format: str = "pretty",
    console_output: bool = True,
) -> logging.Logger:
    """
    Set up logging for whylson.

    Args:
        log_file: Optional path to a log file
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (human-readable)
        console_output: Also log to console

    Returns:
        Configured logger
    """
    logger = logging.getLogger("whylson")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []  # Clear existing handlers

    # File handler
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        if log_format == "structured":
            file_handler.setFormatter(StructuredFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
        logger.addHandler(file_handler)

    # Console handler
    if console_output:
        if log_format == "pretty":
            console_handler = RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_time=False)
        else:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(
                logging.Formatter("%(levelname)s: %(message)s")
            )
        logger.addHandler(console_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "event"):
            log_data["event"] = record.event
        if hasattr(record, "metadata"):
            log_data["metadata"] = record.metadata

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


async def path_exists(path: Path) -> bool:
    """Check whether a file or directory exists."""
    return await asyncio.to_thread(path.exists)


async def read_text(path: Path) -> str:
    """
    Read a UTF-8 text file.

    Raises:
        OSError: If the file cannot be read
        UnicodeDecodeError: If the file is not valid UTF-8
    """
    return await asyncio.to_thread(path.read_text, encoding="utf-8")


async def delete_file(path: Path) -> bool:
    """
    Delete a file.

    Returns:
        True if the file was deleted, False if it did not exist

    Raises:
        OSError: If the file exists but cannot be deleted
    """
    try:
        await asyncio.to_thread(path.unlink)
    except FileNotFoundError:
        return False
    return True


async def remake_dir(path: Path, reset: bool = False) -> None:
    """
    Create a directory, optionally wiping it first.

    Args:
        path: Directory to create
        reset: Recursively delete existing contents first

    Raises:
        OSError: If deletion or creation fails
    """
    if reset and await path_exists(path):
        await asyncio.to_thread(shutil.rmtree, path)
    await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)

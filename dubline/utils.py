"""Utility functions for Dubline."""

import os
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from .exceptions import FileSystemError

logger = logging.getLogger(__name__)

_clock_lock = threading.Lock()
_last_stamp: Optional[datetime] = None


def ensure_dir_exists(dir_path: str) -> None:
    """
    Ensures that a directory exists. Creates it if it doesn't.

    Args:
        dir_path: The path to the directory.

    Raises:
        FileSystemError: If the directory cannot be created due to permissions
                         or if the path exists but is not a directory.
    """
    if not dir_path:
        raise ValueError("Directory path cannot be empty.")
    try:
        if not os.path.exists(dir_path):
            os.makedirs(dir_path)
            logger.info(f"Created directory: {dir_path}")
        elif not os.path.isdir(dir_path):
            raise FileSystemError(f"Path exists but is not a directory: {dir_path}", dir_path)
    except OSError as e:
        logger.error(f"Error creating or accessing directory {dir_path}: {e}", exc_info=True)
        raise FileSystemError(f"Could not create or access directory {dir_path}: {e}", dir_path) from e


def remove_quietly(file_path: Optional[str]) -> None:
    """Removes a working file if it exists, logging instead of raising."""
    if file_path and os.path.exists(file_path):
        try:
            os.remove(file_path)
            logger.debug(f"Removed working file: {file_path}")
        except OSError as e:
            logger.warning(f"Could not remove working file {file_path}: {e}")


def now() -> datetime:
    """
    Returns the current UTC time, strictly later than any previous call.

    Staleness checks compare timestamps with "strictly after"; two edits in
    the same clock tick must still be ordered, so a repeated reading is
    bumped by one microsecond.
    """
    global _last_stamp
    with _clock_lock:
        stamp = datetime.now(timezone.utc)
        if _last_stamp is not None and stamp <= _last_stamp:
            stamp = _last_stamp + timedelta(microseconds=1)
        _last_stamp = stamp
        return stamp


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Formats a timestamp as ISO-8601 with microseconds, or None."""
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parses an ISO-8601 timestamp written by format_timestamp.

    Empty strings and the zero time written by older state files count as
    missing.
    """
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if parsed.year <= 1:
        return None
    return parsed


def resolve_device(requested: str) -> str:
    """
    Returns the torch device local models should run on.

    Raises:
        ValueError: If requested is neither "cuda" nor "cpu".
    """
    if requested not in ("cuda", "cpu"):
        raise ValueError(f"Invalid device {requested!r}, expected 'cuda' or 'cpu'")
    if requested == "cpu":
        return requested

    import torch
    if not torch.cuda.is_available():
        logger.warning("CUDA requested but not available, local models run on CPU")
        return "cpu"
    return requested

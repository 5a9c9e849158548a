"""Splits long source audio into windows small enough for the transcriber."""

import logging
from dataclasses import dataclass
from typing import List

from .exceptions import ValidationError

logger = logging.getLogger(__name__)

# Upload limit of the hosted transcription endpoint
DEFAULT_LIMIT_BYTES = 25 * 1024 * 1024
DEFAULT_SAFETY_DIVISOR = 10


@dataclass(frozen=True)
class Window:
    """A [start, start + length) excerpt of the source, in seconds."""
    index: int
    start: float
    length: float

    @property
    def end(self) -> float:
        return self.start + self.length


def window_length(
    bitrate: int,
    limit_bytes: int = DEFAULT_LIMIT_BYTES,
    safety_divisor: int = DEFAULT_SAFETY_DIVISOR,
) -> int:
    """
    Whole seconds of audio at `bitrate` bits/s that fit in `limit_bytes`,
    divided by `safety_divisor` to absorb container and encoding overhead.

    Raises:
        ValidationError: For a non-positive bitrate, or when not even one
                         second fits in the limit.
    """
    if bitrate <= 0:
        raise ValidationError(f"Invalid bitrate {bitrate}", str(bitrate))
    if limit_bytes <= 0 or safety_divisor <= 0:
        raise ValidationError(f"Invalid limit {limit_bytes} or divisor {safety_divisor}")

    length = (limit_bytes * 8 // bitrate) // safety_divisor
    if length < 1:
        raise ValidationError(
            f"Bitrate {bitrate} too high for a {limit_bytes}B limit, window would be {length}s",
            str(bitrate),
        )
    return length


def plan_windows(
    duration: float,
    bitrate: int,
    limit_bytes: int = DEFAULT_LIMIT_BYTES,
    safety_divisor: int = DEFAULT_SAFETY_DIVISOR,
) -> List[Window]:
    """
    Covers [0, duration) with consecutive windows of `window_length` seconds.

    Windows never overlap or leave gaps; the last one is clipped to
    `duration`.
    """
    if duration <= 0:
        return []

    length = window_length(bitrate, limit_bytes, safety_divisor)
    windows = []
    start = 0
    index = 0
    while start < duration:
        windows.append(Window(index=index, start=float(start), length=float(min(length, duration - start))))
        index += 1
        start += length

    logger.info(f"Planned {len(windows)} windows of {length}s for duration={duration}, bitrate={bitrate}")
    return windows

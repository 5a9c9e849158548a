"""Joins a segment with the segment that immediately follows it."""

import logging
from typing import Tuple

from .exceptions import MergeOrderError
from .models import Segment, Timeline
from .utils import now

logger = logging.getLogger(__name__)


def _join(first: str, second: str) -> str:
    return " ".join(part for part in (first, second) if part)


def check_mergeable(timeline: Timeline, target_id: str, successor_id: str) -> Tuple[Segment, Segment]:
    """
    Resolves both ids and verifies that successor directly follows target.

    Adjacency is checked by identity on the current timeline, not by
    positions the caller may have seen before other edits.

    Raises:
        SegmentNotFoundError: If either id is unknown.
        MergeOrderError: If successor is removed or not target's next segment.
    """
    target = timeline.get(target_id)
    successor = timeline.get(successor_id)
    if successor.removed:
        raise MergeOrderError(f"Invalid next {successor.id}, it is removed", successor.id)
    previous = timeline.previous(successor)
    if previous is None or previous.id != target.id:
        raise MergeOrderError(f"Invalid {target.id} next {successor.id}, not adjacent", successor.id)
    return target, successor


def merged_translation(target: Segment, successor: Segment) -> str:
    """The translated text the merged segment will carry."""
    return _join(target.translated, successor.translated)


def merge_segments(timeline: Timeline, target: Segment, successor: Segment,
                   tts: str = "", tts_duration: float = 0.0) -> Segment:
    """
    Extends target over successor and drops successor from the timeline.

    Target keeps its id so clip names derived from it stay valid. The caller
    supplies the clip synthesized for the merged translation; merged speech
    content always differs from both halves, so the old clip never survives.
    """
    check_mergeable(timeline, target.id, successor.id)

    target.end = successor.end
    target.text = _join(target.text, successor.text)
    target.tokens = list(target.tokens) + list(successor.tokens)
    target.translated = merged_translation(target, successor)
    target.translated_at = now()
    target.tts = tts
    target.tts_duration = tts_duration
    target.tts_at = now() if tts else None

    timeline.remove(successor)
    logger.info(f"Merged {successor.id} into {target.id}, now {target.start}~{target.end}")
    return target

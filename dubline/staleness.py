"""
Decides whether a segment's derived fields must be regenerated.

Timestamp ordering is the only dirty marker: a translation is stale once the
text was updated after it, and a clip is stale once the translation changed
after it was synthesized.
"""

from datetime import datetime
from typing import Optional

from .models import Segment


def _strictly_after(a: Optional[datetime], b: Optional[datetime]) -> bool:
    # A missing stamp means "never"; it is older than any real one
    if a is None:
        return False
    if b is None:
        return True
    return a > b


def needs_translation(segment: Segment) -> bool:
    if segment.removed or not segment.text:
        return False
    return not segment.translated or _strictly_after(segment.updated_at, segment.translated_at)


def needs_synthesis(segment: Segment) -> bool:
    if segment.removed or not segment.text or not segment.translated:
        return False
    if not segment.tts or segment.tts_duration <= 0:
        return True
    return _strictly_after(segment.translated_at, segment.tts_at)

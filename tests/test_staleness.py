import pytest

from dubline.models import Segment, SegmentState
from dubline.staleness import needs_translation, needs_synthesis
from dubline.utils import now


def make_segment(**kwargs):
    fields = dict(start=0.0, end=2.0, text="hello world", updated_at=now())
    fields.update(kwargs)
    return Segment(**fields)


def translated(segment):
    segment.translated = "ni hao"
    segment.translated_at = now()
    return segment


def synthesized(segment):
    segment.tts = f"tts-{segment.id}.aac"
    segment.tts_duration = 1.5
    segment.tts_at = now()
    return segment


def test_untranslated_segment_needs_translation():
    assert needs_translation(make_segment())


def test_translation_is_fresh_until_text_changes():
    segment = translated(make_segment())
    assert not needs_translation(segment)

    segment.text = "hello there"
    segment.updated_at = now()
    assert needs_translation(segment)


def test_edit_in_same_clock_tick_still_counts_as_later():
    segment = translated(make_segment())
    segment.updated_at = now()
    assert segment.updated_at > segment.translated_at
    assert needs_translation(segment)


@pytest.mark.parametrize("kwargs", [
    {"state": SegmentState.REMOVED},
    {"text": ""},
])
def test_removed_or_empty_segment_never_needs_work(kwargs):
    assert not needs_translation(make_segment(**kwargs))

    segment = synthesized(translated(make_segment(**kwargs)))
    segment.tts_duration = 0.0
    assert not needs_synthesis(segment)


def test_synthesis_requires_translation():
    assert not needs_synthesis(make_segment())
    assert needs_synthesis(translated(make_segment()))


def test_synthesis_is_fresh_until_translation_changes():
    segment = synthesized(translated(make_segment()))
    assert not needs_synthesis(segment)

    segment.translated = "ni hao ma"
    segment.translated_at = now()
    assert needs_synthesis(segment)


def test_unprobed_clip_needs_synthesis():
    segment = synthesized(translated(make_segment()))
    segment.tts_duration = 0.0
    assert needs_synthesis(segment)


def test_missing_timestamps_are_never_newer():
    segment = make_segment(updated_at=None)
    segment.translated = "ni hao"
    segment.translated_at = None
    assert not needs_translation(segment)

    segment = make_segment()
    segment.translated = "ni hao"
    segment.translated_at = None
    assert needs_translation(segment)

import glob
import os

import pytest
from pydub import AudioSegment

from dubline.exceptions import FileSystemError
from dubline.models import Segment, SegmentState, Timeline
from dubline.reconstructor import ExportReconstructor
from conftest import FakeTranscoder

RATE = 8000


@pytest.fixture
def clip_transcoder():
    return FakeTranscoder()


@pytest.fixture
def reconstructor(clip_transcoder):
    return ExportReconstructor(clip_transcoder, sample_rate=RATE)


def clip(work_dir, segment, seconds):
    segment.tts = f"tts-{segment.id}.aac"
    segment.tts_duration = seconds
    with open(os.path.join(work_dir, segment.tts), "w") as f:
        f.write(f"{seconds}")
    return segment


def render(reconstructor, timeline, work_dir):
    track_path = os.path.join(work_dir, "track.wav")
    result = reconstructor.build_track(timeline, work_dir, track_path)
    return result, AudioSegment.from_wav(track_path)


def test_unsynthesized_segment_is_silence_up_to_its_end(reconstructor, tmp_path):
    timeline = Timeline(segments=[Segment(start=2.0, end=5.0, text="hi")])

    result, track = render(reconstructor, timeline, str(tmp_path))

    assert result.duration == pytest.approx(5.0)
    assert len(track) == 5000
    assert track[:2000].rms == 0
    assert track[2000:5000].rms == 0
    assert result.warnings == []


def test_clip_starts_at_segment_start_and_is_padded(reconstructor, tmp_path):
    work_dir = str(tmp_path)
    segment = clip(work_dir, Segment(start=1.0, end=4.0, text="hi"), 1.5)

    result, track = render(reconstructor, Timeline(segments=[segment]), work_dir)

    assert result.duration == pytest.approx(4.0)
    assert track[:1000].rms == 0
    assert track[1000:2500].rms > 0
    assert track[2500:4000].rms == 0
    assert glob.glob(os.path.join(work_dir, "tts-*.wav")) == []


def test_long_clip_overruns_and_is_reported(reconstructor, tmp_path):
    work_dir = str(tmp_path)
    long_one = clip(work_dir, Segment(start=0.0, end=1.0, text="long"), 2.5)
    after = Segment(start=1.5, end=3.0, text="after")

    result, track = render(reconstructor, Timeline(segments=[long_one, after]), work_dir)

    # 2.5s clip, no trailing pad, 0.5s gap, 1.5s silent span
    assert result.duration == pytest.approx(4.5)
    assert len(result.warnings) == 1
    warning = result.warnings[0]
    assert warning.segment_id == long_one.id
    assert warning.overrun == pytest.approx(1.5)
    assert track[:2500].rms > 0


def test_removed_segment_is_silent(reconstructor, clip_transcoder, tmp_path):
    work_dir = str(tmp_path)
    segment = clip(work_dir, Segment(start=0.0, end=2.0, text="gone"), 1.0)
    segment.state = SegmentState.REMOVED

    result, track = render(reconstructor, Timeline(segments=[segment]), work_dir)

    assert result.duration == pytest.approx(2.0)
    assert track.rms == 0
    assert clip_transcoder.converted == []


def test_rebuilding_gives_same_duration(reconstructor, tmp_path):
    work_dir = str(tmp_path)
    first = clip(work_dir, Segment(start=0.5, end=2.0, text="a"), 1.0)
    second = clip(work_dir, Segment(start=2.0, end=3.25, text="b"), 2.0)
    timeline = Timeline(segments=[first, second])

    one, _ = render(reconstructor, timeline, work_dir)
    two, _ = render(reconstructor, timeline, work_dir)

    assert one.duration == two.duration
    assert len(one.warnings) == len(two.warnings) == 1


def test_export_encodes_track_for_delivery(reconstructor, tmp_path):
    work_dir = str(tmp_path)
    segment = clip(work_dir, Segment(start=0.0, end=1.0, text="a"), 0.5)

    result = reconstructor.export(Timeline(segments=[segment]), work_dir, "sid-9")

    assert result.path == os.path.join(work_dir, "audio-sid-9.mp4")
    assert os.path.exists(result.path)
    assert result.track.path == os.path.join(work_dir, "audio-sid-9.wav")
    assert result.track.duration == pytest.approx(1.0)


def test_editor_export(editor, transcribed):
    timeline = editor.timeline(transcribed.sid)
    first = timeline.segments[0]
    editor.translate(transcribed.sid, first.id)
    editor.synthesize(transcribed.sid, first.id)

    result = editor.export(transcribed.sid)

    assert result.track.duration == pytest.approx(400.0, abs=0.01)
    assert result.track.warnings == []
    assert os.path.dirname(result.path) == transcribed.main_dir


def test_undecodable_clip_is_a_file_system_error(reconstructor, clip_transcoder, tmp_path, monkeypatch):
    def garbage(input_path, output_path, sample_rate):
        with open(output_path, "wb") as f:
            f.write(b"not a wav")
        return output_path

    monkeypatch.setattr(clip_transcoder, "to_track_wav", garbage)
    segment = clip(str(tmp_path), Segment(start=0.0, end=1.0, text="hi"), 1.0)

    with pytest.raises(FileSystemError) as excinfo:
        render(reconstructor, Timeline(segments=[segment]), str(tmp_path))

    assert excinfo.value.identifier.endswith(".wav")
    assert not os.path.exists(excinfo.value.identifier)

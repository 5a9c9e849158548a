import os
import shutil

import pytest
from pydub.generators import Sine

from dubline.exceptions import SynthesisError, TranscriptionError, TranslationError
from dubline.media import ProbeResult
from dubline.models import TranscriptionResult, TranscriptSpan
from dubline.project import ProjectStore
from dubline.editor import DubbingEditor


class FakeTranscoder:
    """Stands in for ffmpeg: clip files hold their duration as text."""

    def __init__(self, source_duration=0.0, bitrate=128000):
        self.source_duration = source_duration
        self.bitrate = bitrate
        self.excerpts = []
        self.converted = []

    def extract_audio(self, input_path, output_path):
        with open(output_path, "w") as f:
            f.write("source")
        return output_path

    def cut_excerpt(self, input_path, output_path, start, length):
        self.excerpts.append((start, length))
        with open(output_path, "w") as f:
            f.write(f"{length}")
        return output_path

    def probe(self, input_path):
        with open(input_path) as f:
            content = f.read()
        if content == "source":
            return ProbeResult(duration=self.source_duration, bitrate=self.bitrate)
        return ProbeResult(duration=float(content), bitrate=64000)

    def to_track_wav(self, input_path, output_path, sample_rate):
        with open(input_path) as f:
            duration = float(f.read())
        self.converted.append(input_path)
        tone = Sine(440, sample_rate=sample_rate).to_audio_segment(duration=duration * 1000.0)
        tone.set_channels(1).set_sample_width(2).export(output_path, format="wav")
        return output_path

    def to_delivery(self, input_path, output_path):
        shutil.copyfile(input_path, output_path)
        return output_path


class FakeTranscriber:
    def __init__(self, spans_per_window=2, fail_on_call=None):
        self.spans_per_window = spans_per_window
        self.fail_on_call = fail_on_call
        self.calls = []

    def transcribe(self, audio_path, language=None):
        self.calls.append((audio_path, language))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise TranscriptionError(f"boom {audio_path}", audio_path)
        with open(audio_path) as f:
            length = float(f.read())
        step = length / self.spans_per_window
        spans = [
            TranscriptSpan(start=i * step, end=(i + 1) * step, text=f"words {len(self.calls)}.{i}", id=i,
                           tokens=[i])
            for i in range(self.spans_per_window)
        ]
        return TranscriptionResult(language="english", duration=length,
                                   text=" ".join(s.text for s in spans), spans=spans)


class FakeTranslator:
    def __init__(self):
        self.calls = []
        self.fail = False

    def complete(self, messages, model=None):
        self.calls.append((list(messages), model))
        if self.fail:
            raise TranslationError("translator down")
        return f"T[{messages[-1].content}]"


class FakeSynthesizer:
    """Writes a clip whose duration is len(text) / 10 seconds unless fixed."""

    def __init__(self, duration=None):
        self.duration = duration
        self.calls = []
        self.fail = False

    def synthesize(self, text, output_path):
        self.calls.append((text, output_path))
        if self.fail:
            raise SynthesisError("tts down", output_path)
        duration = self.duration if self.duration is not None else len(text) / 10.0
        with open(output_path, "w") as f:
            f.write(f"{duration}")
        return output_path


@pytest.fixture
def config():
    return {
        'track_sample_rate': 8000,
        'min_silence_seconds': 0.01,
        'asr_language': 'en',
        'asr_limit_bytes': 25 * 1024 * 1024,
        'asr_safety_divisor': 10,
        'translate_prompt': 'translate please',
        'shorter_prompt': 'shorter please',
        'translation_model': 'chat-model',
        'shorter_model': 'big-model',
        'tts_format': 'aac',
        'resource_prefix': '/api/vod-translator/resources/',
        'static_dir': 'static',
    }


@pytest.fixture
def store(tmp_path):
    s = ProjectStore(str(tmp_path / "work"), start_watchers=False)
    yield s
    s.close()


@pytest.fixture
def transcoder():
    return FakeTranscoder(source_duration=400.0, bitrate=128000)


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def translator():
    return FakeTranslator()


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def editor(config, store, transcoder, transcriber, translator, synthesizer):
    return DubbingEditor(config, store, transcoder, transcriber, translator, synthesizer)


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "talk.mp4"
    path.write_bytes(b"\x00")
    return str(path)


@pytest.fixture
def transcribed(editor, source_file):
    """A project whose 400s source was transcribed in three windows."""
    project = editor.create_project("sid-1")
    editor.transcribe(project.sid, source_file)
    return project

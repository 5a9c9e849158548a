"""Handles Speech-to-Text transcription of audio excerpts."""

import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

from .models import TranscriptionResult, TranscriptSpan
from .exceptions import TranscriptionError
from .openai_api import OpenAIClient, OpenAIAPIError
from .utils import resolve_device

logger = logging.getLogger(__name__)


class Transcriber(ABC):
    """Abstract base class for transcription services."""

    @abstractmethod
    def transcribe(self, audio_path: str, language: Optional[str] = None) -> TranscriptionResult:
        """
        Transcribes the given audio excerpt.

        Args:
            audio_path: Path to the audio file.
            language: Language hint; None lets the model detect it.

        Returns:
            A TranscriptionResult with spans relative to the excerpt start.

        Raises:
            TranscriptionError: If transcription fails.
            FileNotFoundError: If the audio file doesn't exist.
        """
        pass


def _span_from_dict(seg_data: dict) -> TranscriptSpan:
    return TranscriptSpan(
        start=float(seg_data['start']),
        end=float(seg_data['end']),
        text=seg_data['text'].strip(),
        id=int(seg_data.get('id', 0)),
        seek=int(seg_data.get('seek', 0)),
        tokens=list(seg_data.get('tokens') or []),
        temperature=float(seg_data.get('temperature', 0.0)),
        avg_logprob=float(seg_data.get('avg_logprob', 0.0)),
        compression_ratio=float(seg_data.get('compression_ratio', 0.0)),
        no_speech_prob=float(seg_data.get('no_speech_prob', 0.0)),
        transient=bool(seg_data.get('transient', False)),
    )


def result_from_verbose_json(result: dict, audio_path: str) -> TranscriptionResult:
    """Converts a whisper-style verbose transcript into a TranscriptionResult."""
    spans = []
    for seg_data in result.get('segments') or []:
        if 'start' in seg_data and 'end' in seg_data and 'text' in seg_data:
            spans.append(_span_from_dict(seg_data))
        else:
            logger.warning(f"Skipping incomplete segment data: {seg_data}")
    if not spans:
        logger.warning(f"Transcription of {audio_path} did not contain any segments.")

    return TranscriptionResult(
        language=result.get('language'),
        duration=float(result.get('duration') or (spans[-1].end if spans else 0.0)),
        text=(result.get('text') or '').strip(),
        task=result.get('task') or 'transcribe',
        spans=spans,
    )


class OpenAITranscriber(Transcriber):
    """Transcribes through the hosted audio/transcriptions endpoint."""

    def __init__(self, client: OpenAIClient, model: str = "whisper-1"):
        self.client = client
        self.model = model

    def transcribe(self, audio_path: str, language: Optional[str] = None) -> TranscriptionResult:
        logger.info(f"Starting transcription for: {audio_path}")
        if not os.path.exists(audio_path):
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        data = {'model': self.model, 'response_format': 'verbose_json'}
        if language:
            data['language'] = language
        try:
            with open(audio_path, 'rb') as f:
                result = self.client.post_json(
                    'audio/transcriptions',
                    data=data,
                    files={'file': (os.path.basename(audio_path), f)},
                )
        except OpenAIAPIError as e:
            logger.error(f"Transcription request failed for {audio_path}: {e}")
            raise TranscriptionError(f"Transcription failed for {audio_path}: {e}", audio_path) from e

        transcription = result_from_verbose_json(result, audio_path)
        logger.info(f"ASR ok for {audio_path}, text is <{len(transcription.text)}>B, "
                    f"spans={len(transcription.spans)}, language={transcription.language}")
        return transcription


class WhisperTranscriber(Transcriber):
    """Runs an openai-whisper checkpoint in-process; no upload limit applies."""

    def __init__(self, model_name: str = "medium", device: str = "cuda", fp16: bool = True):
        import whisper

        self.model_name = model_name
        self.device = resolve_device(device)
        # Half precision is only supported on CUDA
        self.fp16 = fp16 and self.device == "cuda"

        logger.info(f"Loading whisper model '{model_name}' on {self.device}, fp16={self.fp16}")
        try:
            self.model = whisper.load_model(model_name, device=self.device)
        except Exception as e:
            logger.error(f"Failed to load whisper model '{model_name}': {e}", exc_info=True)
            raise TranscriptionError(f"Failed to load whisper model '{model_name}': {e}", model_name) from e

    def transcribe(self, audio_path: str, language: Optional[str] = None) -> TranscriptionResult:
        if not os.path.exists(audio_path):
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        logger.info(f"Local ASR of {audio_path}, language={language}")
        try:
            result = self.model.transcribe(audio_path, language=language, fp16=self.fp16, verbose=None)
        except Exception as e:
            logger.error(f"Whisper failed on {audio_path}: {e}", exc_info=True)
            raise TranscriptionError(f"Whisper transcription failed for {audio_path}: {e}", audio_path) from e

        transcription = result_from_verbose_json(result, audio_path)
        logger.info(f"Local ASR ok for {audio_path}, language={transcription.language}, "
                    f"spans={len(transcription.spans)}")
        return transcription

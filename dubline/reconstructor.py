"""Rebuilds one continuous dubbed track from the timeline's synthesized clips."""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from pydub import AudioSegment

from .exceptions import FileSystemError
from .media import MediaTranscoder
from .models import Timeline
from .utils import remove_quietly

logger = logging.getLogger(__name__)

SAMPLE_WIDTH = 2  # 16-bit PCM
CHANNELS = 1


@dataclass
class DriftWarning:
    """A clip that ran longer than the span it replaces."""
    segment_id: str
    span: float
    clip_duration: float

    @property
    def overrun(self) -> float:
        return self.clip_duration - self.span


@dataclass
class TrackResult:
    path: str
    duration: float
    warnings: List[DriftWarning] = field(default_factory=list)


@dataclass
class ExportResult:
    path: str
    track: TrackResult


class ExportReconstructor:
    """
    Places every clip at its segment's original start time.

    Clips are never stretched or trimmed: a short clip is padded with
    silence up to the segment end, a long one overruns and is reported as a
    DriftWarning. Each call rebuilds the whole track.
    """

    def __init__(self, transcoder: MediaTranscoder, sample_rate: int = 16000, min_silence: float = 0.01):
        self.transcoder = transcoder
        self.sample_rate = sample_rate
        self.min_silence = min_silence

    def _silence(self, duration: float) -> Optional[AudioSegment]:
        # Degenerate and negative gaps produce no write at all
        if duration < self.min_silence:
            return None
        return AudioSegment.silent(duration=duration * 1000.0, frame_rate=self.sample_rate)

    def _load_clip(self, clip_path: str, wav_path: str) -> AudioSegment:
        self.transcoder.to_track_wav(clip_path, wav_path, self.sample_rate)
        try:
            clip = AudioSegment.from_wav(wav_path)
        except Exception as e:
            raise FileSystemError(f"Could not decode {wav_path}: {e}", wav_path) from e
        finally:
            remove_quietly(wav_path)
        return clip.set_frame_rate(self.sample_rate).set_channels(CHANNELS).set_sample_width(SAMPLE_WIDTH)

    def build_track(self, timeline: Timeline, work_dir: str, track_path: str) -> TrackResult:
        """
        Writes the uncompressed track for `timeline` to track_path.

        Args:
            timeline: The timeline to render, in its stored order.
            work_dir: Directory holding the synthesized clips.
            track_path: Destination WAV path.

        Returns:
            A TrackResult with the track duration and any drift warnings.

        Raises:
            TranscodeError: If a clip cannot be converted.
            FileSystemError: If a clip cannot be decoded or the track written.
        """
        pieces: List[AudioSegment] = []
        warnings: List[DriftWarning] = []

        def insert_silence(duration: float) -> None:
            silence = self._silence(duration)
            if silence is not None:
                logger.debug(f"Write wav ok, silent={duration:.3f}")
                pieces.append(silence)

        previous_end = 0.0
        for segment in timeline:
            logger.debug(f"Handle segment {segment.id}, time {segment.start}~{segment.end}")
            insert_silence(segment.start - previous_end)
            previous_end = segment.end

            if segment.removed or not segment.tts:
                insert_silence(segment.span)
                continue

            clip_path = os.path.join(work_dir, segment.tts)
            wav_path = os.path.join(work_dir, f"tts-{segment.id}.wav")
            clip = self._load_clip(clip_path, wav_path)
            pieces.append(clip)

            clip_duration = clip.frame_count() / self.sample_rate
            logger.debug(f"Write wav ok, duration={segment.tts_duration}, data={clip_duration:.3f}")
            if clip_duration - segment.span >= self.min_silence:
                warning = DriftWarning(segment.id, segment.span, clip_duration)
                warnings.append(warning)
                logger.warning(f"Segment {segment.id} speech runs {warning.overrun:.2f}s over its "
                               f"{segment.span:.2f}s span")
            insert_silence(segment.span - clip_duration)

        track = AudioSegment(
            data=b"".join(piece.raw_data for piece in pieces),
            sample_width=SAMPLE_WIDTH,
            frame_rate=self.sample_rate,
            channels=CHANNELS,
        )
        try:
            track.export(track_path, format="wav")
        except OSError as e:
            raise FileSystemError(f"Could not write track {track_path}: {e}", track_path) from e

        duration = track.frame_count() / self.sample_rate
        logger.info(f"All segments are converted, track={track_path}, duration={duration:.3f}s, "
                    f"warnings={len(warnings)}")
        return TrackResult(path=track_path, duration=duration, warnings=warnings)

    def export(self, timeline: Timeline, work_dir: str, name: str) -> ExportResult:
        """Builds the track and encodes it once into the delivery container."""
        track_path = os.path.join(work_dir, f"audio-{name}.wav")
        delivery_path = os.path.join(work_dir, f"audio-{name}.mp4")
        track = self.build_track(timeline, work_dir, track_path)
        self.transcoder.to_delivery(track_path, delivery_path)
        logger.info(f"Convert to aac {delivery_path} ok")
        return ExportResult(path=delivery_path, track=track)

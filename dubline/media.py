"""Runs ffmpeg and ffprobe for every media conversion Dubline needs."""

import ffmpeg
import os
import logging
from dataclasses import dataclass
from typing import Optional

from .exceptions import TranscodeError, FileSystemError
from .utils import ensure_dir_exists, remove_quietly

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    duration: float
    bitrate: int


class MediaTranscoder:
    """Extracts, cuts, probes and converts audio with ffmpeg."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        delivery_sample_rate: int = 44100,
        delivery_channels: int = 2,
        delivery_bitrate: str = "120k",
    ):
        """
        Initializes the MediaTranscoder.

        Args:
            ffmpeg_path: Optional path to the ffmpeg executable.
                         If None, assumes ffmpeg is in the system PATH.
            ffprobe_path: Optional path to the ffprobe executable.
            delivery_sample_rate: Sample rate of the exported container.
            delivery_channels: Channel count of the exported container.
            delivery_bitrate: AAC bitrate of the exported container.
        """
        self.ffmpeg_cmd = ffmpeg_path or 'ffmpeg'
        self.ffprobe_cmd = ffprobe_path or 'ffprobe'
        self.delivery_sample_rate = delivery_sample_rate
        self.delivery_channels = delivery_channels
        self.delivery_bitrate = delivery_bitrate
        logger.info(f"Using ffmpeg command: {self.ffmpeg_cmd}, ffprobe command: {self.ffprobe_cmd}")

    def _run(self, stream, output_path: str, step: str) -> str:
        try:
            stream.overwrite_output().run(cmd=self.ffmpeg_cmd, capture_stdout=True, capture_stderr=True)
        except ffmpeg.Error as e:
            stderr_output = e.stderr.decode('utf-8', errors='replace') if e.stderr else "No stderr output"
            logger.error(f"ffmpeg failed to {step} {output_path}: {stderr_output}")
            # Partially written output must not be mistaken for a result
            remove_quietly(output_path)
            raise TranscodeError(f"ffmpeg failed to {step} {output_path}: {stderr_output}", output_path) from e
        except OSError as e:
            logger.error(f"Could not run {self.ffmpeg_cmd} to {step} {output_path}: {e}", exc_info=True)
            raise TranscodeError(f"Could not run {self.ffmpeg_cmd}: {e}", output_path) from e
        logger.info(f"ffmpeg {step} ok: {output_path}")
        return output_path

    def extract_audio(self, input_path: str, output_path: str) -> str:
        """
        Extracts the audio stream of any media file into mono 16kHz AAC.

        Args:
            input_path: Path to the source media file.
            output_path: Path of the .m4a file to write.

        Returns:
            output_path.

        Raises:
            FileNotFoundError: If the input file does not exist.
            TranscodeError: If ffmpeg fails.
            FileSystemError: If the output directory cannot be created/accessed.
        """
        logger.info(f"Starting audio extraction for: {input_path}")
        if not os.path.exists(input_path):
            raise FileNotFoundError(f"Input media file not found: {input_path}")
        ensure_dir_exists(os.path.dirname(output_path) or '.')

        stream = ffmpeg.input(input_path).output(
            output_path, vn=None, acodec='aac', ac=1, ar=16000, audio_bitrate='50k')
        return self._run(stream, output_path, "extract audio")

    def cut_excerpt(self, input_path: str, output_path: str, start: float, length: float) -> str:
        """Copies [start, start + length) of input_path without re-encoding."""
        stream = ffmpeg.input(input_path).output(output_path, ss=start, t=length, c='copy')
        return self._run(stream, output_path, f"cut excerpt at {start}s")

    def to_track_wav(self, input_path: str, output_path: str, sample_rate: int) -> str:
        """Decodes a clip into mono 16-bit PCM WAV at the export track's rate."""
        if not os.path.exists(input_path):
            raise FileSystemError(f"Clip not found: {input_path}", input_path)
        stream = ffmpeg.input(input_path).output(
            output_path, vn=None, acodec='pcm_s16le', ac=1, ar=sample_rate)
        return self._run(stream, output_path, "convert clip")

    def to_delivery(self, input_path: str, output_path: str) -> str:
        """Encodes the assembled track into the AAC/MP4 delivery container."""
        stream = ffmpeg.input(input_path).output(
            output_path,
            vn=None,
            acodec='aac',
            ac=self.delivery_channels,
            ar=self.delivery_sample_rate,
            audio_bitrate=self.delivery_bitrate,
        )
        return self._run(stream, output_path, "encode delivery")

    def probe(self, input_path: str) -> ProbeResult:
        """
        Reads container duration and bitrate with ffprobe.

        Raises:
            TranscodeError: If ffprobe fails or reports no usable values.
        """
        try:
            info = ffmpeg.probe(input_path, cmd=self.ffprobe_cmd)
        except ffmpeg.Error as e:
            stderr_output = e.stderr.decode('utf-8', errors='replace') if e.stderr else "No stderr output"
            logger.error(f"ffprobe failed for {input_path}: {stderr_output}")
            raise TranscodeError(f"ffprobe failed for {input_path}: {stderr_output}", input_path) from e
        except OSError as e:
            raise TranscodeError(f"Could not run {self.ffprobe_cmd}: {e}", input_path) from e

        fmt = info.get('format', {})
        try:
            duration = float(fmt['duration'])
            bitrate = int(fmt.get('bit_rate') or 0)
        except (KeyError, TypeError, ValueError) as e:
            raise TranscodeError(f"Unusable probe result for {input_path}: {fmt}", input_path) from e

        logger.info(f"Probed {input_path}: duration={duration}, bitrate={bitrate}")
        return ProbeResult(duration=duration, bitrate=bitrate)

"""Orchestrates the editing operations exposed to the web layer."""

import logging
import os
import time
from typing import List, Optional

from .chunk_planner import plan_windows, DEFAULT_LIMIT_BYTES, DEFAULT_SAFETY_DIVISOR
from .config_loader import DEFAULT_TRANSLATE_PROMPT, DEFAULT_SHORTER_PROMPT
from .exceptions import (
    ConfigurationError, DublineError, FileSystemError, SegmentNotFoundError, TranscodeError,
    TranscriptionError, ValidationError,
)
from .media import MediaTranscoder
from .merge import check_mergeable, merge_segments, merged_translation
from .models import Segment, SegmentState, Timeline
from .project import Project, ProjectStore
from .reconstructor import ExportReconstructor, ExportResult
from .staleness import needs_translation, needs_synthesis
from .synthesizer import SpeechSynthesizer
from .transcriber import Transcriber
from .translator import Translator, ChatMessage, SYSTEM, USER, ASSISTANT
from .utils import now, remove_quietly

logger = logging.getLogger(__name__)


class DubbingEditor:
    """
    Runs one operation at a time against a project's timeline.

    Every operation either completes and persists, or raises a typed error
    leaving the segment as it was. Nothing is retried here; see batch.py.
    """

    def __init__(
        self,
        config: dict,
        store: ProjectStore,
        transcoder: MediaTranscoder,
        transcriber: Optional[Transcriber] = None,
        translator: Optional[Translator] = None,
        synthesizer: Optional[SpeechSynthesizer] = None,
    ):
        """
        Initializes the DubbingEditor.

        Args:
            config: A dictionary containing configuration settings.
            store: The registry of live projects.
            transcoder: ffmpeg wrapper for every media conversion.
            transcriber: Speech-to-text service, needed by transcribe().
            translator: Chat translation service, needed by translate().
            synthesizer: Text-to-speech service, needed by synthesize().
        """
        self.config = config
        self.store = store
        self.transcoder = transcoder
        self.transcriber = transcriber
        self.translator = translator
        self.synthesizer = synthesizer
        self.reconstructor = ExportReconstructor(
            transcoder,
            sample_rate=config.get('track_sample_rate', 16000),
            min_silence=config.get('min_silence_seconds', 0.01),
        )

    # --- Projects ---

    def create_project(self, sid: Optional[str] = None) -> Project:
        """Creates a project, or reopens a persisted one and restarts its idle time."""
        project = self.store.create(sid)
        project.touch()
        project.save()
        return project

    def load_project(self, sid: str) -> Project:
        """Returns the live project for sid, creating or reloading it as needed."""
        return self.create_project(sid)

    def _project(self, sid: str) -> Project:
        project = self.store.open(sid)
        project.touch()
        project.save()
        return project

    def _service(self, name: str):
        service = getattr(self, name)
        if service is None:
            raise ConfigurationError(f"No {name} configured")
        return service

    def _timeline(self, project: Project) -> Timeline:
        if project.timeline is None:
            raise ValidationError(f"Project {project.sid} has no transcription yet", project.sid)
        return project.timeline

    def timeline(self, sid: str) -> Timeline:
        return self._timeline(self._project(sid))

    def _segment(self, sid: str, segment_id: str):
        project = self._project(sid)
        return project, self._timeline(project).get(segment_id)

    # --- Transcription ---

    def _resolve_input(self, input_url: str) -> str:
        prefix = self.config.get('resource_prefix')
        if prefix and input_url.startswith(prefix):
            return os.path.join(self.config.get('static_dir', 'static'), input_url[len(prefix):])
        return input_url

    def transcribe(self, sid: str, input_url: Optional[str] = None, force: bool = False) -> Timeline:
        """
        Builds the project's timeline from its source media.

        The source is reduced to mono 16kHz AAC once, planned into windows
        that fit the transcriber's upload limit, and each window is
        transcribed and persisted as soon as it is appended. Windows already
        recorded as completed are skipped, so an interrupted load resumes.

        Args:
            sid: The project session id.
            input_url: Source media reference; defaults to the project's.
            force: Discard any saved timeline and transcribe from scratch.

        Returns:
            The (possibly resumed) complete timeline.

        Raises:
            ValidationError: If no source is known.
            FileSystemError: If the source media does not exist.
            TranscodeError: If extraction, cutting or probing fails.
            TranscriptionError: If a window fails; already appended windows
                                stay persisted.
        """
        project = self.load_project(sid)
        if force:
            project.discard_timeline()
            remove_quietly(project.source_audio)
        if project.timeline is not None and project.timeline.complete:
            logger.info(f"Project {sid} already transcribed, {len(project.timeline)} segments")
            return project.timeline

        if not os.path.exists(project.source_audio):
            input_url = input_url or project.input_url
            if not input_url:
                raise ValidationError(f"Project {sid} has no input media", sid)
            project.input_url = input_url
            project.save()

            input_file = self._resolve_input(input_url)
            if not os.path.exists(input_file):
                raise FileSystemError(f"No file {input_file}", input_file)
            self.transcoder.extract_audio(input_file, project.source_audio)

        probe = self.transcoder.probe(project.source_audio)
        if probe.bitrate <= 0:
            raise TranscodeError(f"ffprobe reported no bitrate for {project.source_audio}", project.source_audio)
        windows = plan_windows(
            probe.duration,
            probe.bitrate,
            limit_bytes=self.config.get('asr_limit_bytes', DEFAULT_LIMIT_BYTES),
            safety_divisor=self.config.get('asr_safety_divisor', DEFAULT_SAFETY_DIVISOR),
        )

        if project.timeline is None:
            project.timeline = Timeline()
        timeline = project.timeline
        done = set(timeline.completed_windows)
        language = self.config.get('asr_language') or None

        for window in windows:
            if window.start in done:
                logger.info(f"Skip window {window.index} at {window.start}s, already transcribed")
                continue
            excerpt = os.path.join(project.main_dir, f"input-{window.start}.m4a")
            try:
                self.transcoder.cut_excerpt(project.source_audio, excerpt, window.start, window.length)
                logger.info(f"Convert to segment {excerpt} ok, starttime={window.start}")
                try:
                    result = self._service("transcriber").transcribe(excerpt, language)
                except FileNotFoundError as e:
                    raise TranscriptionError(f"Excerpt vanished: {excerpt}", excerpt) from e
            except DublineError as e:
                logger.error(f"Transcription of project {sid} failed at window start={window.start}, "
                             f"length={window.length}: {e}")
                raise
            finally:
                remove_quietly(excerpt)

            timeline.append_window(result, window.start)
            project.save_timeline()
            logger.info(f"ASR ok, project={sid}, window={window.index}, segments={len(timeline)}")

        timeline.complete = True
        project.save_timeline()
        return timeline

    # --- Segment edits ---

    def get_segment(self, sid: str, segment_id: str) -> Segment:
        return self._segment(sid, segment_id)[1]

    def update_segment(
        self,
        sid: str,
        segment_id: str,
        text: Optional[str] = None,
        translated: Optional[str] = None,
        removed: Optional[bool] = None,
    ) -> Segment:
        """
        Applies user edits to one segment.

        Changing the text makes the translation stale; changing the
        translation makes the clip stale. Removal is a soft delete and can be
        undone with removed=False.
        """
        project, target = self._segment(sid, segment_id)
        if text is not None and text != target.text:
            target.text = text
            target.updated_at = now()
        if translated is not None and translated != target.translated:
            target.translated = translated
            target.translated_at = now()
        if removed is not None:
            target.state = SegmentState.REMOVED if removed else SegmentState.ACTIVE
        project.save_timeline()
        return target

    def _previous_pair(self, timeline: Timeline, target: Segment) -> Optional[Segment]:
        previous = timeline.previous(target)
        if previous is not None and previous.text and previous.translated:
            return previous
        return None

    def translate(self, sid: str, segment_id: str) -> Segment:
        """Translates a segment when its translation is missing or stale."""
        project, target = self._segment(sid, segment_id)
        if not needs_translation(target):
            logger.info(f"Ignore translation for {target.id}")
            return target

        messages = [ChatMessage(SYSTEM, self.config.get('translate_prompt', DEFAULT_TRANSLATE_PROMPT))]
        previous = self._previous_pair(project.timeline, target)
        if previous is not None:
            messages.append(ChatMessage(USER, previous.text))
            messages.append(ChatMessage(ASSISTANT, previous.translated))
        messages.append(ChatMessage(USER, target.text))

        translated = self._complete(messages, target, self.config.get('translation_model'))
        target.translated = translated
        target.translated_at = now()
        project.save_timeline()
        return target

    def make_shorter(self, sid: str, segment_id: str) -> Segment:
        """Rewrites a segment's translation to be shorter, unconditionally."""
        project, target = self._segment(sid, segment_id)
        if not target.translated:
            raise ValidationError(f"Segment {target.id} has no translation to shorten", target.id)

        messages = [ChatMessage(SYSTEM, self.config.get('shorter_prompt', DEFAULT_SHORTER_PROMPT))]
        previous = project.timeline.previous(target)
        if previous is not None and previous.translated:
            messages.append(ChatMessage(USER, previous.translated))
            messages.append(ChatMessage(ASSISTANT, previous.translated))
        messages.append(ChatMessage(USER, target.translated))

        shorter = self._complete(messages, target, self.config.get('shorter_model'))
        target.translated = shorter
        target.translated_at = now()
        project.save_timeline()
        return target

    def _complete(self, messages: List[ChatMessage], target: Segment, model: Optional[str]) -> str:
        try:
            return self._service("translator").complete(messages, model=model)
        except DublineError as e:
            if e.identifier is None:
                e.identifier = target.id
            raise

    # --- Synthesis ---

    def _render_clip(self, project: Project, target: Segment, text: str):
        """
        Synthesizes text for target into its deterministic clip name.

        The clip is written and probed under a temporary name first, so a
        failure leaves the previous clip and segment fields untouched.
        """
        ext = self.config.get('tts_format', 'aac')
        clip_name = f"tts-{target.id}.{ext}"
        clip_path = project.clip_path(clip_name)
        tmp_path = project.clip_path(f"tts-{target.id}.tmp.{ext}")
        try:
            self._service("synthesizer").synthesize(text, tmp_path)
            duration = self.transcoder.probe(tmp_path).duration
            os.replace(tmp_path, clip_path)
        except DublineError as e:
            if e.identifier is None:
                e.identifier = target.id
            raise
        except OSError as e:
            raise FileSystemError(f"Unable to install clip {clip_path}: {e}", target.id) from e
        finally:
            remove_quietly(tmp_path)
        logger.info(f"TTS duration {duration} for {target.id}")
        return clip_name, duration

    def synthesize(self, sid: str, segment_id: str) -> Segment:
        """Speaks a segment's translation when its clip is missing or stale."""
        project, target = self._segment(sid, segment_id)
        if not needs_synthesis(target):
            logger.info(f"Ignore TTS for {target.id}")
            return target

        clip_name, duration = self._render_clip(project, target, target.translated)
        target.tts = clip_name
        target.tts_duration = duration
        target.tts_at = now()
        if duration > target.span:
            logger.warning(f"Segment {target.id} speech {duration:.2f}s exceeds its {target.span:.2f}s span")
        project.save_timeline()
        return target

    def merge(self, sid: str, segment_id: str, next_id: str) -> Segment:
        """
        Merges next_id into segment_id and re-synthesizes the result.

        The merged clip is rendered before the timeline changes, so a
        synthesis failure leaves both segments intact.
        """
        project = self._project(sid)
        timeline = self._timeline(project)
        target, successor = check_mergeable(timeline, segment_id, next_id)

        clip_name, duration = "", 0.0
        translated = merged_translation(target, successor)
        if translated:
            clip_name, duration = self._render_clip(project, target, translated)
        else:
            remove_quietly(project.clip_path(target.tts) if target.tts else None)

        merge_segments(timeline, target, successor, tts=clip_name, tts_duration=duration)
        project.save_timeline()
        return target

    # --- Output ---

    def preview_path(self, sid: str, segment_id: str) -> str:
        """Path of a segment's synthesized clip, for streaming to the editor."""
        project, target = self._segment(sid, segment_id)
        if not target.tts:
            raise SegmentNotFoundError(f"Segment {target.id} has no synthesized clip", target.id)
        path = project.clip_path(target.tts)
        if not os.path.exists(path):
            raise SegmentNotFoundError(f"Clip {target.tts} of segment {target.id} is missing", target.id)
        logger.info(f"Serve TTS {target.id} {target.tts}")
        return path

    def export(self, sid: str) -> ExportResult:
        """Rebuilds the dubbed track from scratch and encodes it for delivery."""
        project = self._project(sid)
        timeline = self._timeline(project)
        start_time = time.time()
        result = self.reconstructor.export(timeline, project.main_dir, project.sid)
        logger.info(f"Export of {sid} finished in {time.time() - start_time:.2f}s, "
                    f"{len(result.track.warnings)} segments overran")
        return result

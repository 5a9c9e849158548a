"""Data models for Dubline: segments, timelines and transcriber output."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterator, List, Optional

from .exceptions import SegmentNotFoundError
from .utils import now, format_timestamp, parse_timestamp

# Display indices start here so they never look like transcriber ids
SEQ_BASE = 10000


class SegmentState(Enum):
    ACTIVE = "active"
    REMOVED = "removed"


@dataclass
class TranscriptSpan:
    """One timed span returned by a transcriber, relative to its excerpt."""
    start: float
    end: float
    text: str
    id: int = 0
    seek: int = 0
    tokens: List[int] = field(default_factory=list)
    temperature: float = 0.0
    avg_logprob: float = 0.0
    compression_ratio: float = 0.0
    no_speech_prob: float = 0.0
    transient: bool = False


@dataclass
class TranscriptionResult:
    """Holds the structured output from the ASR process for one excerpt."""
    language: Optional[str]
    duration: float = 0.0
    text: str = ""
    task: str = "transcribe"
    spans: List[TranscriptSpan] = field(default_factory=list)


@dataclass
class Segment:
    """One transcribed span with its translation and synthesis state."""
    start: float
    end: float
    text: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    seq: int = 0
    seek: int = 0
    tokens: List[int] = field(default_factory=list)
    temperature: float = 0.0
    avg_logprob: float = 0.0
    compression_ratio: float = 0.0
    no_speech_prob: float = 0.0
    transient: bool = False
    state: SegmentState = SegmentState.ACTIVE
    updated_at: Optional[datetime] = None
    translated: str = ""
    translated_at: Optional[datetime] = None
    tts: str = ""
    tts_at: Optional[datetime] = None
    tts_duration: float = 0.0

    @property
    def removed(self) -> bool:
        return self.state is SegmentState.REMOVED

    @property
    def span(self) -> float:
        """Nominal duration of the segment in the source timeline."""
        return self.end - self.start

    def to_dict(self) -> dict:
        return {
            'id': self.seq,
            'uuid': self.id,
            'seek': self.seek,
            'start': self.start,
            'end': self.end,
            'text': self.text,
            'tokens': list(self.tokens),
            'temperature': self.temperature,
            'avg_logprob': self.avg_logprob,
            'compression_ratio': self.compression_ratio,
            'no_speech_prob': self.no_speech_prob,
            'transient': self.transient,
            'removed': self.removed,
            'update': format_timestamp(self.updated_at),
            'translated': self.translated,
            'translated_at': format_timestamp(self.translated_at),
            'tts': self.tts,
            'tts_at': format_timestamp(self.tts_at),
            'tts_duration': self.tts_duration,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Segment":
        return cls(
            start=float(data['start']),
            end=float(data['end']),
            text=data.get('text', ''),
            id=data.get('uuid') or str(uuid.uuid4()),
            seq=int(data.get('id', 0)),
            seek=int(data.get('seek', 0)),
            tokens=list(data.get('tokens') or []),
            temperature=float(data.get('temperature', 0.0)),
            avg_logprob=float(data.get('avg_logprob', 0.0)),
            compression_ratio=float(data.get('compression_ratio', 0.0)),
            no_speech_prob=float(data.get('no_speech_prob', 0.0)),
            transient=bool(data.get('transient', False)),
            state=SegmentState.REMOVED if data.get('removed') else SegmentState.ACTIVE,
            updated_at=parse_timestamp(data.get('update')),
            translated=data.get('translated', ''),
            translated_at=parse_timestamp(data.get('translated_at')),
            tts=data.get('tts', ''),
            tts_at=parse_timestamp(data.get('tts_at')),
            tts_duration=float(data.get('tts_duration', 0.0)),
        )


@dataclass
class Timeline:
    """
    The ordered segments of one project plus transcript aggregates.

    Segments are kept in increasing start order; previous/next queries and
    export walk that order. Lookups compare ids, never list positions, so
    they stay valid after merges.
    """
    language: Optional[str] = None
    duration: float = 0.0
    text: str = ""
    task: str = "transcribe"
    segments: List[Segment] = field(default_factory=list)
    completed_windows: List[float] = field(default_factory=list)
    complete: bool = False

    def __len__(self) -> int:
        return len(self.segments)

    def __iter__(self) -> Iterator[Segment]:
        return iter(self.segments)

    def find(self, segment_id: str) -> Optional[Segment]:
        for segment in self.segments:
            if segment.id == segment_id:
                return segment
        return None

    def get(self, segment_id: str) -> Segment:
        segment = self.find(segment_id)
        if segment is None:
            raise SegmentNotFoundError(f"No segment {segment_id}", segment_id)
        return segment

    def _index_of(self, segment: Segment) -> int:
        for i, s in enumerate(self.segments):
            if s.id == segment.id:
                return i
        raise SegmentNotFoundError(f"No segment {segment.id}", segment.id)

    def previous(self, segment: Segment) -> Optional[Segment]:
        i = self._index_of(segment)
        return self.segments[i - 1] if i > 0 else None

    def next(self, segment: Segment) -> Optional[Segment]:
        i = self._index_of(segment)
        return self.segments[i + 1] if i + 1 < len(self.segments) else None

    def remove(self, segment: Segment) -> None:
        """Drops a segment outright. Only merge does this; edits soft-delete."""
        del self.segments[self._index_of(segment)]

    def active_segments(self) -> List[Segment]:
        return [s for s in self.segments if not s.removed]

    def append_window(self, result: TranscriptionResult, offset: float) -> List[Segment]:
        """
        Appends one excerpt's transcript, rebasing its spans by the excerpt's
        start so all times are in the coordinate space of the full source.
        """
        self.task = result.task
        self.language = result.language
        self.duration += result.duration
        self.text += " " + result.text

        appended = []
        for span in result.spans:
            segment = Segment(
                start=offset + span.start,
                end=offset + span.end,
                text=span.text,
                seq=span.id,
                seek=span.seek,
                tokens=list(span.tokens),
                temperature=span.temperature,
                avg_logprob=span.avg_logprob,
                compression_ratio=span.compression_ratio,
                no_speech_prob=span.no_speech_prob,
                transient=span.transient,
                updated_at=now(),
            )
            self.segments.append(segment)
            appended.append(segment)
        self.completed_windows.append(offset)
        return appended

    def to_dict(self) -> dict:
        return {
            'task': self.task,
            'language': self.language,
            'duration': self.duration,
            'text': self.text,
            'segments': [s.to_dict() for s in self.segments],
            'completed_windows': list(self.completed_windows),
            'complete': self.complete,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Timeline":
        """
        Rebuilds a persisted timeline. Display indices are renumbered, ids
        kept, and missing timestamps set to now so that a zero value never
        takes part in a staleness comparison.
        """
        timeline = cls(
            language=data.get('language'),
            duration=float(data.get('duration', 0.0)),
            text=data.get('text', ''),
            task=data.get('task', 'transcribe'),
            segments=[Segment.from_dict(s) for s in data.get('segments') or []],
            completed_windows=[float(w) for w in data.get('completed_windows') or []],
            # State files without the flag were only ever written after a full load
            complete=bool(data.get('complete', True)),
        )
        for index, segment in enumerate(timeline.segments):
            segment.seq = SEQ_BASE + index
            if segment.updated_at is None:
                segment.updated_at = now()
            if segment.translated_at is None:
                segment.translated_at = now()
            if segment.tts_at is None:
                segment.tts_at = now()
        return timeline

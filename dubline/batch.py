"""Rate-limited bulk translation and synthesis over a project's segments."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, TypeVar

from tqdm import tqdm

from .exceptions import CollaboratorError, DublineError
from .staleness import needs_translation, needs_synthesis

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BatchReport:
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class BatchRunner:
    """
    Calls one operation per item with bounded concurrency.

    Collaborator failures are retried `retries` times, sleeping
    `backoff * attempt` seconds between attempts; any other error fails the
    item at once. Consecutive item starts are spaced by `delay` seconds.
    """

    def __init__(
        self,
        concurrency: int = 1,
        retries: int = 3,
        backoff: float = 1.5,
        delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        show_progress: bool = True,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.concurrency = concurrency
        self.retries = max(0, retries)
        self.backoff = backoff
        self.delay = delay
        self.sleep = sleep
        self.show_progress = show_progress
        self._start_lock = threading.Lock()
        self._last_start = None

    @classmethod
    def from_config(cls, config: dict, **kwargs) -> "BatchRunner":
        return cls(
            concurrency=config.get('batch_concurrency', 1),
            retries=config.get('batch_retries', 3),
            backoff=config.get('batch_backoff', 1.5),
            delay=config.get('batch_delay', 1.0),
            **kwargs,
        )

    def _throttle(self) -> None:
        with self._start_lock:
            if self._last_start is not None and self.delay > 0:
                wait = self.delay - (time.monotonic() - self._last_start)
                if wait > 0:
                    self.sleep(wait)
            self._last_start = time.monotonic()

    def _call(self, key: str, item: T, fn: Callable[[T], object]) -> None:
        attempt = 0
        while True:
            self._throttle()
            try:
                fn(item)
                return
            except CollaboratorError as e:
                if attempt >= self.retries:
                    raise
                attempt += 1
                logger.warning(f"{key} failed, retry {attempt}/{self.retries}: {e}")
                self.sleep(self.backoff * attempt)

    def run(self, items: Iterable[T], fn: Callable[[T], object], key: Callable[[T], str] = str,
            desc: str = "Processing") -> BatchReport:
        items = list(items)
        report = BatchReport()
        with tqdm(total=len(items), unit="segment", desc=desc, disable=not self.show_progress) as pbar:
            with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
                futures = {pool.submit(self._call, key(item), item, fn): key(item) for item in items}
                for future in as_completed(futures):
                    name = futures[future]
                    try:
                        future.result()
                        report.succeeded.append(name)
                    except DublineError as e:
                        logger.error(f"{desc}: {name} failed: {e}")
                        report.failed[name] = str(e)
                    finally:
                        pbar.update(1)
        logger.info(f"{desc}: {len(report.succeeded)} succeeded, {len(report.failed)} failed")
        return report


def translate_all(editor, sid: str, runner: BatchRunner) -> BatchReport:
    """Translates every active segment whose translation is missing or stale."""
    timeline = editor.timeline(sid)
    pending = [s.id for s in timeline if needs_translation(s)]
    logger.info(f"Translating {len(pending)} of {len(timeline)} segments for {sid}")
    return runner.run(pending, lambda segment_id: editor.translate(sid, segment_id), desc="Translate")


def synthesize_all(editor, sid: str, runner: BatchRunner) -> BatchReport:
    """Synthesizes every active, translated segment whose clip is missing or stale."""
    timeline = editor.timeline(sid)
    pending = [s.id for s in timeline if needs_synthesis(s)]
    logger.info(f"Synthesizing {len(pending)} of {len(timeline)} segments for {sid}")
    return runner.run(pending, lambda segment_id: editor.synthesize(sid, segment_id), desc="TTS")

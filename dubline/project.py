"""Projects, their on-disk layout, and the registry of live editing sessions."""

import json
import logging
import os
import shutil
import tempfile
import threading
import time
import uuid
from typing import Callable, Dict, Optional

from .exceptions import FileSystemError, ProjectNotFoundError
from .models import Timeline
from .utils import ensure_dir_exists, remove_quietly

logger = logging.getLogger(__name__)

PROJECT_FILE = "project.json"
TIMELINE_FILE = "input.json"
SOURCE_AUDIO_FILE = "input.m4a"

DEFAULT_EXPIRY_SECONDS = 3 * 24 * 3600
DEFAULT_CHECK_INTERVAL = 3.0


def _write_json(path: str, data: dict) -> None:
    # Write then rename, so a crash never leaves half a state file
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(prefix=f"{os.path.basename(path)}.", suffix=".tmp",
                                        dir=os.path.dirname(path) or '.')
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False)
        os.replace(tmp_path, path)
    except OSError as e:
        logger.error(f"Error writing json file {path}: {e}", exc_info=True)
        remove_quietly(tmp_path)
        raise FileSystemError(f"Could not write json file {path}: {e}", path) from e


def _read_json(path: str) -> dict:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"Error reading json file {path}: {e}", exc_info=True)
        raise FileSystemError(f"Could not read json file {path}: {e}", path) from e


class Project:
    """One editing session over one source media file."""

    def __init__(self, sid: str, main_dir: str, clock: Callable[[], float] = time.time):
        self.sid = sid
        self.main_dir = main_dir
        self.input_url = ""
        self.timeline: Optional[Timeline] = None
        self._clock = clock
        self.last_activity = clock()
        # Batch workers save the same project from several threads
        self._save_lock = threading.Lock()

    @property
    def project_file(self) -> str:
        return os.path.join(self.main_dir, PROJECT_FILE)

    @property
    def timeline_file(self) -> str:
        return os.path.join(self.main_dir, TIMELINE_FILE)

    @property
    def source_audio(self) -> str:
        return os.path.join(self.main_dir, SOURCE_AUDIO_FILE)

    def clip_path(self, name: str) -> str:
        return os.path.join(self.main_dir, name)

    def touch(self) -> None:
        self.last_activity = self._clock()

    def idle_seconds(self) -> float:
        return self._clock() - self.last_activity

    def expired(self, expiry_seconds: float = DEFAULT_EXPIRY_SECONDS) -> bool:
        return self.idle_seconds() > expiry_seconds

    def save(self) -> None:
        """Persists the project descriptor, creating the working directory."""
        with self._save_lock:
            ensure_dir_exists(self.main_dir)
            _write_json(self.project_file, {
                'sid': self.sid,
                'inputURL': self.input_url,
                'mainDir': self.main_dir,
                'update': self.last_activity,
            })

    def save_timeline(self) -> None:
        if self.timeline is None:
            return
        with self._save_lock:
            ensure_dir_exists(self.main_dir)
            _write_json(self.timeline_file, self.timeline.to_dict())
        logger.info(f"Save ASR output to {self.timeline_file} ok")

    def load(self) -> None:
        """Reloads the descriptor and, when present, the timeline."""
        data = _read_json(self.project_file)
        self.input_url = data.get('inputURL', '')
        if data.get('update'):
            self.last_activity = float(data['update'])
        if os.path.exists(self.timeline_file):
            self.timeline = Timeline.from_dict(_read_json(self.timeline_file))
            logger.info(f"Load ASR object from {self.timeline_file} ok, segments={len(self.timeline)}")

    def discard_timeline(self) -> None:
        self.timeline = None
        if os.path.exists(self.timeline_file):
            try:
                os.remove(self.timeline_file)
            except OSError as e:
                raise FileSystemError(f"Could not remove {self.timeline_file}: {e}", self.timeline_file) from e

    def purge(self) -> None:
        """Deletes the working directory and everything derived in it."""
        if not os.path.exists(self.main_dir):
            return
        try:
            shutil.rmtree(self.main_dir)
            logger.info(f"Project {self.sid} purged {self.main_dir}")
        except OSError as e:
            logger.warning(f"Could not fully remove {self.main_dir} for project {self.sid}: {e}")

    def __repr__(self) -> str:
        return f"Project(sid={self.sid!r}, main_dir={self.main_dir!r})"


class ExpiryWatcher(threading.Thread):
    """Removes its project from the store once it has been idle too long."""

    def __init__(self, store: "ProjectStore", project: Project, interval: float, expiry_seconds: float):
        super().__init__(name=f"expiry-{project.sid}", daemon=True)
        self.store = store
        self.project = project
        self.interval = interval
        self.expiry_seconds = expiry_seconds
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def check(self) -> bool:
        """Expires the project if idle; returns True when it was removed."""
        if not self.project.expired(self.expiry_seconds):
            return False
        logger.info(f"Project: Remove {self.project.sid} for expired, idle={self.project.idle_seconds():.0f}s")
        self.stop()
        self.store.remove(self.project.sid, purge=True)
        return True

    def run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                if self.check():
                    return
            except Exception as e:
                # A failed sweep must not kill the thread or the process
                logger.error(f"Expiry check failed for {self.project.sid}: {e}", exc_info=True)


class ProjectStore:
    """
    Registry of live projects keyed by session id.

    One lock guards the index; the contents of each project are owned by
    that project and are not synchronized here.
    """

    def __init__(
        self,
        work_dir: str,
        expiry_seconds: float = DEFAULT_EXPIRY_SECONDS,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        clock: Callable[[], float] = time.time,
        start_watchers: bool = True,
    ):
        self.work_dir = work_dir
        self.expiry_seconds = expiry_seconds
        self.check_interval = check_interval
        self.clock = clock
        self.start_watchers = start_watchers
        self._lock = threading.Lock()
        self._projects: Dict[str, Project] = {}
        self._watchers: Dict[str, ExpiryWatcher] = {}

    def project_dir(self, sid: str) -> str:
        return os.path.join(self.work_dir, "projects", f"project-{sid}")

    def create(self, sid: Optional[str] = None) -> Project:
        """
        Returns the live project for sid, loading persisted state or creating
        and persisting a fresh one when it is not registered yet.
        """
        sid = sid or str(uuid.uuid4())
        with self._lock:
            existing = self._projects.get(sid)
            if existing is not None:
                existing.touch()
                return existing

            project = Project(sid, self.project_dir(sid), clock=self.clock)
            if os.path.exists(project.project_file):
                project.load()
            else:
                project.save()

            self._projects[sid] = project
            watcher = ExpiryWatcher(self, project, self.check_interval, self.expiry_seconds)
            self._watchers[sid] = watcher
        if self.start_watchers:
            watcher.start()
        logger.info(f"Create project sid={sid}")
        return project

    def get(self, sid: str) -> Optional[Project]:
        with self._lock:
            return self._projects.get(sid)

    def require(self, sid: str) -> Project:
        project = self.get(sid)
        if project is None:
            raise ProjectNotFoundError(f"No project {sid}", sid)
        return project

    def open(self, sid: str) -> Project:
        """Returns a live project, reloading it from disk; never creates one."""
        project = self.get(sid)
        if project is not None:
            return project
        if not os.path.exists(os.path.join(self.project_dir(sid), PROJECT_FILE)):
            raise ProjectNotFoundError(f"No project {sid}", sid)
        return self.create(sid)

    def watcher(self, sid: str) -> Optional[ExpiryWatcher]:
        with self._lock:
            return self._watchers.get(sid)

    def remove(self, sid: str, purge: bool = False) -> None:
        """Unregisters sid and stops its watcher; purge also deletes its files."""
        with self._lock:
            project = self._projects.pop(sid, None)
            watcher = self._watchers.pop(sid, None)
        if watcher is not None:
            watcher.stop()
            if watcher.is_alive() and watcher is not threading.current_thread():
                watcher.join(timeout=self.check_interval + 1)
        if project is not None and purge:
            project.purge()

    def sweep(self) -> int:
        """Runs one expiry check over every project; returns how many expired."""
        with self._lock:
            watchers = list(self._watchers.values())
        return sum(1 for w in watchers if w.check())

    def close(self) -> None:
        with self._lock:
            sids = list(self._projects)
        for sid in sids:
            self.remove(sid)

    def __len__(self) -> int:
        with self._lock:
            return len(self._projects)

    def __contains__(self, sid: str) -> bool:
        with self._lock:
            return sid in self._projects

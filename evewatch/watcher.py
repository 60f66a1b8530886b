# evewatch/watcher.py
import json
import logging
import os
import threading
from pathlib import Path
from typing import Iterable, List, Optional

from .classifier import Classification
from .config import Settings
from .errors import RecordRejected, SinkError
from .models import TailState
from .reader import LineFramer, classify_lines, read_lines

logger = logging.getLogger(__name__)


class FileWatcher:
    """
    Tail one eve.json file into a sink.

    The sink needs create_event(EventRecord) and create_alert(AlertRecord).
    Each poll drains everything appended since the cursor; the cursor only
    moves once that whole range has gone to the sink.
    """

    def __init__(self, path: str, sink, settings: Optional[Settings] = None,
                 state_file: Optional[str] = None):
        self.settings = settings or Settings()
        self.sink = sink
        self.state = TailState(path=str(path))
        self.state_file = state_file
        self._busy = False
        self._positioned = False

        if self.state_file:
            self._positioned = self._load_state()

    @property
    def path(self) -> str:
        return self.state.path

    @property
    def cursor(self) -> int:
        return self.state.cursor

    def poll_once(self) -> int:
        """
        Check the file once and drain any growth.
        Returns how many records were stored.
        """
        if self._busy:
            # a drain is already running for this file
            return 0
        self._busy = True
        try:
            return self._poll()
        finally:
            self._busy = False

    def _poll(self) -> int:
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            # a file created later is read from its first byte
            self._positioned = True
            logger.debug("Waiting for %s", self.path)
            return 0
        except OSError as e:
            logger.warning("Could not stat %s: %s", self.path, e)
            return 0

        if not self._positioned:
            self._positioned = True
            if self.settings.start_at == "end":
                self.state.cursor = st.st_size
                self.state.inode = st.st_ino
                logger.info("Tailing %s from byte %d", self.path, st.st_size)
                self._save_state()
                return 0

        rotated = self.state.inode is not None and st.st_ino != self.state.inode
        if rotated or st.st_size < self.state.cursor:
            logger.info(
                "%s was rotated or truncated (size %d < cursor %d), reading from the start",
                self.path, st.st_size, self.state.cursor,
            )
            self.state.reset()
        self.state.inode = st.st_ino

        if st.st_size <= self.state.cursor:
            return 0
        return self._drain(st.st_size)

    def _drain(self, size: int) -> int:
        snap = self.state.snapshot()
        start = self.state.cursor
        framer = LineFramer(
            pending=self.state.pending,
            pending_bytes=self.state.pending_bytes,
            max_pending=self.settings.max_pending,
        )
        stored = 0

        try:
            lines = read_lines(self.path, start, size, framer, self.settings.chunk_size)
            for result in classify_lines(lines, self.settings.allowed_event_types):
                stored += self._dispatch(result)
        except SinkError as e:
            logger.error("Sink unavailable, will retry %s from byte %d: %s",
                         self.path, start, e)
            self.state.restore(snap)
            return stored
        except OSError as e:
            logger.warning("Could not read %s: %s", self.path, e)
            self.state.restore(snap)
            return stored

        self.state.cursor = start + framer.bytes_fed
        self.state.pending = framer.pending
        self.state.pending_bytes = framer.pending_bytes
        logger.debug("%s: read bytes %d-%d, stored %d record(s)",
                     self.path, start, self.state.cursor, stored)
        self._save_state()
        return stored

    def _dispatch(self, result: Classification) -> int:
        stored = 0
        if result.event is not None:
            try:
                self.sink.create_event(result.event)
                stored += 1
            except RecordRejected as e:
                logger.warning("Dropping %s event: %s", result.event.event_type, e)
        if result.alert is not None:
            try:
                self.sink.create_alert(result.alert)
                stored += 1
            except RecordRejected as e:
                logger.warning("Dropping alert %s: %s", result.alert.alert_id, e)
        return stored

    # -------------- state file --------------

    def _load_state(self) -> bool:
        path = Path(self.state_file)
        if not path.exists():
            return False
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
            if data.get("path") not in (None, self.path):
                logger.warning("State file %s belongs to %s, ignoring it",
                               path, data.get("path"))
                return False
            self.state.cursor = int(data.get("cursor", 0))
            self.state.pending = data.get("pending", "")
            self.state.pending_bytes = bytes.fromhex(data.get("pending_bytes", ""))
            self.state.inode = data.get("inode")
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Could not load state file %s, starting over: %s", path, e)
            self.state.reset()
            self.state.inode = None
            return False

        logger.info("Resuming %s at byte %d", self.path, self.state.cursor)
        return True

    def _save_state(self) -> None:
        if not self.state_file:
            return
        data = {
            "path": self.path,
            "cursor": self.state.cursor,
            "pending": self.state.pending,
            "pending_bytes": self.state.pending_bytes.hex(),
            "inode": self.state.inode,
        }
        tmp = f"{self.state_file}.tmp"
        try:
            os.makedirs(os.path.dirname(self.state_file) or ".", exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, self.state_file)
        except OSError as e:
            logger.warning("Could not save state for %s: %s", self.path, e)


class Monitor:
    """Poll a set of watchers one after another until stopped."""

    def __init__(self, watchers: Iterable[FileWatcher], poll_interval: float = 1.0):
        self.watchers: List[FileWatcher] = list(watchers)
        self.poll_interval = poll_interval
        self._stop = threading.Event()

    def poll_all(self) -> int:
        stored = 0
        for watcher in self.watchers:
            try:
                stored += watcher.poll_once()
            except Exception:
                # keep the other files and the next cycle going
                logger.exception("Unexpected error while polling %s", watcher.path)
        return stored

    def run(self) -> None:
        logger.info("Watching %s", ", ".join(w.path for w in self.watchers))
        while not self._stop.is_set():
            self.poll_all()
            self._stop.wait(self.poll_interval)

    def stop(self) -> None:
        self._stop.set()


def build_monitor(settings: Settings, sink) -> Monitor:
    watchers = [
        FileWatcher(path, sink, settings, state_file=settings.state_file_for(path))
        for path in settings.eve_paths
    ]
    return Monitor(watchers, poll_interval=settings.poll_interval)

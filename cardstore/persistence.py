"""
Snapshot file handling and debounced write-back.

The store serialises the complete in-memory image and overwrites the snapshot
file with it. Bursts of writes are coalesced: every mutation re-arms a single
timer, and only the timer that survives the burst performs the write.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class SnapshotFile:
    """The on-disk copy of the database image."""

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> Optional[bytes]:
        if not self.exists():
            return None
        return self.path.read_bytes()

    def write(self, image: bytes) -> None:
        """
        Replace the snapshot with ``image``.

        The bytes land in a temporary sibling first and are renamed over the
        snapshot, so the file always holds either the previous or the new
        image in full.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(image)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    def mtime(self) -> Optional[float]:
        try:
            return self.path.stat().st_mtime
        except FileNotFoundError:
            return None


class DebouncedSaver:
    """
    Single-slot debounce timer around a ``save`` callable.

    ``pending`` stays true from ``schedule()`` until the fired save has
    finished, whether or not it succeeded.
    """

    def __init__(self, save: Callable[[], None], delay: float = 1.0):
        self._save = save
        self.delay = delay
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def schedule(self) -> None:
        """Cancel any pending flush and arm a new one ``delay`` seconds out."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self.delay, self._fire)
            timer.daemon = True
            # The timer passes itself so a superseded one can tell it lost.
            timer.args = (timer,)
            self._timer = timer
            timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def flush(self) -> bool:
        """Drop the pending timer and save right now. Returns True on success."""
        self.cancel()
        return self._run_save()

    def _fire(self, timer: threading.Timer) -> None:
        with self._lock:
            if self._timer is not timer:
                return
        try:
            self._run_save()
        finally:
            # Stays pending until the snapshot is written; a timer re-armed
            # during the write keeps its slot.
            with self._lock:
                if self._timer is timer:
                    self._timer = None

    def _run_save(self) -> bool:
        try:
            self._save()
        except Exception:
            # The next mutation re-arms the timer, which is the retry.
            logger.exception("Failed to save database snapshot")
            return False
        return True

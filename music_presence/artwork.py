# music_presence/artwork.py
import logging
import re
import shutil
import threading
import time
from pathlib import Path
from typing import Optional

from .logs import get_logger

MAX_AGE_SECONDS = 3600

_KEY_MAX = 48


def sanitize_key(value: str) -> str:
    value = value.lower()
    value = re.sub(r"[^a-z0-9]+", "_", value)
    return value.strip("_")[:_KEY_MAX] or "track"


def _guess_extension(data: bytes) -> str:
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "png"
    if data[:3] == b"\xff\xd8\xff":
        return "jpg"
    if data[:2] == b"BM":
        return "bmp"
    return "jpg"


class ArtworkCache:
    """
    Scratch directory for cover images shared by every adapter.

    Every write gets a fresh file name (nanosecond stamp plus track key), so a
    file that a reader already holds is never overwritten. Old files are
    removed by `sweep`.
    """

    def __init__(self, directory: str, logger: Optional[logging.Logger] = None, clock=time.time):
        self.directory = Path(directory)
        self._log = logger or get_logger("artwork")
        self._clock = clock
        self._lock = threading.Lock()
        self._last_stamp = 0

    def _ensure_dir(self) -> bool:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            return True
        except OSError as e:
            self._log.warning("Artwork directory %s unavailable: %s", self.directory, e)
            return False

    def _stamp(self) -> int:
        # strictly increasing even if the clock does not move between calls
        with self._lock:
            stamp = max(time.time_ns(), self._last_stamp + 1)
            self._last_stamp = stamp
            return stamp

    def new_path(self, key: str, extension: str = "png") -> Optional[Path]:
        if not self._ensure_dir():
            return None
        return self.directory / f"artwork_{self._stamp()}_{sanitize_key(key)}.{extension}"

    def store(self, key: str, data: bytes) -> Optional[str]:
        if not data:
            return None
        path = self.new_path(key, _guess_extension(data))
        if path is None:
            return None
        try:
            path.write_bytes(data)
        except OSError as e:
            self._log.warning("Could not write artwork %s: %s", path.name, e)
            return None
        return str(path)

    def sweep(self, max_age: float = MAX_AGE_SECONDS) -> int:
        """Delete cached files older than `max_age` seconds."""
        if not self.directory.is_dir():
            return 0
        cutoff = self._clock() - max_age
        removed = 0
        for path in self.directory.glob("artwork_*"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError:
                # in use or already gone, next sweep retries
                continue
        if removed:
            self._log.debug("Swept %d old artwork files", removed)
        return removed

    def clear(self) -> None:
        shutil.rmtree(self.directory, ignore_errors=True)

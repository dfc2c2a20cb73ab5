# music_presence/sources/base.py
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Optional, Sequence

from ..errors import AdapterError
from ..logs import get_logger
from ..models import DetectedApp, Track


class SourceAdapter(ABC):
    """One place a track can be read from."""

    name = "source"

    def is_available(self) -> bool:
        return True

    @abstractmethod
    def try_get_track(self, hint: Optional[DetectedApp] = None) -> Optional[Track]:
        """Current track, or None when this source has nothing to report."""


class AdapterChain:
    """
    Tries adapters in order; the first one that returns a track wins.

    Each call runs on a worker thread and is abandoned after `timeout`
    seconds, so a hung player cannot stall the poll. Raises AdapterError only
    when every adapter that ran failed; a clean "nothing" from any of them
    means there is simply no track.
    """

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        timeout: float = 3.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.adapters = list(adapters)
        self.timeout = timeout
        self._log = logger or get_logger("sources")
        self._executor: Optional[ThreadPoolExecutor] = None

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="mps-adapter")
        return self._executor

    def try_get_track(self, hint: Optional[DetectedApp] = None) -> Optional[Track]:
        errors = []
        answered = False

        for adapter in self.adapters:
            if not adapter.is_available():
                continue
            try:
                future = self._pool().submit(adapter.try_get_track, hint)
                track = future.result(timeout=self.timeout)
            except FutureTimeout:
                errors.append(f"{adapter.name}: timed out after {self.timeout:.1f}s")
                self._log.warning("%s did not answer within %.1fs", adapter.name, self.timeout)
                continue
            except Exception as e:
                errors.append(f"{adapter.name}: {e}")
                self._log.debug("%s failed: %s", adapter.name, e)
                continue

            answered = True
            if track is not None:
                self._log.debug("Track from %s: %s - %s", adapter.name, track.artist, track.name)
                return track

        if errors and not answered:
            raise AdapterError("; ".join(errors))
        return None

    def close(self) -> None:
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

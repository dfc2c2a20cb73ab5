# music_presence/polling.py
import logging
import threading
import time
from typing import Callable, Iterable, List, Optional

from .apps import AppPresenceDetector
from .artwork import MAX_AGE_SECONDS, ArtworkCache
from .backoff import BackoffPolicy
from .errors import SourceUnavailable
from .events import EventStream
from .logs import get_logger
from .models import DetectedApp, PlayStateChanged, PollState, SourceState, Track, TrackChanged
from .scheduler import Job, Scheduler
from .sources.base import AdapterChain

SWEEP_INTERVAL = 300.0


class PollingSourceService:
    """
    Polls one source family and reports what changed.

    Each tick detects the family's players, asks the adapter chain for a
    track and compares it with the last one reported. `track_changed` fires
    before `play_state_changed` when both change in the same tick. State is
    only touched from inside a tick and ticks never overlap.
    """

    def __init__(
        self,
        family: str,
        chain: AdapterChain,
        detector: AppPresenceDetector,
        app_names: Iterable[str],
        policy: BackoffPolicy,
        artwork: Optional[ArtworkCache] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = SWEEP_INTERVAL,
    ):
        self.family = family
        self.chain = chain
        self.detector = detector
        self.app_names = frozenset(app_names)
        self.policy = policy
        self.artwork = artwork
        self.sweep_interval = sweep_interval
        self._log = logger or get_logger(f"polling.{family}")
        self._clock = clock

        self.state = SourceState()
        self.poll_state = PollState.IDLE
        self.current_app: Optional[DetectedApp] = None

        self.track_changed: EventStream[TrackChanged] = EventStream(f"{family}.track_changed", self._log)
        self.play_state_changed: EventStream[PlayStateChanged] = EventStream(
            f"{family}.play_state_changed", self._log
        )

        self._tick_lock = threading.Lock()
        self._last_sweep: Optional[float] = None
        self._job: Optional[Job] = None
        self._scheduler: Optional[Scheduler] = None

    # --------------------------------------------------
    # scheduling
    # --------------------------------------------------

    def start(self, scheduler: Scheduler) -> None:
        if self._job is not None:
            return
        self._scheduler = scheduler
        self._job = scheduler.every(f"poll-{self.family}", self.tick, self.next_interval)
        self._log.info("Polling %s every %.1fs", self.family, self.policy.interval)

    def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.cancel(self._job)
        self._job = None
        self._scheduler = None

    @property
    def is_running(self) -> bool:
        return self._job is not None

    def next_interval(self) -> float:
        now = self._clock()
        if self.poll_state is PollState.BACKOFF and self.policy.cooldown_elapsed(self.state.backoff_since, now):
            self._log.info("%s cooldown over, resuming normal polling", self.family)
            self._reset_failures()
            self.poll_state = PollState.POLLING
        return self.policy.next_interval(self.state.consecutive_failures, self.state.backoff_since, now)

    # --------------------------------------------------
    # tick
    # --------------------------------------------------

    def tick(self) -> bool:
        """Run one poll. Returns False if a previous tick was still running."""
        if not self._tick_lock.acquire(blocking=False):
            self._log.debug("%s tick skipped, previous one still running", self.family)
            return False
        try:
            self._poll()
            self._maybe_sweep()
        except Exception:
            # never let a tick escape into the scheduler
            self._log.exception("%s tick failed", self.family)
        finally:
            self._tick_lock.release()
        return True

    def _watched(self, detected: List[DetectedApp]) -> List[DetectedApp]:
        return [d for d in detected if d.app_name in self.app_names]

    def _find_app(self) -> DetectedApp:
        apps = self._watched(self.detector.detect_running_apps())
        if not apps:
            raise SourceUnavailable(f"no {self.family} player running")
        return apps[0]

    def _poll(self) -> None:
        try:
            self.current_app = self._find_app()
        except SourceUnavailable:
            self._on_no_source()
            return

        if self.poll_state is PollState.IDLE:
            self.poll_state = PollState.POLLING
            self._log.info("%s detected: %s", self.family, self.current_app)

        try:
            track = self.chain.try_get_track(self.current_app)
        except Exception as e:
            self._on_failure(e)
            return

        if track is None:
            self._on_no_track()
            return
        self._on_track(track)

    def _on_no_source(self) -> None:
        if self.poll_state is not PollState.IDLE:
            self._log.info("%s: no supported player running", self.family)
        app_name = self.current_app.app_name if self.current_app else ""
        self.current_app = None
        self.state.last_track = None
        self._reset_failures()
        self.poll_state = PollState.IDLE
        if self.state.is_active:
            self.state.is_active = False
            self.play_state_changed.emit(PlayStateChanged(self.family, app_name, False))

    def _on_no_track(self) -> None:
        self.state.last_track = None
        if self.state.is_active:
            self.state.is_active = False
            self.play_state_changed.emit(PlayStateChanged(self.family, self._app_name(), False))

    def _on_failure(self, error: Exception) -> None:
        self.state.consecutive_failures += 1
        failures = self.state.consecutive_failures
        self._log.debug("%s poll failed (%d in a row): %s", self.family, failures, error)
        if self.policy.is_tripped(failures) and self.poll_state is not PollState.BACKOFF:
            self.poll_state = PollState.BACKOFF
            self.state.backoff_since = self._clock()
            self._log.warning(
                "%s failed %d times, slowing polls to %.1fs",
                self.family,
                failures,
                self.policy.extended_interval,
            )

    def _on_track(self, track: Track) -> None:
        if self.poll_state is PollState.BACKOFF:
            self._log.info("%s recovered", self.family)
        self._reset_failures()
        self.poll_state = PollState.POLLING
        self.state.last_success_timestamp = time.time()

        track_changed = track != self.state.last_track
        play_changed = track.is_playing != self.state.is_active

        self.state.last_track = track
        self.state.is_active = track.is_playing

        if track_changed:
            self._log.info(
                "%s: %s - %s (%s)",
                self.family,
                track.artist,
                track.name,
                "playing" if track.is_playing else "paused",
            )
            self.track_changed.emit(TrackChanged(self.family, self._app_name(), track))
        if play_changed:
            self.play_state_changed.emit(PlayStateChanged(self.family, self._app_name(), track.is_playing))

    def _reset_failures(self) -> None:
        self.state.consecutive_failures = 0
        self.state.backoff_since = None

    def _app_name(self) -> str:
        return self.current_app.app_name if self.current_app else ""

    def _maybe_sweep(self) -> None:
        if self.artwork is None:
            return
        now = self._clock()
        if self._last_sweep is not None and now - self._last_sweep < self.sweep_interval:
            return
        self._last_sweep = now
        self.artwork.sweep(MAX_AGE_SECONDS)

    def reset(self) -> None:
        """Forget everything reported so far."""
        with self._tick_lock:
            self.state = SourceState()
            self.poll_state = PollState.IDLE
            self.current_app = None

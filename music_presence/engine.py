# music_presence/engine.py
import logging
import sys
from typing import Callable, FrozenSet, Optional, Sequence

from pypresence import Presence

from .apps import SUPPORTED_APPS, AppPresenceDetector
from .arbitrator import DetectionArbitrator, make_policy
from .artwork import ArtworkCache
from .artwork_lookup import lookup_artwork_url
from .backoff import BackoffPolicy
from .config import Settings, load_settings
from .events import EventStream
from .logs import get_logger, setup_logging
from .models import LEGACY_FAMILY, MEDIA_FAMILY, ServiceStatusChanged, TrackChanged
from .polling import PollingSourceService
from .presence import PresencePublisher
from .scheduler import Job, Scheduler
from .sources import AdapterChain, LegacyAppAdapter, MediaSessionAdapter, SourceAdapter, WindowTitleAdapter

HEALTH_CHECK_INTERVAL = 10.0


def legacy_apps(platform: str = sys.platform) -> FrozenSet[str]:
    """Players read through the OS automation interface on this platform."""
    if platform == "win32":
        return frozenset({"iTunes"})
    if platform == "darwin":
        return frozenset({"Apple Music"})
    return frozenset()


def media_apps(platform: str = sys.platform) -> FrozenSet[str]:
    return frozenset(app.name for app in SUPPORTED_APPS) - legacy_apps(platform)


def _policy(settings: Settings, interval: float) -> BackoffPolicy:
    return BackoffPolicy(
        interval=interval,
        threshold=settings.failure_threshold,
        multiplier=settings.backoff_multiplier,
        cooldown=settings.backoff_cooldown,
    )


class Engine:
    """
    Wires detection, arbitration and publishing together.

    Everything runs on one shared Scheduler; `start()` returns immediately
    and `stop()` waits for in-flight ticks before clearing the presence.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        detector: Optional[AppPresenceDetector] = None,
        legacy_adapters: Optional[Sequence[SourceAdapter]] = None,
        media_adapters: Optional[Sequence[SourceAdapter]] = None,
        client_factory: Callable[[str], object] = Presence,
        scheduler: Optional[Scheduler] = None,
        artwork_lookup=lookup_artwork_url,
        platform: str = sys.platform,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings or load_settings()
        self.platform = platform
        self._log = logger or get_logger("engine")
        self._artwork_lookup = artwork_lookup

        self.scheduler = scheduler or Scheduler(logger=get_logger("scheduler"))
        self.detector = detector or AppPresenceDetector(logger=get_logger("apps"))
        self.artwork = ArtworkCache(self.settings.artwork_dir, logger=get_logger("artwork"))

        if legacy_adapters is None:
            legacy_adapters = [LegacyAppAdapter(self.artwork, platform=platform)]
        if media_adapters is None:
            media_adapters = [MediaSessionAdapter(self.artwork), WindowTitleAdapter()]

        timeout = self.settings.adapter_timeout
        self.legacy = PollingSourceService(
            LEGACY_FAMILY,
            AdapterChain(legacy_adapters, timeout=timeout, logger=get_logger("sources.legacy")),
            self.detector,
            legacy_apps(platform),
            _policy(self.settings, self.settings.legacy_interval),
            artwork=self.artwork,
        )
        self.media = PollingSourceService(
            MEDIA_FAMILY,
            AdapterChain(media_adapters, timeout=timeout, logger=get_logger("sources.media")),
            self.detector,
            media_apps(platform),
            _policy(self.settings, self.settings.media_interval),
            artwork=self.artwork,
        )
        self.services = (self.legacy, self.media)

        self.publisher = PresencePublisher(
            self.settings.client_id,
            scheduler=self.scheduler,
            client_factory=client_factory,
            artwork_lookup=artwork_lookup if self.settings.artwork_lookup else None,
            reconnect_interval=self.settings.reconnect_interval,
        )
        self.arbitrator = DetectionArbitrator(
            self.services,
            self.publisher,
            policy=self._make_policy(self.settings.arbitration_policy),
        )

        self.track_changed = self.arbitrator.track_changed
        self.play_state_changed = self.arbitrator.play_state_changed
        self.connection_changed = self.publisher.connection_changed
        self.notifications: EventStream[str] = EventStream("engine.notifications", self._log)
        self.status: EventStream[str] = EventStream("engine.status", self._log)
        self.service_status: EventStream[ServiceStatusChanged] = EventStream("engine.service_status", self._log)

        self.track_changed.subscribe(self._notify)
        self._running = False
        self._health_job: Optional[Job] = None
        self._last_status: Optional[ServiceStatusChanged] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def _make_policy(self, name: str):
        try:
            return make_policy(name)
        except ValueError as e:
            self._log.warning("%s, using last-playing-wins", e)
            return make_policy("last-playing-wins")

    def _notify(self, event: TrackChanged) -> None:
        if not self.settings.notify_on_change or not event.track.is_playing:
            return
        self.notifications.emit(f"Now playing: {event.track.name} - {event.track.artist}")

    def _report_problems(self) -> None:
        for problem in self.settings.problems():
            self._log.warning("Configuration: %s", problem.reason)
            self.status.emit(f"Configuration: {problem.reason}")

    def _health_check(self) -> None:
        """Report which supported players run and drop a presence nobody backs any more."""
        running = {d.app_name for d in self.detector.detect_running_apps()}
        families = tuple(s.family for s in self.services if s.app_names & running)
        status = ServiceStatusChanged(tuple(sorted(running)), families, self.arbitrator.active_family)
        if status != self._last_status:
            self._last_status = status
            self._log.info(
                "Players running: %s (active: %s)",
                ", ".join(status.running_apps) or "none",
                status.active_family or "none",
            )
            self.service_status.emit(status)

        if not families:
            track = self.publisher.current_track
            if track is not None and track.is_playing:
                self._log.info("No supported player running, clearing presence")
                self.publisher.clear_presence()

    # --------------------------------------------------
    # lifecycle
    # --------------------------------------------------

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._report_problems()
        self.status.emit("Starting")
        self.scheduler.submit(self.publisher.start, name="presence-connect")
        for service in self.services:
            service.start(self.scheduler)
        self._health_job = self.scheduler.every(
            "health-check", self._health_check, HEALTH_CHECK_INTERVAL, first_delay=HEALTH_CHECK_INTERVAL
        )
        self.scheduler.start()
        self._log.info(
            "Engine started (legacy: %s, media: %s)",
            ", ".join(sorted(self.legacy.app_names)) or "none",
            ", ".join(sorted(self.media.app_names)) or "none",
        )
        self.status.emit("Watching for music")

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        for service in self.services:
            service.stop()
        self.scheduler.cancel(self._health_job)
        self._health_job = None
        self._last_status = None
        self.scheduler.stop(wait=True, timeout=5.0)
        self.publisher.clear_presence()
        self.publisher.shutdown()
        for service in self.services:
            service.chain.close()
            service.reset()
        self._log.info("Engine stopped")
        self.status.emit("Stopped")

    def apply_settings(self, settings: Settings) -> None:
        """Take a new Settings object, e.g. after a toggle in the UI."""
        old, self.settings = self.settings, settings

        if settings.debug != old.debug or settings.log_dir != old.log_dir:
            setup_logging(settings.debug, settings.log_dir)
        if settings.arbitration_policy != old.arbitration_policy:
            self.arbitrator.set_policy(self._make_policy(settings.arbitration_policy))
        if settings.artwork_lookup != old.artwork_lookup:
            self.publisher.artwork_lookup = self._artwork_lookup if settings.artwork_lookup else None

        self.legacy.policy = _policy(settings, settings.legacy_interval)
        self.media.policy = _policy(settings, settings.media_interval)
        for service in self.services:
            service.chain.timeout = settings.adapter_timeout
        self.publisher.reconnect_interval = settings.reconnect_interval

        if settings.client_id != old.client_id:
            self.publisher.client_id = settings.client_id
            if self._running:
                self.scheduler.submit(self.publisher.reconnect, name="presence-reconnect-now")

        self._report_problems()

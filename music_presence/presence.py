# music_presence/presence.py
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Optional, Set, Tuple

from pypresence import Presence
from pypresence.exceptions import DiscordNotFound, PipeClosed
from pypresence.types import ActivityType

from .errors import ConnectionLost, PresenceEngineError, PublishError
from .events import EventStream
from .logs import get_logger
from .models import ConnectionState, ConnectionStatusChanged, Track
from .scheduler import Job, Scheduler

MAX_TEXT = 128

APPLE_MUSIC_LOGO = "apple_music_logo"
ITUNES_LOGO = "itunes_logo"
PLAY_ICON = "play_icon"

RECONNECT_INTERVAL = 30.0
RETRY_DELAY = 1.0
ARTWORK_MEMORY = 256

ArtworkLookup = Callable[[str, str, str], Optional[str]]
ArtworkKey = Tuple[str, str, str]


def _clip(value: str) -> str:
    return (value or "")[:MAX_TEXT]


def _artwork_key(track: Track) -> ArtworkKey:
    return (track.name, track.artist, track.album)


def pipe_open(client) -> bool:
    """False once the client's IPC pipe is known to be closed."""
    writer = getattr(client, "sock_writer", None)
    if writer is None:
        return True
    try:
        return not writer.is_closing()
    except Exception:
        return False


def logo_for(source: str) -> str:
    return APPLE_MUSIC_LOGO if source == "Apple Music" else ITUNES_LOGO


def build_payload(track: Track, source: str, artwork_url: Optional[str] = None) -> dict:
    payload = {
        "details": _clip(track.name),
        "state": _clip(f"by {track.artist}"),
        "large_image": artwork_url or logo_for(source),
        "small_image": PLAY_ICON,
        "small_text": _clip(f"Via {source}" if source else "Via music player"),
        "start": int(track.start_time),
        "end": int(track.end_time),
        "activity_type": ActivityType.LISTENING,
    }
    if track.album:
        payload["large_text"] = _clip(track.album)
    return payload


def describe_user(client) -> str:
    try:
        user = getattr(client, "user", None) or {}
        name = user.get("username", "")
        disc = user.get("discriminator", "")
        if not name:
            return ""
        return f"{name}#{disc}" if disc and disc != "0" else name
    except Exception:
        return ""


class PresencePublisher:
    """
    Keeps one Discord Rich Presence connection alive and publishes to it.

    Publishing never raises. A failed publish marks the connection degraded
    and hands recovery to a reconnect job on the shared scheduler, which
    retries until Discord answers again. Only one connect sequence runs at a
    time, whoever starts it. While connected, a liveness job notices a
    Discord client that went away between publishes.

    Cover art is looked up on its own worker thread. A track is published
    with the player logo first and re-published once its cover URL is known.
    """

    def __init__(
        self,
        client_id: str,
        scheduler: Optional[Scheduler] = None,
        client_factory: Callable[[str], object] = Presence,
        artwork_lookup: Optional[ArtworkLookup] = None,
        reconnect_interval: float = RECONNECT_INTERVAL,
        retry_delay: float = RETRY_DELAY,
        settle_delay: float = 0.3,
        artwork_executor=None,
        logger: Optional[logging.Logger] = None,
    ):
        self.client_id = client_id
        self.scheduler = scheduler
        self.client_factory = client_factory
        self.artwork_lookup = artwork_lookup
        self.reconnect_interval = reconnect_interval
        self.retry_delay = retry_delay
        self.settle_delay = settle_delay
        self._log = logger or get_logger("presence")

        self.state = ConnectionState.DISCONNECTED
        self.reason = ""
        self.current_track: Optional[Track] = None
        self.current_source = ""

        self.connection_changed: EventStream[ConnectionStatusChanged] = EventStream(
            "presence.connection_changed", self._log
        )

        self._client = None
        self._started = False
        self._lock = threading.RLock()
        self._inflight = threading.Lock()
        self._reconnect_job: Optional[Job] = None
        self._liveness_job: Optional[Job] = None

        self._artwork_executor = artwork_executor
        self._own_artwork_executor = artwork_executor is None
        self._artwork_urls: Dict[ArtworkKey, Optional[str]] = {}
        self._artwork_pending: Set[ArtworkKey] = set()

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.READY

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnect_job is not None

    # --------------------------------------------------
    # lifecycle
    # --------------------------------------------------

    def start(self) -> bool:
        with self._lock:
            self._started = True
        ok = self._connect_guarded()
        if ok:
            # a track may have arrived while the first connect was running
            self._republish()
        return ok

    def shutdown(self) -> None:
        with self._lock:
            was_started = self._started
            self._started = False
            self._stop_reconnect_job()
            self._stop_liveness_job()
            client, self._client = self._client, None
            pool = self._artwork_executor if self._own_artwork_executor else None
            if pool is not None:
                self._artwork_executor = None
            self._artwork_pending.clear()
        if pool is not None:
            pool.shutdown(wait=False, cancel_futures=True)
        if client is not None:
            try:
                client.close()
            except Exception as e:
                self._log.debug("Closing Discord client: %s", e)
        if was_started or self.state is not ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED, "shut down")
            self._log.info("Presence publisher shut down")

    def reconnect(self) -> bool:
        """Drop the current handle and connect again."""
        if not self._started:
            return False
        self._drop_client()
        ok = self._connect_guarded()
        if ok:
            self._republish()
        return ok

    # --------------------------------------------------
    # publishing
    # --------------------------------------------------

    def update_presence(self, track: Track, source: str = "") -> bool:
        if not self._started:
            return False
        self.current_track = track
        self.current_source = source

        if self._client is None or self.state is not ConnectionState.READY:
            if not self._connect_guarded():
                return False
            if self.current_track is not track:
                # replaced while we were connecting
                self._republish()
                return False

        if not self._send(track, source):
            return False
        self._request_artwork(track)
        return True

    def _send(self, track: Track, source: str) -> bool:
        with self._lock:
            artwork_url = self._artwork_urls.get(_artwork_key(track))
        payload = build_payload(track, source, artwork_url)
        try:
            with self._lock:
                client = self._client
                if client is None:
                    return False
                client.update(**payload)
        except Exception as e:
            self._fail(self._classify(e, "publish failed"))
            return False
        self._log.debug("Presence: %s - %s via %s", track.artist, track.name, source or "?")
        return True

    def clear_presence(self) -> None:
        if self.current_track is not None:
            self.current_track = self.current_track.with_playing(False)
        if not self._started:
            return
        with self._lock:
            client = self._client
        if client is None:
            return
        try:
            client.clear()
        except Exception as e:
            self._fail(self._classify(e, "clear failed"))
            return
        self._log.debug("Presence cleared")

    def on_connection_lost(self, reason: str = "connection lost") -> None:
        """Report a failure noticed outside a publish call."""
        if self._started:
            self._fail(ConnectionLost(reason))

    # --------------------------------------------------
    # cover art
    # --------------------------------------------------

    def _artwork_pool(self):
        with self._lock:
            if self._artwork_executor is None:
                self._artwork_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mps-artwork")
            return self._artwork_executor

    def _request_artwork(self, track: Track) -> None:
        lookup = self.artwork_lookup
        if lookup is None:
            return
        key = _artwork_key(track)
        with self._lock:
            if key in self._artwork_urls or key in self._artwork_pending:
                return
            self._artwork_pending.add(key)
        try:
            future = self._artwork_pool().submit(lookup, *key)
        except RuntimeError:
            # pool shut down underneath us
            with self._lock:
                self._artwork_pending.discard(key)
            return
        future.add_done_callback(lambda f: self._artwork_ready(key, f))

    def _artwork_ready(self, key: ArtworkKey, future: Future) -> None:
        if future.cancelled():
            with self._lock:
                self._artwork_pending.discard(key)
            return
        try:
            url = future.result()
        except Exception as e:
            self._log.debug("Artwork lookup failed: %s", e)
            url = None
        with self._lock:
            self._artwork_pending.discard(key)
            if len(self._artwork_urls) >= ARTWORK_MEMORY:
                self._artwork_urls.clear()
            self._artwork_urls[key] = url

        track = self.current_track
        if not url or not self._started or not self.is_connected:
            return
        if track is None or not track.is_playing or _artwork_key(track) != key:
            return
        self._send(track, self.current_source)

    # --------------------------------------------------
    # connection state machine
    # --------------------------------------------------

    def _connect_guarded(self) -> bool:
        if not self._inflight.acquire(blocking=False):
            self._log.debug("Connect already in progress")
            return False
        try:
            return self._initialize()
        finally:
            self._inflight.release()

    def _initialize(self) -> bool:
        self._set_state(ConnectionState.INITIALIZING)
        try:
            client = self.client_factory(self.client_id)
            client.connect()
            # give Discord time to send the READY payload
            if self.settle_delay:
                time.sleep(self.settle_delay)
        except Exception as e:
            self._fail(self._classify(e, "connect failed"))
            return False

        with self._lock:
            if not self._started:
                # shut down while we were connecting
                try:
                    client.close()
                except Exception:
                    pass
                return False
            self._client = client
            self._stop_reconnect_job()
            self._ensure_liveness_job()

        user = describe_user(client)
        self._log.info("Connected to Discord%s", f" as {user}" if user else "")
        self._set_state(ConnectionState.READY, f"Connected as {user}" if user else "Connected")
        return True

    def _fail(self, error: PresenceEngineError) -> None:
        self._log.warning("Discord %s", error.reason)
        self._drop_client()
        with self._lock:
            self._stop_liveness_job()
            if not self._started:
                # shut down meanwhile, stay disconnected
                return
        self._set_state(ConnectionState.DEGRADED, error.reason)
        self._ensure_reconnect_job()

    def _classify(self, e: Exception, what: str) -> PresenceEngineError:
        if isinstance(e, (PipeClosed, DiscordNotFound, ConnectionError)):
            return ConnectionLost(f"{what}: {e}")
        return PublishError(f"{what}: {e}")

    def _ensure_reconnect_job(self) -> None:
        with self._lock:
            if not self._started or self.scheduler is None:
                return
            if self._reconnect_job is None:
                self._reconnect_job = self.scheduler.every(
                    "presence-reconnect",
                    self._reconnect_tick,
                    self.reconnect_interval,
                    first_delay=self.retry_delay,
                )
        self._set_state(ConnectionState.RECONNECTING, self.reason)

    def _stop_reconnect_job(self) -> None:
        with self._lock:
            job, self._reconnect_job = self._reconnect_job, None
        if job is not None and self.scheduler is not None:
            self.scheduler.cancel(job)

    def _reconnect_tick(self) -> None:
        if not self._started or self.state is ConnectionState.READY:
            self._stop_reconnect_job()
            return
        self._log.info("Reconnecting to Discord")
        if self._connect_guarded():
            self._republish()

    def _ensure_liveness_job(self) -> None:
        with self._lock:
            if self.scheduler is None or self._liveness_job is not None:
                return
            self._liveness_job = self.scheduler.every(
                "presence-liveness",
                self._check_alive,
                lambda: self.reconnect_interval,
                first_delay=self.reconnect_interval,
            )

    def _stop_liveness_job(self) -> None:
        with self._lock:
            job, self._liveness_job = self._liveness_job, None
        if job is not None and self.scheduler is not None:
            self.scheduler.cancel(job)

    def _check_alive(self) -> None:
        """Notice a Discord client that went away while nothing was published."""
        if not self._started or self.state is not ConnectionState.READY:
            return
        with self._lock:
            client = self._client
        if client is None:
            return
        if not pipe_open(client):
            self.on_connection_lost("Discord pipe closed")
            return
        track = self.current_track
        if track is None or not track.is_playing:
            # an idle clear is a harmless round trip that fails on a dead pipe
            self.clear_presence()

    def _republish(self) -> None:
        track = self.current_track
        if track is not None and track.is_playing:
            self.update_presence(track, self.current_source)

    def _drop_client(self) -> None:
        with self._lock:
            client, self._client = self._client, None
        if client is None:
            return
        try:
            client.close()
        except Exception:
            pass

    def _set_state(self, state: ConnectionState, message: str = "") -> None:
        with self._lock:
            changed = state is not self.state or message != self.reason
            self.state = state
            self.reason = message
        if changed:
            self.connection_changed.emit(ConnectionStatusChanged(state, message))

# music_presence/models.py
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple

# Window used when a source cannot tell how long the track is.
DEFAULT_DURATION = 180.0

UNKNOWN_ARTIST = "Unknown Artist"

# Source families, highest priority first.
LEGACY_FAMILY = "legacy"
MEDIA_FAMILY = "media"
FAMILIES = (LEGACY_FAMILY, MEDIA_FAMILY)


@dataclass(frozen=True)
class Track:
    """
    Snapshot of the track a source is currently reporting.

    Only name, artist, album and is_playing take part in equality, so two
    polls of the same song compare equal even though their timestamps and
    artwork files differ.
    """

    name: str
    artist: str
    album: str = ""
    is_playing: bool = False

    genre: str = field(default="", compare=False)
    year: int = field(default=0, compare=False)
    track_number: int = field(default=0, compare=False)
    track_count: int = field(default=0, compare=False)
    artwork_path: Optional[str] = field(default=None, compare=False)
    start_time: float = field(default=0.0, compare=False)
    end_time: float = field(default=0.0, compare=False)

    def __post_init__(self):
        if not self.start_time:
            object.__setattr__(self, "start_time", time.time())
        if self.end_time <= self.start_time:
            object.__setattr__(self, "end_time", self.start_time + DEFAULT_DURATION)

    @classmethod
    def from_position(
        cls,
        name: str,
        artist: str,
        album: str = "",
        *,
        is_playing: bool,
        position: float = 0.0,
        duration: float = 0.0,
        now: Optional[float] = None,
        **extra,
    ) -> "Track":
        now = time.time() if now is None else now
        position = max(0.0, position or 0.0)
        if not duration or duration <= 0:
            duration = DEFAULT_DURATION
        start = now - position
        return cls(
            name=name,
            artist=artist,
            album=album,
            is_playing=is_playing,
            start_time=start,
            end_time=start + duration,
            **extra,
        )

    @property
    def identity(self) -> Tuple[str, str, str]:
        return (self.name, self.artist, self.album)

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def elapsed(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return min(self.duration, max(0.0, now - self.start_time))

    def remaining(self, now: Optional[float] = None) -> float:
        return self.duration - self.elapsed(now)

    def progress(self, now: Optional[float] = None) -> float:
        """Percentage of the track played, 0 while paused."""
        if not self.is_playing or self.duration <= 0:
            return 0.0
        return 100.0 * self.elapsed(now) / self.duration

    def with_playing(self, playing: bool) -> "Track":
        return replace(self, is_playing=playing)


@dataclass(frozen=True)
class DetectedApp:
    app_name: str
    process_name: str
    process_id: int
    window_title: str = ""
    priority: int = 0

    def __str__(self) -> str:
        return f"{self.app_name} (PID: {self.process_id}, Process: {self.process_name})"


class PollState(Enum):
    IDLE = "idle"
    POLLING = "polling"
    BACKOFF = "backoff"


@dataclass
class SourceState:
    last_track: Optional[Track] = None
    is_active: bool = False
    consecutive_failures: int = 0
    last_success_timestamp: Optional[float] = None
    backoff_since: Optional[float] = None


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    INITIALIZING = "initializing"
    READY = "ready"
    DEGRADED = "degraded"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class TrackChanged:
    family: str
    app_name: str
    track: Track


@dataclass(frozen=True)
class PlayStateChanged:
    family: str
    app_name: str
    is_playing: bool


@dataclass(frozen=True)
class ConnectionStatusChanged:
    state: ConnectionState
    message: str = ""

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.READY


@dataclass(frozen=True)
class ServiceStatusChanged:
    """Which supported players are running, reported by the engine health check."""

    running_apps: Tuple[str, ...] = ()
    running_families: Tuple[str, ...] = ()
    active_family: Optional[str] = None

    @property
    def any_running(self) -> bool:
        return bool(self.running_apps)

# music_presence/sources/media_session.py
import asyncio
import logging
import time
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence

from ..apps import media_session_identifiers
from ..artwork import ArtworkCache
from ..logs import RateLimitedLog, get_logger
from ..models import UNKNOWN_ARTIST, DetectedApp, Track
from .base import SourceAdapter

try:
    from winsdk.windows.media.control import (
        GlobalSystemMediaTransportControlsSessionManager as MediaManager,
    )
    from winsdk.windows.storage.streams import Buffer, DataReader, InputStreamOptions
except Exception:  # winsdk not installed or not on Windows
    MediaManager = None
    Buffer = DataReader = InputStreamOptions = None


# GlobalSystemMediaTransportControlsSessionPlaybackStatus
STATUS_CLOSED = 0
STATUS_OPENED = 1
STATUS_CHANGING = 2
STATUS_STOPPED = 3
STATUS_PLAYING = 4
STATUS_PAUSED = 5

# Substrings of source_app_user_model_id worth listening to.
ALLOWED_SOURCES = (
    "zunemusic",
    "applemusic",
    "apple music",
    "itunes",
    "spotify",
    "vlc",
    "aimp",
    "foobar2000",
    "musicbee",
    "winamp",
    "wmplayer",
)

MAX_THUMBNAIL_BYTES = 10 * 1024 * 1024


def _timespan_seconds(value) -> float:
    if value is None:
        return 0.0
    try:
        return float(value.total_seconds())
    except Exception:
        pass
    try:
        # Some WinRT bindings expose a "duration" in 100ns ticks.
        return float(value.duration) / 10_000_000.0
    except Exception:
        return 0.0


def _status_value(status) -> Optional[int]:
    if status is None:
        return None
    try:
        return int(status)
    except (TypeError, ValueError):
        return None


def is_relevant_source(app_id: str, identifiers: Iterable[str] = ALLOWED_SOURCES) -> bool:
    app_id = (app_id or "").lower()
    if not app_id:
        return False
    return any(ident.lower() in app_id for ident in identifiers)


def _genres(info) -> str:
    try:
        return ", ".join(str(g) for g in (info.genres or []))
    except Exception:
        return ""


def _session_app_id(session) -> str:
    try:
        return session.source_app_user_model_id or ""
    except Exception:
        return ""


def _session_status(session) -> Optional[int]:
    try:
        return _status_value(session.get_playback_info().playback_status)
    except Exception:
        return None


def pick_session(sessions: Sequence, identifiers: Iterable[str] = ALLOWED_SOURCES, current=None):
    """Prefer a playing relevant session, else the first relevant one."""
    identifiers = tuple(identifiers)
    if current is not None and is_relevant_source(_session_app_id(current), identifiers):
        if _session_status(current) == STATUS_PLAYING:
            return current

    fallback = None
    for candidate in sessions or []:
        if not is_relevant_source(_session_app_id(candidate), identifiers):
            continue
        if _session_status(candidate) == STATUS_PLAYING:
            return candidate
        if fallback is None:
            fallback = candidate

    if fallback is None and current is not None and is_relevant_source(_session_app_id(current), identifiers):
        return current
    return fallback


class MediaSessionAdapter(SourceAdapter):
    """Reads the Windows media-session registry (System Media Transport Controls)."""

    name = "media-session"

    def __init__(
        self,
        artwork: Optional[ArtworkCache] = None,
        manager_factory=None,
        logger: Optional[logging.Logger] = None,
        clock=time.time,
    ):
        self.artwork = artwork
        self._manager_factory = manager_factory
        if self._manager_factory is None and MediaManager is not None:
            self._manager_factory = MediaManager.request_async
        self._log = logger or get_logger("sources.media_session")
        self._sessions_log = RateLimitedLog(self._log, interval=5.0)
        self._clock = clock

    def is_available(self) -> bool:
        return self._manager_factory is not None

    def identifiers_for(self, hint: Optional[DetectedApp]) -> List[str]:
        if hint is None:
            return list(ALLOWED_SOURCES)
        idents = [i.lower() for i in media_session_identifiers(hint.app_name)]
        return idents or list(ALLOWED_SOURCES)

    def try_get_track(self, hint: Optional[DetectedApp] = None) -> Optional[Track]:
        if self._manager_factory is None:
            return None
        try:
            return asyncio.run(self._get_track_async(hint))
        except RuntimeError:
            # an event loop is already running in this thread
            loop = asyncio.new_event_loop()
            try:
                return loop.run_until_complete(self._get_track_async(hint))
            finally:
                loop.close()

    async def _get_track_async(self, hint: Optional[DetectedApp]) -> Optional[Track]:
        manager = await self._manager_factory()
        if manager is None:
            return None

        try:
            current = manager.get_current_session()
        except Exception:
            current = None
        try:
            sessions = list(manager.get_sessions() or [])
        except Exception:
            sessions = []

        identifiers = self.identifiers_for(hint)
        session = pick_session(sessions, identifiers, current=current)
        if session is None:
            if sessions:
                names = [f"app_id='{_session_app_id(s)}' status='{_session_status(s)}'" for s in sessions]
                self._sessions_log.debug(
                    "no-session", "No relevant media session. Sessions: %s", " | ".join(names)
                )
            return None

        status = _session_status(session)
        if status is None or status in (STATUS_STOPPED, STATUS_CLOSED):
            return None

        info = await session.try_get_media_properties_async()
        if info is None:
            return None
        title = (getattr(info, "title", "") or "").strip()
        if not title:
            return None

        try:
            timeline = session.get_timeline_properties()
            position = _timespan_seconds(timeline.position)
            duration = _timespan_seconds(timeline.end_time) - _timespan_seconds(timeline.start_time)
        except Exception:
            position = 0.0
            duration = 0.0

        track = Track.from_position(
            title,
            (getattr(info, "artist", "") or "").strip() or UNKNOWN_ARTIST,
            (getattr(info, "album_title", "") or "").strip(),
            is_playing=status == STATUS_PLAYING,
            position=position,
            duration=duration,
            now=self._clock(),
            genre=_genres(info),
            track_number=getattr(info, "track_number", 0) or 0,
            track_count=getattr(info, "album_track_count", 0) or 0,
        )

        thumbnail = getattr(info, "thumbnail", None)
        if thumbnail is not None and self.artwork is not None:
            data = await self._read_thumbnail(thumbnail)
            path = self.artwork.store(f"{track.artist}_{track.name}", data) if data else None
            if path:
                track = replace(track, artwork_path=path)
        return track

    async def _read_thumbnail(self, thumbnail) -> bytes:
        if Buffer is None:
            return b""
        try:
            stream = await thumbnail.open_read_async()
            size = int(stream.size)
            if size <= 0 or size > MAX_THUMBNAIL_BYTES:
                return b""
            buffer = Buffer(size)
            await stream.read_async(buffer, size, InputStreamOptions.NONE)
            reader = DataReader.from_buffer(buffer)
            data = bytearray(size)
            for i in range(size):
                data[i] = reader.read_byte()
            return bytes(data)
        except Exception as e:
            self._log.debug("Thumbnail read failed: %s", e)
            return b""

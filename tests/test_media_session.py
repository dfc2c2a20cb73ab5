from datetime import timedelta
from types import SimpleNamespace

from conftest import make_app

from music_presence.sources.media_session import (
    STATUS_PAUSED,
    STATUS_PLAYING,
    STATUS_STOPPED,
    MediaSessionAdapter,
    is_relevant_source,
    pick_session,
)


class FakeSession:
    def __init__(self, app_id, status=STATUS_PLAYING, title="Song A", artist="Artist X", position=30, end=200):
        self.source_app_user_model_id = app_id
        self._status = status
        self._info = SimpleNamespace(
            title=title,
            artist=artist,
            album_title="Album",
            genres=["Pop"],
            track_number=2,
            album_track_count=9,
            thumbnail=None,
        )
        self._timeline = SimpleNamespace(
            position=timedelta(seconds=position),
            start_time=timedelta(0),
            end_time=timedelta(seconds=end),
        )

    def get_playback_info(self):
        return SimpleNamespace(playback_status=self._status)

    async def try_get_media_properties_async(self):
        return self._info

    def get_timeline_properties(self):
        return self._timeline


class FakeManager:
    def __init__(self, sessions, current=None):
        self.sessions = sessions
        self.current = current

    def get_current_session(self):
        return self.current

    def get_sessions(self):
        return self.sessions


def adapter_for(*sessions, current=None):
    manager = FakeManager(list(sessions), current)

    async def factory():
        return manager

    return MediaSessionAdapter(manager_factory=factory, clock=lambda: 1000.0)


def test_is_relevant_source():
    assert is_relevant_source("Spotify.exe")
    assert is_relevant_source("AppleInc.AppleMusicWin_nzyj5cx40ttqa!App")
    assert not is_relevant_source("Microsoft.Edge")
    assert not is_relevant_source("")


def test_pick_prefers_playing_session():
    paused = FakeSession("Spotify.exe", STATUS_PAUSED)
    playing = FakeSession("vlc.exe", STATUS_PLAYING)
    assert pick_session([paused, playing]) is playing
    assert pick_session([paused]) is paused
    assert pick_session([FakeSession("chrome.exe")]) is None


def test_reads_playing_session():
    track = adapter_for(FakeSession("Spotify.exe")).try_get_track(make_app("Spotify", priority=80))
    assert (track.name, track.artist, track.album) == ("Song A", "Artist X", "Album")
    assert track.is_playing
    assert track.start_time == 970.0
    assert track.end_time == 1170.0
    assert track.genre == "Pop"


def test_hint_narrows_sessions():
    adapter = adapter_for(FakeSession("Spotify.exe"))
    assert adapter.try_get_track(make_app("VLC", priority=70)) is None


def test_paused_session_reports_not_playing():
    track = adapter_for(FakeSession("Spotify.exe", STATUS_PAUSED)).try_get_track(None)
    assert track is not None
    assert not track.is_playing


def test_stopped_or_untitled_is_none():
    assert adapter_for(FakeSession("Spotify.exe", STATUS_STOPPED)).try_get_track(None) is None
    assert adapter_for(FakeSession("Spotify.exe", title="")).try_get_track(None) is None
    assert adapter_for().try_get_track(None) is None


def test_missing_artist_and_duration():
    track = adapter_for(FakeSession("Spotify.exe", artist="", end=0)).try_get_track(None)
    assert track.artist == "Unknown Artist"
    assert track.duration == 180.0


def test_unavailable_without_manager(monkeypatch):
    from music_presence.sources import media_session

    monkeypatch.setattr(media_session, "MediaManager", None)
    adapter = MediaSessionAdapter()
    assert not adapter.is_available()
    assert adapter.try_get_track(None) is None

import pytest

pytest.importorskip("PySide6")

from conftest import make_track  # noqa: E402

from music_presence.events import EventStream  # noqa: E402
from music_presence.models import (  # noqa: E402
    ConnectionState,
    ConnectionStatusChanged,
    PlayStateChanged,
    ServiceStatusChanged,
    TrackChanged,
)
from music_presence.ui.worker import PresenceWorker, track_dict  # noqa: E402


class StubEngine:
    def __init__(self):
        self.track_changed = EventStream("track_changed")
        self.play_state_changed = EventStream("play_state_changed")
        self.connection_changed = EventStream("connection_changed")
        self.notifications = EventStream("notifications")
        self.status = EventStream("status")
        self.service_status = EventStream("service_status")
        self.applied = []

    def apply_settings(self, settings):
        self.applied.append(settings)


@pytest.fixture
def worker():
    engine = StubEngine()
    w = PresenceWorker(engine=engine)
    seen = {"status": [], "now_playing": [], "connection": [], "notification": [], "services": []}
    w.status.connect(seen["status"].append)
    w.now_playing.connect(seen["now_playing"].append)
    w.connection.connect(seen["connection"].append)
    w.notification.connect(seen["notification"].append)
    w.services.connect(seen["services"].append)
    return w, engine, seen


def test_track_dict():
    d = track_dict(make_track(start_time=1000.0, end_time=1200.0), "iTunes", now=1050.0)
    assert d["title"] == "Song A"
    assert d["position"] == 50.0
    assert d["duration"] == 200.0
    assert d["playing"] is True
    assert d["source"] == "iTunes"
    assert track_dict(None)["title"] == ""


def test_track_event_becomes_signals(worker):
    w, engine, seen = worker
    engine.track_changed.emit(TrackChanged("legacy", "iTunes", make_track()))
    assert seen["now_playing"][0]["title"] == "Song A"
    assert seen["status"] == ["Playing: Song A - Artist X"]


def test_stop_event_blanks_now_playing(worker):
    w, engine, seen = worker
    engine.play_state_changed.emit(PlayStateChanged("legacy", "iTunes", False))
    assert seen["now_playing"][0]["title"] == ""
    assert seen["status"] == ["iTunes: nothing playing"]


def test_connection_and_notifications(worker):
    w, engine, seen = worker
    engine.connection_changed.emit(ConnectionStatusChanged(ConnectionState.READY, "Connected"))
    engine.notifications.emit("Now playing: Song A - Artist X")
    assert seen["connection"] == [{"state": "ready", "connected": True, "message": "Connected"}]
    assert seen["notification"] == ["Now playing: Song A - Artist X"]


def test_apply_settings_is_forwarded(worker):
    w, engine, seen = worker
    w.apply_settings("new settings")
    assert engine.applied == ["new settings"]


def test_service_status_becomes_signal(worker):
    w, engine, seen = worker
    engine.service_status.emit(ServiceStatusChanged(("Spotify", "iTunes"), ("legacy", "media"), "media"))
    engine.service_status.emit(ServiceStatusChanged())
    assert seen["services"] == [
        {"apps": ["Spotify", "iTunes"], "families": ["legacy", "media"], "active": "media"},
        {"apps": [], "families": [], "active": ""},
    ]

# music_presence/ui/worker.py
import time
from typing import Optional

from PySide6.QtCore import QThread, Signal

from ..config import Settings
from ..engine import Engine
from ..logs import get_logger
from ..models import ConnectionStatusChanged, PlayStateChanged, ServiceStatusChanged, Track, TrackChanged

log = get_logger("ui.worker")


def track_dict(track: Optional[Track], source: str = "", now: Optional[float] = None) -> dict:
    if track is None:
        return {
            "title": "",
            "artist": "",
            "album": "",
            "duration": 0.0,
            "position": 0.0,
            "playing": False,
            "artwork_path": "",
            "source": source,
        }
    now = time.time() if now is None else now
    return {
        "title": track.name,
        "artist": track.artist,
        "album": track.album,
        "duration": track.duration,
        "position": track.elapsed(now),
        "playing": track.is_playing,
        "artwork_path": track.artwork_path or "",
        "source": source,
    }


class PresenceWorker(QThread):
    """Runs an Engine for the desktop window and re-emits its events as Qt signals."""

    status = Signal(str)
    now_playing = Signal(dict)   # see track_dict
    connection = Signal(dict)    # {"state": str, "connected": bool, "message": str}
    notification = Signal(str)
    services = Signal(dict)      # {"apps": list, "families": list, "active": str}

    def __init__(self, settings: Optional[Settings] = None, engine: Optional[Engine] = None, parent=None):
        super().__init__(parent)
        self.engine = engine or Engine(settings)
        self._running = False

        self.engine.track_changed.subscribe(self._on_track)
        self.engine.play_state_changed.subscribe(self._on_play_state)
        self.engine.connection_changed.subscribe(self._on_connection)
        self.engine.notifications.subscribe(self.notification.emit)
        self.engine.status.subscribe(self.status.emit)
        self.engine.service_status.subscribe(self._on_service_status)

    def stop(self):
        self._running = False

    def apply_settings(self, settings: Settings):
        self.engine.apply_settings(settings)

    def run(self):
        self._running = True
        try:
            self.engine.start()
        except Exception as e:
            log.exception("Engine failed to start")
            self.status.emit(f"Engine failed to start: {e}")
            return

        try:
            while self._running:
                self.msleep(200)
        finally:
            self.engine.stop()

    # engine callbacks arrive on scheduler threads; Qt queues the signals

    def _on_track(self, event: TrackChanged):
        self.now_playing.emit(track_dict(event.track, event.app_name))
        state = "Playing" if event.track.is_playing else "Paused"
        self.status.emit(f"{state}: {event.track.name} - {event.track.artist}")

    def _on_play_state(self, event: PlayStateChanged):
        if not event.is_playing:
            self.now_playing.emit(track_dict(None, event.app_name))
            self.status.emit(f"{event.app_name or 'Music'}: nothing playing")

    def _on_connection(self, event: ConnectionStatusChanged):
        self.connection.emit(
            {"state": event.state.value, "connected": event.is_connected, "message": event.message}
        )

    def _on_service_status(self, event: ServiceStatusChanged):
        self.services.emit(
            {
                "apps": list(event.running_apps),
                "families": list(event.running_families),
                "active": event.active_family or "",
            }
        )

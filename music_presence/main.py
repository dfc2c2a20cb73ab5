# music_presence/main.py
import sys
import time

from .config import load_settings
from .engine import Engine
from .logs import get_logger, setup_logging
from .models import ConnectionStatusChanged, PlayStateChanged, TrackChanged

log = get_logger("main")


def _on_track(event: TrackChanged):
    track = event.track
    log.info("[%s] %s: %s - %s", event.app_name or event.family, "Playing" if track.is_playing else "Paused",
             track.name, track.artist)


def _on_play_state(event: PlayStateChanged):
    if not event.is_playing:
        log.info("[%s] Nothing playing", event.app_name or event.family)


def _on_connection(event: ConnectionStatusChanged):
    log.info("[RPC] %s%s", event.state.value, f" ({event.message})" if event.message else "")


def main() -> int:
    settings = load_settings()
    setup_logging(settings.debug, settings.log_dir)

    if sys.platform not in ("win32", "darwin"):
        log.warning("Unsupported OS %s, only window titles of running players can be read", sys.platform)

    engine = Engine(settings)
    engine.track_changed.subscribe(_on_track)
    engine.play_state_changed.subscribe(_on_play_state)
    engine.connection_changed.subscribe(_on_connection)
    engine.status.subscribe(lambda message: log.info("[Engine] %s", message))

    engine.start()
    log.info("Watching for music... (Ctrl+C to stop)")
    try:
        while engine.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        engine.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())

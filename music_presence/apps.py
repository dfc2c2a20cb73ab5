# music_presence/apps.py
import logging
import sys
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import psutil

from .logs import get_logger
from .models import DetectedApp

if sys.platform == "win32":
    try:
        import win32gui
        import win32process
    except Exception:  # pywin32 missing
        win32gui = None
        win32process = None
else:
    win32gui = None
    win32process = None


@dataclass(frozen=True)
class SupportedApp:
    name: str
    process_names: Tuple[str, ...]
    priority: int
    session_ids: Tuple[str, ...] = ()


# Highest priority wins when several players are open at once.
SUPPORTED_APPS: Tuple[SupportedApp, ...] = (
    SupportedApp(
        "Apple Music",
        ("Music", "AppleMusic", "Microsoft.ZuneMusic", "ZuneMusic"),
        100,
        ("Microsoft.ZuneMusic", "ZuneMusic", "AppleMusic", "Apple Music", "com.apple.music"),
    ),
    SupportedApp("iTunes", ("iTunes", "iTunesHelper"), 90, ("iTunes", "com.apple.itunes")),
    SupportedApp("Spotify", ("Spotify", "SpotifyWebHelper"), 80, ("Spotify", "com.spotify.client")),
    SupportedApp("VLC", ("vlc",), 70, ("vlc", "VideoLAN.VLCMediaPlayer")),
    SupportedApp(
        "Windows Media Player",
        ("wmplayer", "MediaPlayer"),
        60,
        ("wmplayer", "Microsoft.WindowsMediaPlayer"),
    ),
    SupportedApp("AIMP", ("AIMP",), 50, ("AIMP",)),
    SupportedApp("foobar2000", ("foobar2000",), 50, ("foobar2000",)),
    SupportedApp("MusicBee", ("MusicBee",), 50, ("MusicBee",)),
    SupportedApp("Winamp", ("winamp",), 50, ("Winamp",)),
)

APPS_BY_NAME: Dict[str, SupportedApp] = {app.name: app for app in SUPPORTED_APPS}


def normalize_process_name(name: str) -> str:
    name = (name or "").strip().lower()
    if name.endswith(".exe"):
        name = name[:-4]
    return name


def media_session_identifiers(app_name: str) -> List[str]:
    app = APPS_BY_NAME.get(app_name)
    if app is None:
        return []
    return list(app.session_ids or app.process_names)


def _iter_processes() -> Iterable[Tuple[int, str]]:
    for proc in psutil.process_iter(["pid", "name"]):
        try:
            yield proc.info["pid"], proc.info["name"] or ""
        except (psutil.NoSuchProcess, psutil.AccessDenied, KeyError):
            continue


def _window_titles() -> Dict[int, str]:
    """Visible top-level window title per pid (Windows only)."""
    if win32gui is None:
        return {}

    titles: Dict[int, str] = {}

    def _collect(hwnd, _):
        try:
            if not win32gui.IsWindowVisible(hwnd):
                return True
            title = win32gui.GetWindowText(hwnd)
            if not title:
                return True
            _, pid = win32process.GetWindowThreadProcessId(hwnd)
            # first visible window per process is its main one
            titles.setdefault(pid, title)
        except Exception:
            pass
        return True

    try:
        win32gui.EnumWindows(_collect, None)
    except Exception:
        return titles
    return titles


class AppPresenceDetector:
    """
    Finds which supported players are running, best first.

    Holds no state between calls; the process and window listings are
    injectable for tests and other platforms.
    """

    def __init__(
        self,
        apps: Iterable[SupportedApp] = SUPPORTED_APPS,
        process_lister: Callable[[], Iterable[Tuple[int, str]]] = _iter_processes,
        window_lister: Callable[[], Dict[int, str]] = _window_titles,
        logger: Optional[logging.Logger] = None,
    ):
        self.apps = tuple(apps)
        self._list_processes = process_lister
        self._list_windows = window_lister
        self._log = logger or get_logger("apps")

    def detect_running_apps(self) -> List[DetectedApp]:
        try:
            running: Dict[str, Tuple[int, str]] = {}
            for pid, name in self._list_processes():
                key = normalize_process_name(name)
                if key and key not in running:
                    running[key] = (pid, name)
        except Exception as e:
            self._log.warning("Process listing failed: %s", e)
            return []

        detected: List[DetectedApp] = []
        titles: Optional[Dict[int, str]] = None
        for app in self.apps:
            for process_name in app.process_names:
                hit = running.get(normalize_process_name(process_name))
                if hit is None:
                    continue
                if titles is None:
                    try:
                        titles = self._list_windows()
                    except Exception as e:
                        self._log.debug("Window listing failed: %s", e)
                        titles = {}
                pid, _ = hit
                detected.append(
                    DetectedApp(
                        app_name=app.name,
                        process_name=process_name,
                        process_id=pid,
                        window_title=titles.get(pid, ""),
                        priority=app.priority,
                    )
                )
                # one instance per app
                break

        detected.sort(key=lambda d: d.priority, reverse=True)
        return detected

    def is_app_running(self, app_name: str) -> bool:
        return any(d.app_name == app_name for d in self.detect_running_apps())

    def priority_app(self) -> Optional[DetectedApp]:
        detected = self.detect_running_apps()
        return detected[0] if detected else None

# music_presence/sources/window_title.py
import logging
import re
from typing import Optional

from ..apps import SUPPORTED_APPS
from ..logs import get_logger
from ..models import UNKNOWN_ARTIST, DetectedApp, Track
from .base import SourceAdapter

# " - ", en dash, em dash, in that order
SEPARATORS = (" - ", " – ", " — ")

MIN_BARE_TITLE = 5

_GENERIC_TITLES = {app.name.lower() for app in SUPPORTED_APPS} | {
    "music",
    "spotify free",
    "spotify premium",
    "vlc media player",
}

# Players that append their own name to the window title.
_PLAYER_SUFFIX = re.compile(
    r"\s+[-–—]\s+(vlc media player|foobar2000.*|winamp|aimp|musicbee|windows media player)$",
    re.IGNORECASE,
)


def parse_window_title(title: str, app_name: str = "") -> Optional[Track]:
    """
    Read "Artist - Song" out of a player's window title.

    Returns None for empty titles and for titles that are just the player's
    own name.
    """
    if not title:
        return None
    title = title.strip()
    lowered = title.lower()
    if lowered == (app_name or "").strip().lower() or lowered in _GENERIC_TITLES:
        return None
    if "microsoft store" in lowered:
        return None

    title = _PLAYER_SUFFIX.sub("", title).strip()
    if not title or title.lower() in _GENERIC_TITLES:
        return None

    for separator in SEPARATORS:
        parts = [p.strip() for p in title.split(separator)]
        parts = [p for p in parts if p]
        if len(parts) >= 2:
            return Track.from_position(parts[1], parts[0], is_playing=True)

    if len(title) > MIN_BARE_TITLE:
        return Track.from_position(title, UNKNOWN_ARTIST, is_playing=True)
    return None


class WindowTitleAdapter(SourceAdapter):
    """Last resort: guess the track from the player's window title."""

    name = "window-title"

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._log = logger or get_logger("sources.window_title")

    def try_get_track(self, hint: Optional[DetectedApp] = None) -> Optional[Track]:
        if hint is None or not hint.window_title:
            return None
        track = parse_window_title(hint.window_title, hint.app_name)
        if track is None:
            self._log.debug("Title of %s is not informative: %r", hint.app_name, hint.window_title)
        return track

# music_presence/sources/legacy_app.py
import logging
import subprocess
import sys
from dataclasses import replace
from typing import Callable, Optional

from ..artwork import ArtworkCache
from ..errors import AdapterError
from ..logs import get_logger
from ..models import UNKNOWN_ARTIST, DetectedApp, Track
from .base import SourceAdapter

if sys.platform == "win32":
    try:
        import pythoncom
        import win32com.client
    except Exception:  # pywin32 not installed
        pythoncom = None
        win32com = None
else:
    pythoncom = None
    win32com = None


COM_PROG_ID = "iTunes.Application"

# ITPlayerState
PLAYER_STOPPED = 0
PLAYER_PLAYING = 1
PLAYER_FAST_FORWARD = 2
PLAYER_REWIND = 3

FIELD_SEP = "\x1f"

APPLESCRIPT = r'''
tell application "Music"
    if it is not running then
        return "OK=0"
    end if

    set ps to (player state as string)
    if ps is "stopped" then
        return "OK=0"
    end if

    set sep to (ASCII character 31)
    set t to current track
    set tName to (name of t as string)
    set tArtist to (artist of t as string)
    set tAlbum to (album of t as string)
    set tGenre to (genre of t as string)
    set tYear to (year of t as string)
    set tNum to (track number of t as string)
    set tCount to (track count of t as string)
    set tDur to (duration of t as string)
    set tPos to (player position as string)
    set isPlaying to (ps is "playing")

    return "OK=1" & sep & tName & sep & tArtist & sep & tAlbum & sep & tGenre & sep & tYear & sep & tNum & sep & tCount & sep & tDur & sep & tPos & sep & (isPlaying as string)
end tell
'''


def _to_float(value) -> float:
    try:
        return float(str(value).replace(",", "."))
    except (TypeError, ValueError):
        return 0.0


def _to_int(value) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def parse_applescript_output(out: str) -> Optional[Track]:
    out = (out or "").strip()
    if not out.startswith("OK=1" + FIELD_SEP):
        return None

    parts = out.split(FIELD_SEP)
    parts += [""] * (11 - len(parts))
    name = parts[1]
    if not name:
        return None

    return Track.from_position(
        name,
        parts[2] or UNKNOWN_ARTIST,
        parts[3],
        is_playing=parts[10].strip().lower() == "true",
        position=_to_float(parts[9]),
        duration=_to_float(parts[8]),
        genre=parts[4],
        year=_to_int(parts[5]),
        track_number=_to_int(parts[6]),
        track_count=_to_int(parts[7]),
    )


def _run_osascript(script: str, timeout: float) -> str:
    return subprocess.check_output(
        ["osascript", "-e", script],
        text=True,
        timeout=timeout,
        stderr=subprocess.DEVNULL,
    )


class LegacyAppAdapter(SourceAdapter):
    """
    Reads the scriptable Apple player through the OS automation interface:
    the iTunes COM server on Windows, Music.app over AppleScript on macOS.
    """

    name = "legacy-app"

    def __init__(
        self,
        artwork: Optional[ArtworkCache] = None,
        platform: str = sys.platform,
        dispatch: Optional[Callable[[str], object]] = None,
        run_script: Optional[Callable[[str, float], str]] = None,
        script_timeout: float = 2.5,
        logger: Optional[logging.Logger] = None,
    ):
        self.artwork = artwork
        self.platform = platform
        self._dispatch = dispatch
        if self._dispatch is None and win32com is not None:
            self._dispatch = win32com.client.Dispatch
        self._run_script = run_script or _run_osascript
        self.script_timeout = script_timeout
        self._log = logger or get_logger("sources.legacy_app")

    def is_available(self) -> bool:
        if self.platform == "win32":
            return self._dispatch is not None
        return self.platform == "darwin"

    def try_get_track(self, hint: Optional[DetectedApp] = None) -> Optional[Track]:
        # Dispatching the COM server would launch iTunes, so only ask when it runs.
        if hint is None:
            return None
        if self.platform == "win32":
            return self._read_com()
        if self.platform == "darwin":
            return self._read_applescript()
        return None

    # --------------------------------------------------
    # Windows / COM
    # --------------------------------------------------

    def _read_com(self) -> Optional[Track]:
        if self._dispatch is None:
            return None
        if pythoncom is not None:
            pythoncom.CoInitialize()
        try:
            app = self._dispatch(COM_PROG_ID)
            current = app.CurrentTrack
            if current is None:
                return None

            state = _to_int(app.PlayerState)
            track = Track.from_position(
                current.Name or "",
                current.Artist or UNKNOWN_ARTIST,
                current.Album or "",
                # iTunes reports a paused track as stopped with CurrentTrack set
                is_playing=state == PLAYER_PLAYING,
                position=_to_float(app.PlayerPosition),
                duration=_to_float(current.Duration),
                genre=getattr(current, "Genre", "") or "",
                year=_to_int(getattr(current, "Year", 0)),
                track_number=_to_int(current.TrackNumber),
                track_count=_to_int(current.TrackCount),
            )
            if not track.name:
                return None

            artwork_path = self._save_com_artwork(current, track)
            if artwork_path:
                track = replace(track, artwork_path=artwork_path)
            return track
        except Exception as e:
            # player is running but not answering; counts toward back-off
            raise AdapterError(f"iTunes COM read failed: {e}") from e
        finally:
            if pythoncom is not None:
                pythoncom.CoUninitialize()

    def _save_com_artwork(self, current, track: Track) -> Optional[str]:
        if self.artwork is None:
            return None
        try:
            artwork = current.Artwork
            if artwork is None or artwork.Count <= 0:
                return None
            path = self.artwork.new_path(f"{track.artist}_{track.name}", "png")
            if path is None:
                return None
            # COM collections are 1-based
            artwork.Item(1).SaveArtworkToFile(str(path))
            return str(path)
        except Exception as e:
            self._log.debug("Artwork extraction failed: %s", e)
            return None

    # --------------------------------------------------
    # macOS / AppleScript
    # --------------------------------------------------

    def _read_applescript(self) -> Optional[Track]:
        try:
            out = self._run_script(APPLESCRIPT, self.script_timeout)
        except subprocess.CalledProcessError as e:
            self._log.debug("osascript exited with %s", e.returncode)
            return None
        except Exception as e:
            raise AdapterError(f"osascript failed: {e}") from e
        return parse_applescript_output(out)

import subprocess
from unittest import mock

import pytest
from conftest import make_app

from music_presence.errors import AdapterError
from music_presence.sources.legacy_app import (
    FIELD_SEP,
    PLAYER_PLAYING,
    PLAYER_STOPPED,
    LegacyAppAdapter,
    parse_applescript_output,
)


def itunes(state=PLAYER_PLAYING, track=True, artwork_count=0):
    app = mock.Mock()
    app.PlayerState = state
    app.PlayerPosition = 30
    if track:
        current = mock.Mock()
        current.Name = "Song A"
        current.Artist = "Artist X"
        current.Album = "Album"
        current.Genre = "Rock"
        current.Year = 2001
        current.Duration = 200
        current.TrackNumber = 3
        current.TrackCount = 12
        current.Artwork.Count = artwork_count
        app.CurrentTrack = current
    else:
        app.CurrentTrack = None
    return app


def com_adapter(app, artwork=None):
    return LegacyAppAdapter(artwork=artwork, platform="win32", dispatch=lambda prog_id: app)


def test_com_playing_track():
    track = com_adapter(itunes()).try_get_track(make_app("iTunes"))
    assert (track.name, track.artist, track.album) == ("Song A", "Artist X", "Album")
    assert track.is_playing
    assert track.duration == 200
    assert track.year == 2001
    assert track.track_number == 3


def test_com_paused_track_is_not_playing():
    track = com_adapter(itunes(state=PLAYER_STOPPED)).try_get_track(make_app("iTunes"))
    assert track is not None
    assert not track.is_playing


def test_com_no_current_track():
    assert com_adapter(itunes(track=False)).try_get_track(make_app("iTunes")) is None


def test_no_hint_never_dispatches():
    dispatch = mock.Mock()
    adapter = LegacyAppAdapter(platform="win32", dispatch=dispatch)
    assert adapter.try_get_track(None) is None
    dispatch.assert_not_called()


def test_com_error_is_adapter_error():
    def dispatch(prog_id):
        raise OSError("RPC server is unavailable")

    adapter = LegacyAppAdapter(platform="win32", dispatch=dispatch)
    with pytest.raises(AdapterError):
        adapter.try_get_track(make_app("iTunes"))


def test_com_artwork_saved_to_cache(tmp_path):
    artwork = mock.Mock()
    artwork.new_path.return_value = tmp_path / "artwork_1_song.png"
    app = itunes(artwork_count=1)
    track = com_adapter(app, artwork=artwork).try_get_track(make_app("iTunes"))
    app.CurrentTrack.Artwork.Item.assert_called_once_with(1)
    app.CurrentTrack.Artwork.Item.return_value.SaveArtworkToFile.assert_called_once_with(
        str(tmp_path / "artwork_1_song.png")
    )
    assert track.artwork_path == str(tmp_path / "artwork_1_song.png")


def test_unavailable_without_dispatch():
    assert not LegacyAppAdapter(platform="win32", dispatch=None).is_available()
    assert not LegacyAppAdapter(platform="linux").is_available()
    assert LegacyAppAdapter(platform="linux").try_get_track(make_app("iTunes")) is None


def applescript(*fields):
    return FIELD_SEP.join(fields)


def test_parse_applescript_output():
    out = applescript("OK=1", "Song A", "Artist X", "Album", "Pop", "2020", "4", "10", "215,5", "12.0", "true")
    track = parse_applescript_output(out)
    assert track.name == "Song A"
    assert track.is_playing
    assert track.duration == pytest.approx(215.5)
    assert track.year == 2020


def test_parse_applescript_not_running():
    assert parse_applescript_output("OK=0") is None
    assert parse_applescript_output("") is None


def test_applescript_adapter():
    out = applescript("OK=1", "Song A", "", "Album", "", "", "", "", "0", "0", "false")
    adapter = LegacyAppAdapter(platform="darwin", run_script=lambda script, timeout: out)
    track = adapter.try_get_track(make_app("Apple Music", priority=100))
    assert track.artist == "Unknown Artist"
    assert not track.is_playing


def test_applescript_nonzero_exit_is_none():
    def run(script, timeout):
        raise subprocess.CalledProcessError(1, "osascript")

    adapter = LegacyAppAdapter(platform="darwin", run_script=run)
    assert adapter.try_get_track(make_app("Apple Music")) is None


def test_applescript_timeout_is_adapter_error():
    def run(script, timeout):
        raise subprocess.TimeoutExpired("osascript", timeout)

    adapter = LegacyAppAdapter(platform="darwin", run_script=run)
    with pytest.raises(AdapterError):
        adapter.try_get_track(make_app("Apple Music"))

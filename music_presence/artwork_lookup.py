# music_presence/artwork_lookup.py
import re
from functools import lru_cache
from typing import Optional

import requests

from .logs import get_logger

SEARCH_URL = "https://itunes.apple.com/search"
ARTWORK_SIZE = "512x512"
TIMEOUT = 4

_HTTP = requests.Session()
_log = get_logger("artwork_lookup")


def _normalize(value: str) -> str:
    value = value.lower()
    value = value.replace("&", "and")
    value = re.sub(r"\b(feat|featuring|ft)\b\.?", "", value)
    value = re.sub(r"[^a-z0-9]+", " ", value)
    return " ".join(value.split()).strip()


def _normalize_album(value: str) -> str:
    value = value.lower()
    # edition/format markers in parentheses or brackets
    value = re.sub(r"[\(\[].*?[\)\]]", " ", value)
    value = re.sub(r"\b(deluxe|expanded|remaster(ed)?|edition|version|clean|explicit)\b", " ", value)
    return _normalize(value)


def score_result(item: dict, title: str, artist: str, album: str = "") -> int:
    """How well one search result matches; negative means reject it."""
    title_norm = _normalize(title)
    artist_norm = _normalize(artist)
    album_norm = _normalize_album(album)

    track_name = _normalize(item.get("trackName", "") or "")
    artist_name = _normalize(item.get("artistName", "") or "")
    album_name = _normalize_album(item.get("collectionName", "") or "")

    score = 0
    if track_name and title_norm:
        if track_name == title_norm:
            score += 6
        elif title_norm in track_name or track_name in title_norm:
            score += 3
        elif not set(title_norm.split()) & set(track_name.split()):
            return -1

    if artist_name and artist_norm:
        if artist_name == artist_norm:
            score += 4
        elif artist_norm in artist_name or artist_name in artist_norm:
            score += 2
        elif not set(artist_norm.split()) & set(artist_name.split()):
            score -= 5

    if album_name and album_norm:
        if album_name == album_norm:
            score += 6
        elif album_norm in album_name or album_name in album_norm:
            score += 2
        else:
            score -= 2

    if item.get("artworkUrl600") or item.get("artworkUrl100"):
        score += 1
    return score


def pick_artwork(results: list, title: str, artist: str, album: str = "") -> Optional[str]:
    if not results:
        return None
    scored = sorted(
        ((item, score_result(item, title, artist, album)) for item in results),
        key=lambda pair: pair[1],
        reverse=True,
    )
    item, best = scored[0]
    min_score = 4 if _normalize(artist) else 3
    if best < min_score:
        return None
    artwork = item.get("artworkUrl600") or item.get("artworkUrl100")
    if not artwork:
        return None
    return re.sub(r"/\d+x\d+", f"/{ARTWORK_SIZE}", artwork)


@lru_cache(maxsize=512)
def lookup_artwork_url(title: str, artist: str, album: str = "") -> Optional[str]:
    """Public cover URL from the iTunes Search API, or None."""
    title = (title or "").strip()
    artist = (artist or "").strip()
    album = (album or "").strip()
    if not title:
        return None

    params = {"term": f"{title} {artist} {album}".strip(), "entity": "song", "limit": 8}
    try:
        r = _HTTP.get(SEARCH_URL, params=params, timeout=TIMEOUT)
        r.raise_for_status()
        results = r.json().get("results", [])
    except (requests.RequestException, ValueError) as e:
        _log.debug("Artwork lookup failed for %s - %s: %s", artist, title, e)
        return None

    url = pick_artwork(results, title, artist, album)
    _log.debug("Artwork for %s - %s: %s", artist, title, url or "none")
    return url

from .base import AdapterChain, SourceAdapter
from .legacy_app import LegacyAppAdapter
from .media_session import MediaSessionAdapter
from .window_title import WindowTitleAdapter, parse_window_title

__all__ = [
    "AdapterChain",
    "SourceAdapter",
    "LegacyAppAdapter",
    "MediaSessionAdapter",
    "WindowTitleAdapter",
    "parse_window_title",
]

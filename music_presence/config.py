# music_presence/config.py
import os
import tempfile
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import List, Mapping, Optional

from .errors import ConfigurationInvalid

# Discord application id, assets "apple_music_logo" / "itunes_logo" / "play_icon" live there.
APP_CLIENT_ID = "1369005012486852649"

ENV_PREFIX = "MPS_"

ARBITRATION_POLICIES = ("last-playing-wins", "strict-priority")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

# Out-of-range env values fall back to the default like unparseable ones.
_POSITIVE = (
    "legacy_interval",
    "media_interval",
    "reconnect_interval",
    "adapter_timeout",
    "backoff_cooldown",
    "backoff_multiplier",
)
_AT_LEAST_ONE = ("failure_threshold",)


def _default_artwork_dir() -> str:
    return str(Path(tempfile.gettempdir()) / "music-presence" / "artwork")


@dataclass(frozen=True)
class Settings:
    client_id: str = APP_CLIENT_ID

    legacy_interval: float = 1.0
    media_interval: float = 2.0
    failure_threshold: int = 5
    backoff_multiplier: float = 5.0
    backoff_cooldown: float = 5.0
    reconnect_interval: float = 30.0
    adapter_timeout: float = 3.0

    artwork_dir: str = field(default_factory=_default_artwork_dir)
    artwork_lookup: bool = True
    arbitration_policy: str = "last-playing-wins"

    debug: bool = False
    log_dir: str = "."

    # Toggles owned by the desktop shell, read-only here.
    auto_start: bool = False
    minimize_to_tray: bool = True
    notify_on_change: bool = True
    check_updates_on_start: bool = True
    update_feed_url: str = ""

    # Env values that could not be parsed or were out of range, filled by load_settings.
    invalid_values: tuple = ()

    def problems(self) -> List[ConfigurationInvalid]:
        found = [
            ConfigurationInvalid(f"{name}: invalid value {raw!r}, using default")
            for name, raw in self.invalid_values
        ]
        if self.check_updates_on_start and not self.update_feed_url:
            found.append(
                ConfigurationInvalid("update checks are enabled but no update feed URL is set")
            )
        if self.arbitration_policy not in ARBITRATION_POLICIES:
            found.append(
                ConfigurationInvalid(f"unknown arbitration policy {self.arbitration_policy!r}")
            )
        for name in _POSITIVE:
            if getattr(self, name) <= 0:
                found.append(ConfigurationInvalid(f"{name} must be positive"))
        for name in _AT_LEAST_ONE:
            if getattr(self, name) < 1:
                found.append(ConfigurationInvalid(f"{name} must be at least 1"))
        return found

    def with_toggles(self, **changes) -> "Settings":
        return replace(self, **changes)


def _parse_bool(raw: str) -> Optional[bool]:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    return None


def _in_range(name: str, value) -> bool:
    if name in _POSITIVE:
        return value > 0
    if name in _AT_LEAST_ONE:
        return value >= 1
    return True


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from MPS_* environment variables."""
    environ = os.environ if environ is None else environ
    defaults = Settings()
    values = {}
    invalid = []

    for f in fields(Settings):
        if f.name == "invalid_values":
            continue
        raw = environ.get(ENV_PREFIX + f.name.upper())
        if raw is None:
            continue

        default = getattr(defaults, f.name)
        if isinstance(default, bool):
            parsed = _parse_bool(raw)
        elif isinstance(default, int):
            try:
                parsed = int(raw)
            except ValueError:
                parsed = None
        elif isinstance(default, float):
            try:
                parsed = float(raw)
            except ValueError:
                parsed = None
        else:
            parsed = raw.strip()

        if parsed is not None and not _in_range(f.name, parsed):
            parsed = None
        if parsed is None:
            invalid.append((f.name, raw))
            continue
        values[f.name] = parsed

    return Settings(invalid_values=tuple(invalid), **values)

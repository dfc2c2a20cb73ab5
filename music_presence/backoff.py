# music_presence/backoff.py
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Polling interval policy for one source.

    After `threshold` consecutive failures the interval is stretched by
    `multiplier` until a success, or until `cooldown` seconds have passed
    since the back-off started.
    """

    interval: float = 1.0
    threshold: int = 5
    multiplier: float = 5.0
    cooldown: float = 5.0

    @property
    def extended_interval(self) -> float:
        return self.interval * self.multiplier

    def is_tripped(self, failures: int) -> bool:
        return failures >= self.threshold

    def cooldown_elapsed(self, since: Optional[float], now: float) -> bool:
        return since is not None and now - since >= self.cooldown

    def next_interval(self, failures: int, since: Optional[float], now: float) -> float:
        if self.is_tripped(failures) and not self.cooldown_elapsed(since, now):
            return self.extended_interval
        return self.interval

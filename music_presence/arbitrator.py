# music_presence/arbitrator.py
import logging
import threading
from functools import partial
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .events import EventStream
from .logs import get_logger
from .models import FAMILIES, PlayStateChanged, Track, TrackChanged


class ArbitrationPolicy:
    """Decides which source family may drive the presence."""

    name = "policy"

    def claims(self, family: str, active: Optional[str], playing: Dict[str, bool]) -> bool:
        raise NotImplementedError

    def successor(self, released: str, playing: Dict[str, bool]) -> Optional[str]:
        """Family that takes over when `released` stops playing, if any."""
        return None


class LastPlayingWinsPolicy(ArbitrationPolicy):
    """Whoever reported playing last is active. Two players alternating will flap."""

    name = "last-playing-wins"

    def claims(self, family, active, playing):
        return True


class StrictPriorityPolicy(ArbitrationPolicy):
    """A higher-priority family keeps activity for as long as it is playing."""

    name = "strict-priority"

    def __init__(self, order: Sequence[str] = FAMILIES):
        self.order = tuple(order)

    def _rank(self, family: str) -> int:
        try:
            return self.order.index(family)
        except ValueError:
            return len(self.order)

    def claims(self, family, active, playing):
        if active is None or active == family or not playing.get(active, False):
            return True
        return self._rank(family) < self._rank(active)

    def successor(self, released, playing):
        candidates = [f for f, on in playing.items() if on and f != released]
        if not candidates:
            return None
        return min(candidates, key=self._rank)


POLICIES = {
    LastPlayingWinsPolicy.name: LastPlayingWinsPolicy,
    StrictPriorityPolicy.name: StrictPriorityPolicy,
}


def make_policy(name: str) -> ArbitrationPolicy:
    try:
        return POLICIES[name]()
    except KeyError:
        raise ValueError(f"unknown arbitration policy {name!r}") from None


class DetectionArbitrator:
    """
    Picks one authoritative source family and drives the publisher from it.

    Services report into `_on_track` / `_on_play_state`. Only the active
    family reaches the publisher and the outbound streams; tracks from the
    other families are remembered so they can be published the moment that
    family claims activity.

    Decisions are made under the lock, publisher calls happen after it is
    released so a slow publish never holds up the other family.
    """

    def __init__(
        self,
        services: Iterable,
        publisher,
        policy: Optional[ArbitrationPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.publisher = publisher
        self.policy = policy or LastPlayingWinsPolicy()
        self._log = logger or get_logger("arbitrator")
        self._lock = threading.RLock()

        self._active: Dict[str, bool] = {}
        self._playing: Dict[str, bool] = {}
        self._latest: Dict[str, TrackChanged] = {}
        self._issued = 0

        self.track_changed: EventStream[TrackChanged] = EventStream("arbitrator.track_changed", self._log)
        self.play_state_changed: EventStream[PlayStateChanged] = EventStream(
            "arbitrator.play_state_changed", self._log
        )

        self._unsubscribe = []
        for service in services:
            self.attach(service)

    def attach(self, service) -> None:
        self._active.setdefault(service.family, False)
        self._playing.setdefault(service.family, False)
        self._unsubscribe.append(service.track_changed.subscribe(self._on_track))
        self._unsubscribe.append(service.play_state_changed.subscribe(self._on_play_state))

    def detach_all(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    def set_policy(self, policy: ArbitrationPolicy) -> None:
        with self._lock:
            if policy.name != self.policy.name:
                self._log.info("Arbitration policy: %s", policy.name)
            self.policy = policy

    # --------------------------------------------------
    # read-only state
    # --------------------------------------------------

    @property
    def active_family(self) -> Optional[str]:
        with self._lock:
            for family, on in self._active.items():
                if on:
                    return family
            return None

    def is_active(self, family: str) -> bool:
        with self._lock:
            return self._active.get(family, False)

    @property
    def current_track(self) -> Optional[Track]:
        with self._lock:
            family = self.active_family
            event = self._latest.get(family) if family else None
            return event.track if event else None

    # --------------------------------------------------
    # handlers
    # --------------------------------------------------

    def _on_track(self, event: TrackChanged) -> None:
        with self._lock:
            self._latest[event.family] = event
            if not self._active.get(event.family, False):
                self._log.debug("Holding track from inactive %s: %s", event.family, event.track.name)
                return
            actions = []
            if event.track.is_playing:
                actions.append(partial(self.publisher.update_presence, event.track, event.app_name))
            batch = self._issue(actions)
        self._perform(batch, actions)
        self.track_changed.emit(event)

    def _on_play_state(self, event: PlayStateChanged) -> None:
        actions, forward = [], []
        with self._lock:
            self._playing[event.family] = event.is_playing
            if event.is_playing:
                actions, forward = self._claim(event)
            elif self._active.get(event.family, False):
                actions, forward = self._release(event)
            batch = self._issue(actions)
        self._perform(batch, actions)
        for item in forward:
            if isinstance(item, TrackChanged):
                self.track_changed.emit(item)
            else:
                self.play_state_changed.emit(item)

    def _claim(self, event: PlayStateChanged) -> Tuple[list, list]:
        family = event.family
        if self._active.get(family, False):
            return [], [event]

        active = self.active_family
        if not self.policy.claims(family, active, self._playing):
            self._log.debug("%s playing but %s keeps priority", family, active)
            return [], []

        self._activate(family)
        self._log.info("%s is now the active source", family)
        actions, forward = [], []
        latest = self._latest.get(family)
        if latest is not None and latest.track.is_playing:
            actions.append(partial(self.publisher.update_presence, latest.track, latest.app_name))
            forward.append(latest)
        forward.append(event)
        return actions, forward

    def _release(self, event: PlayStateChanged) -> Tuple[list, list]:
        self._active[event.family] = False
        actions = [self.publisher.clear_presence]
        self._log.info("%s stopped playing, presence cleared", event.family)
        forward = [event]

        successor = self.policy.successor(event.family, self._playing)
        if successor is None:
            return actions, forward

        self._activate(successor)
        latest = self._latest.get(successor)
        app_name = latest.app_name if latest else ""
        self._log.info("%s takes over", successor)
        if latest is not None and latest.track.is_playing:
            actions.append(partial(self.publisher.update_presence, latest.track, latest.app_name))
            forward.append(latest)
        forward.append(PlayStateChanged(successor, app_name, True))
        return actions, forward

    def _activate(self, family: str) -> None:
        for other in self._active:
            self._active[other] = False
        self._active[family] = True

    # --------------------------------------------------
    # publishing, outside the lock
    # --------------------------------------------------

    def _issue(self, actions: List[Callable[[], object]]) -> int:
        if actions:
            self._issued += 1
        return self._issued

    def _perform(self, batch: int, actions: List[Callable[[], object]]) -> None:
        """Run publisher calls unless a newer decision has replaced them."""
        for action in actions:
            with self._lock:
                if batch != self._issued:
                    self._log.debug("Skipping superseded presence update")
                    return
            action()

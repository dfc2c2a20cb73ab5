import logging
from concurrent.futures import Future

import pytest

from music_presence.models import DetectedApp, Track
from music_presence.sources.base import SourceAdapter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class InlineExecutor:
    """Runs submitted callables immediately in the calling thread."""

    def __init__(self):
        self.calls = 0

    def submit(self, fn, *args, **kwargs):
        self.calls += 1
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait=True, cancel_futures=False):
        pass


class FakeAdapter(SourceAdapter):
    """Returns queued results in order; exceptions in the queue are raised."""

    def __init__(self, *results, name="fake", available=True):
        self.name = name
        self.results = list(results)
        self.available = available
        self.hints = []

    def is_available(self):
        return self.available

    def try_get_track(self, hint=None):
        self.hints.append(hint)
        result = self.results.pop(0) if len(self.results) > 1 else (self.results[0] if self.results else None)
        if isinstance(result, Exception):
            raise result
        return result


class FakeDetector:
    def __init__(self, *apps):
        self.apps = list(apps)

    def detect_running_apps(self):
        return sorted(self.apps, key=lambda a: a.priority, reverse=True)


class FakePresenceClient:
    instances = []

    def __init__(self, client_id):
        self.client_id = client_id
        self.connected = False
        self.closed = False
        self.updates = []
        self.clears = 0
        self.fail_connect = None
        self.fail_update = None
        self.user = {"username": "listener", "discriminator": "0"}
        FakePresenceClient.instances.append(self)

    def connect(self):
        if self.fail_connect:
            raise self.fail_connect
        self.connected = True

    def update(self, **payload):
        if self.fail_update:
            raise self.fail_update
        self.updates.append(payload)

    def clear(self):
        self.clears += 1

    def close(self):
        self.closed = True


class ClientFactory:
    """Hands out FakePresenceClient objects, optionally failing the next connects."""

    def __init__(self, connect_failures=0):
        self.clients = []
        self.connect_failures = connect_failures

    def __call__(self, client_id):
        client = FakePresenceClient(client_id)
        if self.connect_failures > 0:
            self.connect_failures -= 1
            client.fail_connect = ConnectionRefusedError("Discord is not running")
        self.clients.append(client)
        return client

    @property
    def last(self):
        return self.clients[-1] if self.clients else None

    @property
    def updates(self):
        return [u for c in self.clients for u in c.updates]

    @property
    def clears(self):
        return sum(c.clears for c in self.clients)


def make_track(name="Song A", artist="Artist X", album="Album", playing=True, **extra):
    extra.setdefault("start_time", 2000.0)
    extra.setdefault("end_time", 2200.0)
    return Track(name=name, artist=artist, album=album, is_playing=playing, **extra)


def make_app(name="iTunes", priority=90, pid=42, title="", process=None):
    return DetectedApp(
        app_name=name,
        process_name=process or name,
        process_id=pid,
        window_title=title,
        priority=priority,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def client_factory():
    return ClientFactory()


@pytest.fixture
def logger():
    return logging.getLogger("music_presence.tests")

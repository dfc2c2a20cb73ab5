import pytest
from conftest import FakeAdapter, FakeClock, FakeDetector, InlineExecutor, make_app, make_track

from music_presence.config import Settings
from music_presence.engine import Engine, legacy_apps, media_apps
from music_presence.models import ConnectionState, ServiceStatusChanged
from music_presence.scheduler import Scheduler


class ManualScheduler(Scheduler):
    """Scheduler driven by the test through run_pending()."""

    def start(self):
        self._running = True


@pytest.fixture
def settings(tmp_path):
    return Settings(artwork_dir=str(tmp_path / "art"), artwork_lookup=False, check_updates_on_start=False)


def make_engine(settings, client_factory, legacy, media=None, apps=()):
    clock = FakeClock(0.0)
    scheduler = ManualScheduler(executor=InlineExecutor(), clock=clock)
    engine = Engine(
        settings,
        detector=FakeDetector(*apps),
        legacy_adapters=[legacy],
        media_adapters=[media or FakeAdapter(None)],
        client_factory=client_factory,
        scheduler=scheduler,
        platform="win32",
    )
    return engine, scheduler, clock


def test_family_app_sets():
    assert legacy_apps("win32") == {"iTunes"}
    assert legacy_apps("darwin") == {"Apple Music"}
    assert legacy_apps("linux") == frozenset()
    assert "iTunes" not in media_apps("win32")
    assert "Apple Music" in media_apps("win32")
    assert "Apple Music" not in media_apps("darwin")


def test_play_then_pause_publishes_once_then_clears(settings, client_factory):
    legacy = FakeAdapter(make_track("Song A", "Artist X", "Album"), make_track("Song A", "Artist X", "Album", playing=False))
    engine, scheduler, clock = make_engine(settings, client_factory, legacy, apps=[make_app("iTunes")])
    notes = []
    engine.notifications.subscribe(notes.append)

    engine.start()
    scheduler.run_pending()

    assert engine.publisher.is_connected
    assert len(client_factory.updates) == 1
    payload = client_factory.updates[0]
    assert payload["details"] == "Song A"
    assert payload["state"] == "by Artist X"
    assert payload["small_text"] == "Via iTunes"
    assert engine.arbitrator.active_family == "legacy"
    assert notes == ["Now playing: Song A - Artist X"]

    clock.advance(1.0)
    scheduler.run_pending()

    assert len(client_factory.updates) == 1
    assert client_factory.clears == 1
    assert engine.arbitrator.active_family is None

    engine.stop()
    assert engine.publisher.state is ConnectionState.DISCONNECTED
    assert client_factory.last.closed


def test_media_family_takes_over(settings, client_factory):
    legacy = FakeAdapter(make_track("Song A"))
    media = FakeAdapter(make_track("Song B", "Artist Y"))
    apps = [make_app("iTunes"), make_app("Spotify", priority=80, pid=7)]
    engine, scheduler, clock = make_engine(settings, client_factory, legacy, media, apps=apps)
    engine.start()
    scheduler.run_pending()

    assert engine.arbitrator.active_family == "media"
    assert client_factory.updates[-1]["details"] == "Song B"
    assert media.hints[0].app_name == "Spotify"
    engine.stop()


def test_configuration_problems_reach_status(tmp_path, client_factory):
    settings = Settings(artwork_dir=str(tmp_path), artwork_lookup=False, check_updates_on_start=True)
    engine, scheduler, clock = make_engine(settings, client_factory, FakeAdapter(None))
    messages = []
    engine.status.subscribe(messages.append)
    engine.start()
    assert any("feed" in m for m in messages)
    engine.stop()
    assert messages[-1] == "Stopped"


def test_apply_settings(settings, client_factory):
    engine, scheduler, clock = make_engine(settings, client_factory, FakeAdapter(make_track()), apps=[make_app("iTunes")])
    notes = []
    engine.notifications.subscribe(notes.append)
    engine.apply_settings(
        settings.with_toggles(arbitration_policy="strict-priority", notify_on_change=False, legacy_interval=0.5)
    )
    assert engine.arbitrator.policy.name == "strict-priority"
    assert engine.legacy.policy.interval == 0.5

    engine.start()
    scheduler.run_pending()
    assert notes == []
    engine.stop()


def test_unknown_policy_falls_back(settings, client_factory):
    engine, *_ = make_engine(settings.with_toggles(arbitration_policy="coin-flip"), client_factory, FakeAdapter(None))
    assert engine.arbitrator.policy.name == "last-playing-wins"


def test_stop_is_idempotent_and_restartable(settings, client_factory):
    engine, scheduler, clock = make_engine(settings, client_factory, FakeAdapter(None))
    engine.stop()
    engine.start()
    scheduler.run_pending()
    engine.stop()
    engine.stop()
    assert not engine.is_running
    engine.start()
    scheduler.run_pending()
    assert engine.publisher.is_connected
    engine.stop()


def test_health_check_reports_players_and_clears_orphaned_presence(settings, client_factory):
    legacy = FakeAdapter(make_track("Song A"))
    engine, scheduler, clock = make_engine(settings, client_factory, legacy, apps=[make_app("iTunes")])
    statuses = []
    engine.service_status.subscribe(statuses.append)

    engine.start()
    scheduler.run_pending()
    assert statuses == []

    clock.advance(10.0)
    scheduler.run_pending()
    assert statuses == [ServiceStatusChanged(("iTunes",), ("legacy",), "legacy")]
    assert statuses[0].any_running

    clock.advance(10.0)
    scheduler.run_pending()
    assert len(statuses) == 1

    # the player vanished before its service noticed
    engine.detector.apps = []
    engine._health_check()
    assert statuses[-1] == ServiceStatusChanged((), (), "legacy")
    assert client_factory.clears == 1

    engine.stop()
    assert "health-check" not in [job.name for job in scheduler.jobs]

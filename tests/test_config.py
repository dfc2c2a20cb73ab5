from music_presence.config import APP_CLIENT_ID, Settings, load_settings
from music_presence.errors import ConfigurationInvalid


def test_defaults():
    s = load_settings({})
    assert s.client_id == APP_CLIENT_ID
    assert s.legacy_interval == 1.0
    assert s.media_interval == 2.0
    assert s.failure_threshold == 5
    assert s.reconnect_interval == 30.0
    assert s.arbitration_policy == "last-playing-wins"
    assert s.debug is False
    assert s.invalid_values == ()


def test_env_overrides():
    s = load_settings(
        {
            "MPS_DEBUG": "yes",
            "MPS_MEDIA_INTERVAL": "0.5",
            "MPS_FAILURE_THRESHOLD": "3",
            "MPS_ARBITRATION_POLICY": "strict-priority",
            "MPS_CHECK_UPDATES_ON_START": "off",
            "MPS_LOG_DIR": " /tmp/logs ",
        }
    )
    assert s.debug is True
    assert s.media_interval == 0.5
    assert s.failure_threshold == 3
    assert s.arbitration_policy == "strict-priority"
    assert s.check_updates_on_start is False
    assert s.log_dir == "/tmp/logs"
    assert s.problems() == []


def test_unparseable_values_fall_back_and_are_reported():
    s = load_settings({"MPS_LEGACY_INTERVAL": "fast", "MPS_DEBUG": "maybe", "MPS_CHECK_UPDATES_ON_START": "0"})
    assert s.legacy_interval == 1.0
    assert s.debug is False
    reasons = [p.reason for p in s.problems()]
    assert any("legacy_interval" in r for r in reasons)
    assert any("debug" in r for r in reasons)
    assert all(isinstance(p, ConfigurationInvalid) for p in s.problems())


def test_update_check_without_feed_is_a_problem():
    s = Settings(check_updates_on_start=True, update_feed_url="")
    assert any("feed" in p.reason for p in s.problems())
    assert Settings(check_updates_on_start=True, update_feed_url="https://example.org/feed").problems() == []


def test_invalid_policy_and_intervals():
    s = Settings(arbitration_policy="random", media_interval=0, check_updates_on_start=False)
    reasons = " | ".join(p.reason for p in s.problems())
    assert "random" in reasons
    assert "media_interval" in reasons


def test_with_toggles_returns_copy():
    s = Settings()
    t = s.with_toggles(notify_on_change=False)
    assert s.notify_on_change is True
    assert t.notify_on_change is False


def test_out_of_range_env_values_fall_back_to_defaults():
    s = load_settings(
        {
            "MPS_LEGACY_INTERVAL": "0",
            "MPS_MEDIA_INTERVAL": "-2",
            "MPS_FAILURE_THRESHOLD": "0",
            "MPS_BACKOFF_COOLDOWN": "0",
            "MPS_CHECK_UPDATES_ON_START": "0",
        }
    )
    assert s.legacy_interval == 1.0
    assert s.media_interval == 2.0
    assert s.failure_threshold == 5
    assert s.backoff_cooldown == 5.0
    names = [name for name, _ in s.invalid_values]
    assert names == ["legacy_interval", "media_interval", "failure_threshold", "backoff_cooldown"]
    reasons = " | ".join(p.reason for p in s.problems())
    assert "legacy_interval: invalid value '0'" in reasons
    assert "must be positive" not in reasons

import pytest
from pydantic import ValidationError

from qrlink.config import CameraSettings, JoinSettings, Settings, get_settings


def test_defaults(settings):
    assert settings.join.strategy == "auto"
    assert settings.join.timeout_seconds == 20.0
    assert settings.join.confirm_link is False
    assert settings.dispatch.text_repeat_seconds == 3.0
    assert settings.camera.rotation_degrees == 0
    assert settings.notifications.webhook_url is None


def test_nested_environment_overrides(monkeypatch):
    monkeypatch.setenv("JOIN__TIMEOUT_SECONDS", "45")
    monkeypatch.setenv("JOIN__STRATEGY", "legacy")
    monkeypatch.setenv("CAMERA__ROTATION_DEGREES", "450")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings(_env_file=None)

    assert settings.join.timeout_seconds == 45.0
    assert settings.join.strategy == "legacy"
    assert settings.camera.rotation_degrees == 90
    assert settings.log_level == "debug"


@pytest.mark.parametrize("timeout", [0.5, 121])
def test_join_timeout_bounds(timeout):
    with pytest.raises(ValidationError):
        JoinSettings(timeout_seconds=timeout)


def test_rotation_must_be_quarter_turns():
    with pytest.raises(ValidationError):
        CameraSettings(rotation_degrees=45)


def test_unknown_strategy_rejected():
    with pytest.raises(ValidationError):
        JoinSettings(strategy="bluetooth")


def test_override_env_file(tmp_path):
    env_file = tmp_path / "scanner.env"
    env_file.write_text("CONTROLLER_PORT=6001\nJOIN__INTERFACE=wlp2s0\n", encoding="utf-8")

    get_settings.cache_clear()
    try:
        settings = get_settings(env_file)
    finally:
        get_settings.cache_clear()

    assert settings.controller_port == 6001
    assert settings.join.interface == "wlp2s0"

# tests/test_config.py

import json
import logging
from logging.handlers import RotatingFileHandler

import pytest

from config import Config, SessionConfig, load_config


SECRET = "x" * 32


def test_from_env_reads_settings(monkeypatch) -> None:
    monkeypatch.setenv("SESSION_PASSWORD", SECRET)
    monkeypatch.setenv("CALDAV_TIMEOUT", "12")
    monkeypatch.setenv("SERVER_PORT", "8080")
    monkeypatch.setenv("SERVER_DEBUG", "yes")
    monkeypatch.setenv("SYNC_CACHE_MAX_AGE", "7")
    monkeypatch.setenv("LOG_LEVEL", "warning")

    config = Config.from_env()
    assert config.session.secret_key == SECRET
    assert config.session.cookie_name == "session"
    assert config.session.max_age_seconds == 604800
    assert config.caldav.timeout == 12
    assert config.server.port == 8080
    assert config.server.debug is True
    assert config.sync.cache_max_age_minutes == 7
    assert config.logging.level == "WARNING"


def test_defaults(monkeypatch) -> None:
    for name in ("CALDAV_TIMEOUT", "SERVER_PORT", "SERVER_DEBUG", "SYNC_CACHE_MAX_AGE", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SESSION_PASSWORD", SECRET)

    config = Config.from_env()
    assert config.server.port == 3000
    assert config.server.debug is False
    assert config.caldav.timeout == 30
    assert config.sync.cache_max_age_minutes == 5


def test_short_session_secret_is_rejected() -> None:
    with pytest.raises(ValueError):
        SessionConfig(secret_key="too-short")


def test_from_file_and_to_dict(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("SESSION_PASSWORD", raising=False)
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "session": {"secret_key": SECRET, "secure": True},
        "caldav": {"timeout": 9},
        "server": {"port": 4000},
        "logging": {"level": "debug"},
    }), encoding="utf-8")

    config = Config.from_file(str(path))
    assert config.session.secure is True
    assert config.caldav.timeout == 9
    assert config.server.port == 4000
    assert config.logging.level == "DEBUG"

    data = config.to_dict()
    assert data["server"]["port"] == 4000
    assert "secret_key" not in data["session"]


def test_from_file_takes_secret_from_environment(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("SESSION_PASSWORD", SECRET)
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"server": {"port": 5000}}), encoding="utf-8")
    assert Config.from_file(str(path)).session.secret_key == SECRET


def test_from_file_errors(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        Config.from_file(str(tmp_path / "missing.json"))

    broken = tmp_path / "broken.json"
    broken.write_text("{nope", encoding="utf-8")
    with pytest.raises(ValueError):
        Config.from_file(str(broken))


def test_load_config_falls_back_to_env(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SESSION_PASSWORD", SECRET)
    (tmp_path / "config.json").write_text("{broken", encoding="utf-8")
    assert load_config().session.secret_key == SECRET


def test_setup_logging_adds_rotating_file_handler(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("SESSION_PASSWORD", SECRET)
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "app.log"))
    config = Config.from_env()

    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        config.setup_logging()
        assert any(isinstance(h, RotatingFileHandler) for h in root.handlers)
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)

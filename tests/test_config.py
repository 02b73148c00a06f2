"""Tests for the JSON config file."""

import json

import pytest

from cmdqueue.config import DEFAULTS, Config


def test_defaults_written_on_first_use(tmp_path):
    path = tmp_path / "cfg.json"

    cfg = Config(str(path))

    assert json.loads(path.read_text()) == DEFAULTS
    assert cfg.get("dispatch_interval") == 2.0
    assert cfg.get("wait_poll_interval") == 1.0
    assert cfg.get("at_most_once") == "enforced"


def test_set_persists(tmp_path):
    path = str(tmp_path / "cfg.json")
    Config(path).set("dispatch_interval", 0.5)

    assert Config(path).get("dispatch_interval") == 0.5


def test_overrides_are_not_persisted(tmp_path):
    path = str(tmp_path / "cfg.json")
    cfg = Config(path, overrides={"wait_timeout": 1})

    assert cfg.get("wait_timeout") == 1
    assert cfg.all()["wait_timeout"] == 1
    assert Config(path).get("wait_timeout") == 30


def test_missing_key_falls_back_to_default(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"database_url": "sqlite:///other.db"}))

    cfg = Config(str(path))

    assert cfg.get("database_url") == "sqlite:///other.db"
    assert cfg.get("max_concurrent") == 4
    assert cfg.get("nonexistent", "fallback") == "fallback"
    assert cfg.all()["retention_days"] == 30


def test_invalid_mode_rejected(tmp_path):
    cfg = Config(str(tmp_path / "cfg.json"))

    with pytest.raises(ValueError):
        cfg.set("at_most_once", "maybe")
    cfg.set("at_most_once", "best-effort")
    assert cfg.get("at_most_once") == "best-effort"


def test_path_from_environment(tmp_path, monkeypatch):
    path = tmp_path / "env.json"
    monkeypatch.setenv("CMDQUEUE_CONFIG", str(path))

    cfg = Config()

    assert cfg.path == str(path)
    assert path.exists()

import os
import pytest
from auditchain.core.config import CONFIG_ENV, Config, find_config, load_config

def test_dotted_get_and_defaults():
    cfg = Config({"watcher": {"poll_interval": 2, "resume": False}, "api": None})
    assert cfg.get("watcher.poll_interval") == 2
    assert cfg.get("watcher.resume", True) is False
    assert cfg.get("watcher.missing", 7) == 7
    assert cfg.get("api.api_key_required", True) is True
    assert cfg.number("watcher.poll_interval", 1.0) == 2.0

def test_number_rejects_non_numeric():
    cfg = Config({"watcher": {"backoff_max": "soon"}})
    with pytest.raises(ValueError):
        cfg.number("watcher.backoff_max", 30.0)

def test_explicit_missing_path_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        find_config(str(tmp_path / "nope.yaml"))

def test_env_var_is_searched(tmp_path, monkeypatch):
    p = tmp_path / "env.yaml"
    p.write_text("store:\n  db_path: x.sqlite\n")
    monkeypatch.setenv(CONFIG_ENV, str(p))
    cfg = load_config()
    assert cfg.source == os.path.abspath(str(p))
    assert cfg.get("store.db_path") == "x.sqlite"

def test_nothing_found_gives_empty_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv(CONFIG_ENV, "")
    cfg = load_config()
    assert cfg.source is None
    assert cfg.raw == {}

def test_non_mapping_top_level_is_rejected(tmp_path):
    p = tmp_path / "list.yaml"
    p.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_config(str(p))

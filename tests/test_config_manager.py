from __future__ import annotations

import json
import os

import pytest

from scribedesk.core.config.manager import ConfigManager
from scribedesk.core.errors import ConfigError
from scribedesk.core.events import EventBusConfig, EventLogger


class DummyLogger:
    def info(self, *_a, **_k): ...
    def warning(self, *_a, **_k): ...
    def error(self, *_a, **_k): ...


def test_defaults_created(config_manager):
    fs = config_manager.fs
    for name in ("app.json", "web.json", "retention.json", "events.json"):
        assert os.path.exists(os.path.join(fs.config_dir, name))
    cfg = config_manager.get()
    assert cfg.web.bind_host == "127.0.0.1"
    assert cfg.retention.age_threshold_days == 30
    assert cfg.retention.schedule == "0 0 * * 0"
    assert isinstance(config_manager.event_bus_config(), EventBusConfig)


def test_get_before_load_raises(tmp_config_root):
    with pytest.raises(ConfigError):
        ConfigManager(fs=tmp_config_root).get()


def test_validation_rejects_unknown_fields(config_manager):
    bad = config_manager.get().web.model_dump()
    bad["unknown_field"] = 1
    with pytest.raises(ConfigError):
        config_manager.save_non_sensitive("web.json", bad)
    assert "unknown_field" not in config_manager.read_non_sensitive("web.json")


def test_save_rejects_bad_values_and_unknown_files(config_manager):
    ret = config_manager.get().retention.model_dump()
    ret["schedule"] = "weekly"
    with pytest.raises(ConfigError):
        config_manager.save_non_sensitive("retention.json", ret)
    with pytest.raises(ConfigError):
        config_manager.save_non_sensitive("secrets.json", {})
    web = config_manager.get().web.model_dump()
    web["bind_host"] = "not a host"
    with pytest.raises(ConfigError):
        config_manager.save_non_sensitive("web.json", web)


def test_save_writes_backup_and_reloads(config_manager, tmp_path):
    ret = config_manager.get().retention.model_dump()
    ret["age_threshold_days"] = 45
    config_manager.save_non_sensitive("retention.json", ret)
    assert config_manager.get().retention.age_threshold_days == 45
    backups = os.listdir(config_manager.fs.backups_dir)
    assert any(b.startswith("retention.json.") and ".prewrite." in b for b in backups)


def test_read_only_refuses_writes(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root, read_only=True)
    cm.load_all()
    assert not os.path.exists(tmp_config_root.web)
    with pytest.raises(ConfigError):
        cm.save_non_sensitive("web.json", {})


def test_corrupt_json_recovered_from_last_known_good(config_manager):
    fs = config_manager.fs
    ret = config_manager.get().retention.model_dump()
    ret["age_threshold_days"] = 12
    config_manager.save_non_sensitive("retention.json", ret)
    with open(fs.retention, "w", encoding="utf-8") as f:
        f.write("{not json")
    cm2 = ConfigManager(fs=fs, logger=DummyLogger())
    cfg = cm2.load_all()
    assert cfg.retention.age_threshold_days == 12
    assert any(".corrupt." in b for b in os.listdir(fs.backups_dir))
    with open(fs.retention, "r", encoding="utf-8") as f:
        assert json.load(f)["age_threshold_days"] == 12


def test_corrupt_without_snapshot_falls_back_to_defaults(tmp_config_root):
    with open(tmp_config_root.web, "w", encoding="utf-8") as f:
        f.write("[1, 2")
    cfg = ConfigManager(fs=tmp_config_root).load_all()
    assert cfg.web.port == 8765


def test_invalid_file_on_disk_fails_load(tmp_config_root):
    with open(tmp_config_root.web, "w", encoding="utf-8") as f:
        json.dump({"port": 0}, f)
    with pytest.raises(ConfigError):
        ConfigManager(fs=tmp_config_root).load_all()


def test_reload_if_changed_keeps_previous_on_invalid(config_manager):
    fs = config_manager.fs
    assert config_manager.reload_if_changed() is False
    with open(fs.web, "w", encoding="utf-8") as f:
        json.dump({"port": 9000}, f)
    assert config_manager.reload_if_changed() is True
    assert config_manager.get().web.port == 9000
    with open(fs.web, "w", encoding="utf-8") as f:
        json.dump({"port": -1}, f)
    assert config_manager.reload_if_changed() is False
    assert config_manager.get().web.port == 9000


def test_config_events_journaled(tmp_config_root, tmp_path):
    el = EventLogger(str(tmp_path / "logs" / "events.jsonl"))
    cm = ConfigManager(fs=tmp_config_root, event_logger=el)
    cm.load_all()
    events = [json.loads(x)["event"] for x in open(el.path, encoding="utf-8")]
    assert events == ["config.loaded"]


def test_get_config_is_process_wide(tmp_path, monkeypatch):
    from scribedesk.core.config import manager as manager_mod

    monkeypatch.setattr(manager_mod, "_singleton", None)
    a = manager_mod.get_config(root=str(tmp_path))
    b = manager_mod.get_config(root=str(tmp_path / "elsewhere"))
    assert a is b
    assert a.get().app.data_dir == "data"

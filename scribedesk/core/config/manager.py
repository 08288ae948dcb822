from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ValidationError

from scribedesk.core.config.io import (
    ReadResult,
    atomic_write_json,
    read_json_file,
    recover_from_corrupt,
    snapshot_last_known_good,
)
from scribedesk.core.config.models import (
    AppFileConfig,
    EventsBusConfigFile,
    RetentionDefaultsConfig,
    ScribeConfig,
    WebConfig,
)
from scribedesk.core.config.paths import ConfigFsPaths
from scribedesk.core.errors import ConfigError
from scribedesk.core.events import EventBusConfig, redact


FILE_MODELS: Dict[str, Callable[[], BaseModel]] = {
    "app.json": AppFileConfig,
    "web.json": WebConfig,
    "retention.json": RetentionDefaultsConfig,
    "events.json": EventsBusConfigFile,
}


@dataclass
class DiffResult:
    changed_files: Dict[str, Dict[str, Any]]


class ConfigManager:
    def __init__(self, *, fs: Optional[ConfigFsPaths] = None, logger=None, read_only: bool = False, event_logger: Any = None):
        self.fs = fs or ConfigFsPaths(".")
        self.logger = logger
        self.read_only = read_only
        self._event_logger = event_logger
        self._cfg: Optional[ScribeConfig] = None
        self._raw_last: Dict[str, Dict[str, Any]] = {}

    # ---------- public API ----------
    def load_all(self) -> ScribeConfig:
        os.makedirs(self.fs.config_dir, exist_ok=True)
        os.makedirs(self.fs.backups_dir, exist_ok=True)
        os.makedirs(self.fs.last_known_good_dir, exist_ok=True)

        files = self._load_raw_files()
        max_backups = int(((files.get("app.json") or {}).get("backups") or {}).get("max_backups_per_file", 10))
        ensured = self._ensure_defaults(files, max_backups=max_backups)

        cfg = self._validate_all(ensured)
        self._cfg = cfg
        self._raw_last = {k: dict(v) for k, v in ensured.items()}

        if not self.read_only:
            snapshot_last_known_good(self.fs.config_dir, self.fs.last_known_good_dir)
        if self._event_logger is not None:
            self._event_logger.log("config", "config.loaded", {"files": sorted(ensured.keys())})
        return cfg

    def get(self) -> ScribeConfig:
        if self._cfg is None:
            raise ConfigError("Config not loaded.")
        return self._cfg

    def validate(self) -> None:
        self._validate_all(self._load_raw_files())

    def event_bus_config(self) -> EventBusConfig:
        return EventBusConfig.model_validate(self.get().events.model_dump())

    def read_non_sensitive(self, filename: str) -> Dict[str, Any]:
        """Read one config file from config/ with corrupt-file recovery applied."""
        path = os.path.join(self.fs.config_dir, filename)
        rr = read_json_file(path)
        if rr.ok:
            return rr.data
        if rr.corrupt:
            data, _ = recover_from_corrupt(path, self.fs.backups_dir, self.fs.last_known_good_dir, max_backups=self._max_backups())
            return data
        return {}

    def save_non_sensitive(self, filename: str, data: Dict[str, Any]) -> None:
        """
        Validate, then write atomically (previous version kept in backups/) and
        reload. An invalid payload is rejected before anything touches disk.
        """
        if self.read_only:
            raise ConfigError("Config manager is read-only.")
        if filename not in FILE_MODELS:
            raise ConfigError(f"Unknown config file: {filename}", filename=filename)
        if not isinstance(data, dict):
            raise ConfigError("Config data must be an object.", filename=filename)
        try:
            FILE_MODELS[filename].model_validate(data)  # type: ignore[attr-defined]
        except ValidationError as e:
            raise ConfigError(f"{filename} invalid: {e}", filename=filename) from e
        atomic_write_json(os.path.join(self.fs.config_dir, filename), data, self.fs.backups_dir, max_backups=self._max_backups())
        if self.logger:
            self.logger.info(f"Config saved: {filename}")
        if self._event_logger is not None:
            self._event_logger.log("config", "config.saved", {"file": filename, "data": redact(data)})
        self.load_all()

    def diff_since_last_load(self) -> DiffResult:
        now = self._load_raw_files()
        changed: Dict[str, Dict[str, Any]] = {}
        for k, v in now.items():
            if k not in self._raw_last or self._raw_last[k] != v:
                changed[k] = {"before": self._raw_last.get(k), "after": v}
        return DiffResult(changed_files=changed)

    def reload_if_changed(self) -> bool:
        """Re-read config/; an invalid set is rejected and the previous config stays active."""
        if self._cfg is None:
            return False
        diff = self.diff_since_last_load()
        if not diff.changed_files:
            return False
        raw = self._load_raw_files()
        try:
            cfg = self._validate_all(raw)
        except ConfigError as e:
            if self.logger:
                self.logger.warning(f"Config reload rejected (keeping previous): {e.user_message}")
            return False
        self._cfg = cfg
        self._raw_last = {k: dict(v) for k, v in raw.items()}
        if self.logger:
            self.logger.info(f"Config reloaded: {sorted(diff.changed_files.keys())}")
        return True

    # ---------- internals ----------
    def _max_backups(self) -> int:
        if self._cfg is None:
            return 10
        return int((self._cfg.app.backups or {}).get("max_backups_per_file", 10))

    def _load_raw_files(self) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        for name in FILE_MODELS:
            path = os.path.join(self.fs.config_dir, name)
            rr: ReadResult = read_json_file(path)
            if rr.ok:
                out[name] = rr.data
                continue
            if rr.corrupt:
                data, recovered = recover_from_corrupt(path, self.fs.backups_dir, self.fs.last_known_good_dir, max_backups=10)
                if self.logger:
                    self.logger.warning(f"Corrupt config {name} -> recovered={recovered}")
                out[name] = data
                continue
            # missing or unreadable: defaults later
            out[name] = {}
        return out

    def _ensure_defaults(self, files: Dict[str, Dict[str, Any]], *, max_backups: int) -> Dict[str, Dict[str, Any]]:
        out = dict(files)
        for name, model in FILE_MODELS.items():
            if out.get(name):
                continue
            dflt = model().model_dump(mode="json")
            out[name] = dflt
            if self.logger:
                self.logger.warning(f"Missing config {name}; creating defaults.")
            if not self.read_only:
                atomic_write_json(os.path.join(self.fs.config_dir, name), dflt, self.fs.backups_dir, max_backups=max_backups)
        return out

    def _validate_all(self, files: Dict[str, Dict[str, Any]]) -> ScribeConfig:
        try:
            return ScribeConfig(
                app=AppFileConfig.model_validate(files.get("app.json") or {}),
                web=WebConfig.model_validate(files.get("web.json") or {}),
                retention=RetentionDefaultsConfig.model_validate(files.get("retention.json") or {}),
                events=EventsBusConfigFile.model_validate(files.get("events.json") or {}),
            )
        except ValidationError as e:
            raise ConfigError(str(e)) from e


_singleton: Optional[ConfigManager] = None


def get_config(*, root: str = ".", logger=None, read_only: bool = False, event_logger: Any = None) -> ConfigManager:
    global _singleton  # noqa: PLW0603
    if _singleton is None:
        _singleton = ConfigManager(fs=ConfigFsPaths(root), logger=logger, read_only=read_only, event_logger=event_logger)
        _singleton.load_all()
    return _singleton

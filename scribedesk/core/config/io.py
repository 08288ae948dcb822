from __future__ import annotations

import json
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class ReadResult:
    ok: bool
    data: Dict[str, Any]
    error: Optional[str] = None

    @property
    def corrupt(self) -> bool:
        return bool(self.error and self.error.startswith("corrupt_json"))


def _ts() -> str:
    return time.strftime("%Y%m%d_%H%M%S", time.gmtime())


def ensure_dirs(*dirs: str) -> None:
    for d in dirs:
        if d:
            os.makedirs(d, exist_ok=True)


def read_json_file(path: str) -> ReadResult:
    if not os.path.exists(path):
        return ReadResult(ok=False, data={}, error="missing")
    try:
        with open(path, "r", encoding="utf-8") as f:
            obj = json.load(f)
    except json.JSONDecodeError as e:
        return ReadResult(ok=False, data={}, error=f"corrupt_json:{e}")
    except OSError as e:
        return ReadResult(ok=False, data={}, error=str(e))
    if not isinstance(obj, dict):
        return ReadResult(ok=False, data={}, error="corrupt_json:not_object")
    return ReadResult(ok=True, data=obj)


def _prune_backups(backups_dir: str, base: str, keep: int) -> None:
    prefix = f"{base}."
    try:
        items = [os.path.join(backups_dir, f) for f in os.listdir(backups_dir) if f.startswith(prefix)]
    except OSError:
        return
    items = [p for p in items if os.path.isfile(p)]
    items.sort(key=os.path.getmtime, reverse=True)
    for p in items[max(1, keep) :]:
        try:
            os.remove(p)
        except OSError:
            pass


def backup_file(path: str, backups_dir: str, *, reason: str, max_backups: int = 10) -> Optional[str]:
    """Copy `path` to backups/<name>.<ts>.<reason>.json and keep the newest `max_backups`."""
    if not os.path.exists(path):
        return None
    ensure_dirs(backups_dir)
    base = os.path.basename(path)
    out = os.path.join(backups_dir, f"{base}.{_ts()}.{reason}.json")
    try:
        shutil.copy2(path, out)
    except OSError:
        return None
    _prune_backups(backups_dir, base, max_backups)
    return out


def atomic_write_json(path: str, data: Dict[str, Any], backups_dir: str, *, max_backups: int = 10) -> None:
    ensure_dirs(os.path.dirname(path), backups_dir)
    backup_file(path, backups_dir, reason="prewrite", max_backups=max_backups)
    fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=os.path.dirname(path) or ".")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)
            f.write("\n")
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            try:
                os.remove(tmp)
            except OSError:
                pass


def recover_from_corrupt(path: str, backups_dir: str, last_known_good_dir: str, *, max_backups: int = 10) -> Tuple[Dict[str, Any], bool]:
    """
    Move the corrupt file aside (backups/<name>.<ts>.corrupt.json) and restore
    last_known_good/<name> if there is one.

    Returns (data, recovered). data is {} when nothing could be restored, so the
    caller falls back to defaults.
    """
    ensure_dirs(backups_dir, last_known_good_dir)
    base = os.path.basename(path)
    if os.path.exists(path):
        try:
            shutil.move(path, os.path.join(backups_dir, f"{base}.{_ts()}.corrupt.json"))
        except OSError:
            pass
    rr = read_json_file(os.path.join(last_known_good_dir, base))
    if not rr.ok:
        return {}, False
    atomic_write_json(path, rr.data, backups_dir, max_backups=max_backups)
    return rr.data, True


def snapshot_last_known_good(config_dir: str, last_known_good_dir: str) -> int:
    ensure_dirs(last_known_good_dir)
    copied = 0
    for name in sorted(os.listdir(config_dir)):
        src = os.path.join(config_dir, name)
        if not name.endswith(".json") or not os.path.isfile(src):
            continue
        try:
            shutil.copy2(src, os.path.join(last_known_good_dir, name))
            copied += 1
        except OSError:
            continue
    return copied

from __future__ import annotations

"""
File helpers behind ConfigManager: atomic JSON writes with rotating
backups, corrupt-file quarantine and the last-known-good copy.
"""

import glob
import json
import os
import shutil
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class CorruptJsonError(ValueError):
    pass


def _stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")


def read_json_object(path: str) -> Optional[Dict[str, Any]]:
    """None when the file does not exist. CorruptJsonError when it is not a JSON object."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            obj = json.load(f)
    except FileNotFoundError:
        return None
    except json.JSONDecodeError as e:
        raise CorruptJsonError(f"{path}: {e}") from e
    if not isinstance(obj, dict):
        raise CorruptJsonError(f"{path}: top level is {type(obj).__name__}, expected object")
    return obj


def _prune_backups(backups_dir: str, base: str, keep: int) -> None:
    old = sorted(glob.glob(os.path.join(backups_dir, glob.escape(base) + ".*")), key=os.path.getmtime, reverse=True)
    for p in old[max(0, keep):]:
        try:
            os.remove(p)
        except FileNotFoundError:
            continue


def backup_copy(path: str, backups_dir: str, *, tag: str, keep: int = 10) -> Optional[str]:
    if not os.path.isfile(path):
        return None
    os.makedirs(backups_dir, exist_ok=True)
    base = os.path.basename(path)
    dst = os.path.join(backups_dir, f"{base}.{_stamp()}.{tag}.json")
    shutil.copy2(path, dst)
    _prune_backups(backups_dir, base, keep)
    return dst


def write_json_atomic(path: str, data: Dict[str, Any], *, backups_dir: str, keep: int = 10) -> None:
    """Back up the current file, then replace it via a temp file in the same directory."""
    folder = os.path.dirname(path) or "."
    os.makedirs(folder, exist_ok=True)
    backup_copy(path, backups_dir, tag="prewrite", keep=keep)
    fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=folder)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)
            f.write("\n")
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)


def quarantine(path: str, backups_dir: str) -> Optional[str]:
    if not os.path.exists(path):
        return None
    os.makedirs(backups_dir, exist_ok=True)
    dst = os.path.join(backups_dir, f"{os.path.basename(path)}.{_stamp()}.corrupt.json")
    shutil.move(path, dst)
    return dst


def last_known_good_path(path: str, lkg_dir: str) -> str:
    return os.path.join(lkg_dir, os.path.basename(path))


def save_last_known_good(path: str, lkg_dir: str) -> None:
    if os.path.isfile(path):
        os.makedirs(lkg_dir, exist_ok=True)
        shutil.copy2(path, last_known_good_path(path, lkg_dir))

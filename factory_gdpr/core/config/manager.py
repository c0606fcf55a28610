from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pydantic import ValidationError

from factory_gdpr.core.config.io import (
    CorruptJsonError,
    last_known_good_path,
    quarantine,
    read_json_object,
    save_last_known_good,
    write_json_atomic,
)
from factory_gdpr.core.config.models import GovernanceConfigFile, default_governance_config_dict
from factory_gdpr.core.config.paths import ConfigFsPaths
from factory_gdpr.core.errors import ConfigError


@dataclass
class DiffResult:
    changed: Dict[str, Dict[str, Any]] = field(default_factory=dict)


def _diff(before: Dict[str, Any], after: Dict[str, Any]) -> DiffResult:
    out = DiffResult()
    for k in sorted(set(before) | set(after)):
        if before.get(k) != after.get(k):
            out.changed[k] = {"before": before.get(k), "after": after.get(k)}
    return out


class ConfigManager:
    """
    Owns config/governance.json.

    A missing file is replaced by defaults (unless read_only). Corrupt JSON
    is quarantined under backups/ and the last-known-good copy restored,
    falling back to defaults. Schema violations raise ConfigError and are
    never papered over.
    """

    def __init__(
        self,
        *,
        fs: Optional[ConfigFsPaths] = None,
        logger: Optional[logging.Logger] = None,
        read_only: bool = False,
        max_backups: int = 10,
    ):
        self.fs = fs or ConfigFsPaths(".")
        self.logger = logger or logging.getLogger("factory_gdpr.config")
        self.read_only = read_only
        self.max_backups = int(max_backups)
        self._cfg: Optional[GovernanceConfigFile] = None
        self._raw: Dict[str, Any] = {}

    def load(self) -> GovernanceConfigFile:
        raw = self.read_raw()
        if not raw:
            raw = default_governance_config_dict()
            if not self.read_only:
                self._write(raw)
                self.logger.info(f"Wrote default governance config to {self.fs.governance}")
        cfg = self._validate(raw)
        self._remember(cfg, raw)
        return cfg

    def get(self) -> GovernanceConfigFile:
        if self._cfg is None:
            raise ConfigError("Config not loaded.")
        return self._cfg

    def read_raw(self) -> Dict[str, Any]:
        """Current file contents, {} when absent. Corrupt files are recovered unless read_only."""
        path = self.fs.governance
        try:
            return read_json_object(path) or {}
        except CorruptJsonError as e:
            if self.read_only:
                raise ConfigError("governance.json is corrupt and config manager is read-only.", path=path) from e
            moved = quarantine(path, self.fs.backups_dir)
            self.logger.warning(f"governance.json was corrupt, moved to {moved}: {e}")
            return self._restore_last_known_good()

    def save(self, data: Dict[str, Any]) -> GovernanceConfigFile:
        if self.read_only:
            raise ConfigError("Config manager is read-only.")
        if not isinstance(data, dict):
            raise ConfigError("Config data must be an object.")
        cfg = self._validate(data)
        self._write(data)
        self._remember(cfg, data)
        return cfg

    def diff_since_last_load(self) -> DiffResult:
        return _diff(self._raw, self.read_raw())

    def reload_if_changed(self) -> bool:
        """Hot reload; an invalid file keeps the previous config in place."""
        if self._cfg is None:
            return False
        raw = self.read_raw()
        diff = _diff(self._raw, raw)
        if not diff.changed:
            return False
        try:
            cfg = self._validate(raw)
        except ConfigError as e:
            self.logger.warning(f"Config reload rejected (keeping previous): {e.user_message}")
            return False
        self._remember(cfg, raw)
        self.logger.info(f"Config reloaded: {sorted(diff.changed)}")
        return True

    # ---- internals ----
    def _remember(self, cfg: GovernanceConfigFile, raw: Dict[str, Any]) -> None:
        self._cfg = cfg
        self._raw = dict(raw)
        if not self.read_only:
            save_last_known_good(self.fs.governance, self.fs.last_known_good_dir)

    def _write(self, data: Dict[str, Any]) -> None:
        write_json_atomic(self.fs.governance, data, backups_dir=self.fs.backups_dir, keep=self.max_backups)

    def _restore_last_known_good(self) -> Dict[str, Any]:
        lkg = last_known_good_path(self.fs.governance, self.fs.last_known_good_dir)
        try:
            data = read_json_object(lkg)
        except CorruptJsonError as e:
            self.logger.warning(f"Last-known-good governance.json unusable: {e}")
            data = None
        if not data:
            return {}
        self._write(data)
        self.logger.warning("Restored governance.json from last-known-good copy")
        return data

    def _validate(self, raw: Dict[str, Any]) -> GovernanceConfigFile:
        try:
            return GovernanceConfigFile.model_validate(raw)
        except ValidationError as e:
            raise ConfigError(f"governance.json invalid: {e.error_count()} error(s)", errors=e.errors(include_url=False)) from e

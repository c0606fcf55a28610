from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ConfigFsPaths:
    root: str = "."

    @property
    def config_dir(self) -> str:
        return os.path.join(self.root, "config")

    @property
    def secure_dir(self) -> str:
        return os.path.join(self.root, "secure")

    @property
    def runtime_dir(self) -> str:
        return os.path.join(self.root, "runtime")

    @property
    def backups_dir(self) -> str:
        return os.path.join(self.config_dir, "backups")

    @property
    def last_known_good_dir(self) -> str:
        return os.path.join(self.backups_dir, "last_known_good")

    # Files
    @property
    def governance(self) -> str:
        return os.path.join(self.config_dir, "governance.json")

    def resolve(self, path: str) -> str:
        """Resolve a config-relative path (e.g. "secure/data.key") against root."""
        p = str(path or "")
        if not p or os.path.isabs(p):
            return p
        return os.path.join(self.root, p)

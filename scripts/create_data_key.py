from __future__ import annotations

import argparse
import os
from typing import List, Optional

from factory_gdpr.core.config import ConfigFsPaths, ConfigManager
from factory_gdpr.core.crypto import best_effort_restrict_permissions, generate_data_key, key_id_from_key_bytes, write_key_file
from factory_gdpr.core.logger import setup_logging


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Create the persisted personal-data encryption key")
    ap.add_argument("--root", default=".", help="repo root holding config/governance.json")
    args = ap.parse_args(argv)

    fs = ConfigFsPaths(args.root)
    cfg = ConfigManager(fs=fs).load()
    logger = setup_logging(fs.resolve(cfg.logging.log_dir))
    if cfg.keys.provider != "file":
        print(f"keys.provider is {cfg.keys.provider!r}; nothing to create.")
        return 1
    key_path = fs.resolve(cfg.keys.key_path)

    if os.path.exists(key_path):
        print(f"Data key already exists at: {key_path}")
        return 0

    key = generate_data_key()
    write_key_file(key_path, key)
    best_effort_restrict_permissions(key_path)
    logger.info(f"Created data key at: {key_path}")
    print(f"Key fingerprint (key_id): {key_id_from_key_bytes(key)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

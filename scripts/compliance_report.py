from __future__ import annotations

import argparse
import json
from typing import List, Optional

from factory_gdpr.core.config import ConfigFsPaths, ConfigManager
from factory_gdpr.core.engine import GovernanceEngine
from factory_gdpr.core.logger import setup_logging


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Print the current GDPR compliance report as JSON")
    ap.add_argument("--root", default=".", help="repo root holding config/governance.json")
    ap.add_argument("--metrics", action="store_true", help="include anonymization metrics")
    args = ap.parse_args(argv)

    fs = ConfigFsPaths(args.root)
    cfg = ConfigManager(fs=fs).load()
    logger = setup_logging(fs.resolve(cfg.logging.log_dir))

    engine = GovernanceEngine.from_config(cfg, root_path=args.root, logger=logger)
    try:
        out = engine.compliance_report().model_dump(mode="json", by_alias=True)
        if args.metrics:
            out["anonymizationMetrics"] = engine.anonymization_metrics().model_dump(mode="json", by_alias=True)
    finally:
        engine.stop()
    print(json.dumps(out, indent=2, sort_keys=True))
    return 0 if out["overview"]["compliant"] else 2


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler


def setup_logging(log_dir: str = "logs") -> logging.Logger:
    """
    Configure the "factory_gdpr" logger: rotating file under log_dir plus
    console. Safe to call repeatedly; a new log_dir re-points the file handler.
    """
    os.makedirs(log_dir, exist_ok=True)
    text_path = os.path.abspath(os.path.join(log_dir, "factory_gdpr.log"))

    logger = logging.getLogger("factory_gdpr")
    logger.setLevel(logging.INFO)
    logger.propagate = False

    for h in list(logger.handlers):
        if isinstance(h, RotatingFileHandler) and h.baseFilename != text_path:
            logger.removeHandler(h)
            h.close()

    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        fh = RotatingFileHandler(text_path, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
        fh.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
        logger.addHandler(fh)

    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        sh = logging.StreamHandler()
        sh.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        logger.addHandler(sh)

    return logger

from __future__ import annotations

import json
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional


REDACT_KEYS = frozenset(
    {
        "passphrase",
        "password",
        "secret",
        "token",
        "key",
        "authorization",
        "encrypted_original_value",
        "original_value",
    }
)
# data_key, master_key, api_token ...
_REDACT_SUFFIXES = ("_key", "_token", "_secret", "_password")

REDACTED = "***REDACTED***"


def _is_secret_key(k: Any) -> bool:
    kk = str(k).lower()
    return kk in REDACT_KEYS or kk.endswith(_REDACT_SUFFIXES)


def redact(obj: Any) -> Any:
    """Replace secret-bearing values in nested dicts/lists. Used by errors, events and the audit trail."""
    if isinstance(obj, dict):
        return {k: (REDACTED if _is_secret_key(k) else redact(v)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [redact(x) for x in obj]
    return obj


class EventLogger:
    """
    Append-only JSONL file: {"ts", "trace_id", "event", "details"} per line.
    """

    def __init__(self, path: str):
        self.path = str(path)
        self._lock = threading.Lock()

    def log(self, trace_id: str, event_type: str, details: Optional[Dict[str, Any]] = None) -> None:
        line = json.dumps(
            {
                "ts": datetime.now(timezone.utc).isoformat(timespec="seconds"),
                "trace_id": trace_id,
                "event": event_type,
                "details": redact(details or {}),
            },
            ensure_ascii=False,
            default=str,
        )
        with self._lock:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

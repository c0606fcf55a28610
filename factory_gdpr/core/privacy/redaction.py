from __future__ import annotations

"""
Audit-detail minimization.

Stricter than secret redaction: raw personal values never reach an audit
sink. Only lengths, short hashes, ids and counts survive.
"""

import hashlib
from typing import Any, Dict

from factory_gdpr.core.events import redact as secret_redact


_DROP_KEYS = {"value", "values", "anonymized_value", "plaintext", "email", "phone", "name", "location", "ip_address", "user_agent"}


def _hash8(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8", errors="ignore")).hexdigest()[:8]


def privacy_redact(obj: Any) -> Any:
    """
    Redact secrets + replace personal values with metadata.
    """
    safe = secret_redact(obj)
    if isinstance(safe, dict):
        out: Dict[str, Any] = {}
        for k, v in list(safe.items())[:200]:
            kk = str(k or "")
            if kk.lower() in _DROP_KEYS:
                if isinstance(v, str):
                    out[f"{kk}_len"] = len(v)
                    out[f"{kk}_hash8"] = _hash8(v)
                else:
                    out[f"{kk}_present"] = v is not None
                continue
            out[kk] = privacy_redact(v)
        return out
    if isinstance(safe, (list, tuple)):
        return [privacy_redact(x) for x in list(safe)[:50]]
    if isinstance(safe, str):
        return safe if len(safe) <= 200 else safe[:200] + "…"
    return safe

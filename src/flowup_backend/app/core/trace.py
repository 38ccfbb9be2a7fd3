# src/flowup_backend/app/core/trace.py
from __future__ import annotations
import logging
import os
import time
from typing import Any, Mapping

from .logging import setup_logging

setup_logging()

AUTH_TRACE = (os.getenv("AUTH_TRACE", "")).lower() in ("1", "true", "yes", "on")
_log = logging.getLogger("flowup.auth")

def _fmt_kv(d: Mapping[str, Any]) -> str:
    return " ".join(f"{k}={d[k]}" for k in d)

def auth_trace(event: str, **kv: Any) -> None:
    """
    Emit one structured line when AUTH_TRACE=true, e.g.
      [auth] provision.created ts=... sub=github-42 provider=github profile_id=...
    """
    if not AUTH_TRACE:
        return
    kv2 = {"ts": int(time.time()), **kv}
    _log.info("[auth] %s %s", event, _fmt_kv(kv2))

# =============================================
# File: journal_ai/utils/slog.py
# Purpose: One-line JSON events on the "journal_ai" logger + request log helpers
# =============================================
"""
Events are pre-serialized JSON strings on a stdlib logger, so any handler
(stdout, pytest caplog, a log shipper) sees exactly one object per line.
User ids are hashed with uhash() before they get here.
"""
from __future__ import annotations
import hashlib
import json
import logging
import os
import uuid
from typing import Any, Dict

LOGGER_NAME = "journal_ai"


def _build_logger() -> logging.Logger:
    log = logging.getLogger(LOGGER_NAME)
    if log.handlers:
        return log
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    log.setLevel(getattr(logging, level, logging.INFO))
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    log.addHandler(handler)
    log.propagate = True  # caplog listens on the root logger
    return log


_logger = _build_logger()


def _emit(payload: Dict[str, Any]) -> None:
    _logger.info(json.dumps(payload, ensure_ascii=False, default=str))


def uhash(user_id: str | None) -> str:
    """Short, stable digest of a user id for log correlation."""
    if not user_id:
        return ""
    return hashlib.sha256(user_id.encode("utf-8")).hexdigest()[:10]


def new_request_id() -> str:
    return uuid.uuid4().hex


def log_event(event: str, **fields: Any) -> None:
    _emit({"event": event, **fields})


def finalize_request_log(
    request_id: str,
    method: str,
    path: str,
    status: int,
    latency_ms: int,
    client_ip: str | None,
    ctx: Dict[str, Any] | None = None,
) -> None:
    """`request.completed`: fixed request fields first, then whatever the route put in ctx."""
    _emit({
        "event": "request.completed",
        "request_id": request_id,
        "method": method,
        "path": path,
        "status": status,
        "latency_ms": latency_ms,
        "client_ip": client_ip or "",
        **(ctx or {}),
    })

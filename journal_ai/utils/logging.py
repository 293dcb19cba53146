# =============================================
# File: journal_ai/utils/logging.py
# Purpose: loguru sink configuration
# =============================================
from __future__ import annotations
import os

from loguru import logger

_configured = False

def configure_logging() -> None:
    """Attach the rotating file sink once, when LOG_FILE is set."""
    global _configured
    if _configured:
        return
    path = os.getenv("LOG_FILE", "").strip()
    if path:
        logger.add(path, rotation="10 MB", level=os.getenv("LOG_LEVEL", "INFO").upper())
    _configured = True

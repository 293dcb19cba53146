# journal_ai/routers/metrics.py
from __future__ import annotations

from fastapi import APIRouter

from journal_ai.utils import metrics

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
def get_metrics():
    """Counters for requests, quota hits/fail-opens, provenance mix and provider failures."""
    return metrics.snapshot()

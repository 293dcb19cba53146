# journal_ai/routers/usage.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import BaseModel

from journal_ai.deps import Services, current_identity, get_services
from journal_ai.routers.generate import iso_utc
from journal_ai.services.identity import Identity

router = APIRouter(tags=["usage"])


class UsageResponse(BaseModel):
    tier: str
    isPremium: bool
    limit: Optional[int]
    remaining: Optional[int]
    resetAt: Optional[str]


@router.get("/usage", response_model=UsageResponse)
def get_usage(
    services: Services = Depends(get_services),
    identity: Identity = Depends(current_identity),
) -> UsageResponse:
    """Current tier and remaining quota. Read-only: does not consume a request."""
    tier = "free"
    try:
        user = services.users.get_user(identity.user_id)
        if user is not None:
            tier = user.tier
    except Exception as e:
        logger.warning(f"Tier lookup failed for /usage, reporting free-tier defaults: {e}")

    status = services.limiter.status(identity.user_id, tier)
    return UsageResponse(
        tier=tier,
        isPremium=tier == "premium",
        limit=status.limit,
        remaining=status.remaining,
        resetAt=iso_utc(status.reset_at) if status.reset_at is not None else None,
    )

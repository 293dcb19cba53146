# =============================================
# File: journal_ai/deps.py
# Purpose: Service container built from env + FastAPI dependencies (services, authenticated caller)
# =============================================
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request
from loguru import logger

from journal_ai.services.generation import GenerationOrchestrator
from journal_ai.services.identity import (
    Identity,
    RestTokenVerifier,
    StaticTokenVerifier,
    TokenVerifier,
    bearer_token,
)
from journal_ai.services.records import (
    EntryStore,
    InMemoryRecords,
    RestRecords,
    UserDirectory,
    store_timeout,
)
from journal_ai.utils import slog
from journal_ai.utils.ratelimit import RateLimiter, WindowSweeper


@dataclass
class Services:
    limiter: RateLimiter
    users: UserDirectory
    entries: EntryStore
    identity: TokenVerifier
    orchestrator: GenerationOrchestrator
    sweeper: Optional[WindowSweeper] = None


def build_services() -> Services:
    """Wire collaborators from the environment. No RECORD_STORE_URL -> in-memory dev mode."""
    url = os.getenv("RECORD_STORE_URL", "").strip()
    key = os.getenv("RECORD_STORE_KEY", "").strip()
    if url and key:
        records = RestRecords(url, key)
        identity: TokenVerifier = RestTokenVerifier(url, key, timeout=store_timeout())
        logger.info(f"Record store: REST backend at {url}")
    else:
        records = InMemoryRecords()
        identity = StaticTokenVerifier.from_string(os.getenv("AUTH_DEV_TOKENS", ""))
        logger.warning("RECORD_STORE_URL/RECORD_STORE_KEY not set; using in-memory records and dev tokens")

    if not os.getenv("OPENAI_API_KEY"):
        logger.warning("OPENAI_API_KEY not configured - generation will use local fallback responses")

    limiter = RateLimiter()
    return Services(
        limiter=limiter,
        users=records,
        entries=records,
        identity=identity,
        orchestrator=GenerationOrchestrator(),
        sweeper=WindowSweeper(limiter),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_identity(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
) -> Identity:
    identity = services.identity.verify(bearer_token(authorization))
    request.state.log_context = {"user": slog.uhash(identity.user_id)}
    return identity

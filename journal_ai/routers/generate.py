# journal_ai/routers/generate.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Tuple

from fastapi import APIRouter, Depends, Request, Response
from loguru import logger
from pydantic import BaseModel, Field, field_validator

from journal_ai.core.errors import QuotaExceeded, ValidationError
from journal_ai.deps import Services, current_identity, get_services
from journal_ai.services import stats as stats_engine
from journal_ai.services.identity import Identity
from journal_ai.services.kinds import GenerationRequest, split_chat
from journal_ai.services.models import Admission, Entry, GenerationResult, StatsSnapshot, User
from journal_ai.services.records import store_timeout
from journal_ai.utils import metrics, prompting, slog
from journal_ai.utils.timing import Deadline

router = APIRouter(tags=["generation"])


# --------- Schemas ---------

class InsightRequest(BaseModel):
    """
    - content: the journal entry text (1..10,000 chars, not blank).
    - moodRating: optional 1..5 self-rating for the entry.
    """
    content: str = Field(..., max_length=10_000)
    moodRating: Optional[int] = Field(None, ge=1, le=5)

    @field_validator("content")
    @classmethod
    def _trim_content(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Journal content is required")
        return v


class InsightResponse(BaseModel):
    insight: str
    followUpQuestion: str
    confidence: float
    provenance: str
    modelId: str


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=10_000)


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(..., min_length=1, max_length=100)
    journalContext: Optional[str] = Field(None, max_length=20_000)


class ChatResponse(BaseModel):
    response: str
    provenance: str
    modelId: str


class SummaryRequest(BaseModel):
    journalContent: str = Field(..., max_length=20_000)
    conversationHistory: Optional[List[ChatMessage]] = None

    @field_validator("journalContent")
    @classmethod
    def _trim_content(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Journal content is required")
        return v


class SummaryResponse(BaseModel):
    summary: str
    confidence: float
    provenance: str
    modelId: str


# --------- Pipeline helpers ---------

def iso_utc(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _rate_headers(response: Response, admission: Admission, user: User) -> None:
    if user.is_premium:
        response.headers["X-RateLimit-Limit"] = "unlimited"
        response.headers["X-RateLimit-Remaining"] = "unlimited"
        response.headers["X-RateLimit-Reset"] = "never"
    elif admission.limit is not None:
        response.headers["X-RateLimit-Limit"] = str(admission.limit)
        response.headers["X-RateLimit-Remaining"] = str(admission.remaining)
        if admission.reset_at is not None:
            response.headers["X-RateLimit-Reset"] = iso_utc(admission.reset_at)


def _admit(request: Request, response: Response, services: Services, identity: Identity) -> User:
    """Tier lookup + admission. Lookup failures fail open with default user settings."""
    resolved: Dict[str, User] = {}

    def lookup_tier() -> str:
        user = services.users.get_user(identity.user_id) or User(id=identity.user_id)
        resolved["user"] = user
        return user.tier

    admission = services.limiter.admit_with_lookup(identity.user_id, lookup_tier)
    user = resolved.get("user")
    if user is None:
        metrics.record_rate_limit_fail_open()
        user = User(id=identity.user_id)

    ctx = getattr(request.state, "log_context", None) or {}
    ctx.update({"tier": user.tier, "rate_limited": not admission.allowed})
    request.state.log_context = ctx

    if not admission.allowed:
        metrics.record_rate_limit_hit()
        raise QuotaExceeded(limit=admission.limit or 0, reset_at_iso=iso_utc(admission.reset_at or 0))
    _rate_headers(response, admission, user)
    return user


def _personalize(services: Services, user: User, deadline: Deadline) -> Tuple[List[Entry], Optional[StatsSnapshot]]:
    """Fetch history and compute stats. Any failure degrades to no history and no stats."""
    try:
        entries = services.entries.list_entries(user.id, timeout=deadline.timeout(store_timeout()))
    except Exception as e:
        logger.warning(f"Entry fetch failed, continuing without stats: {e}")
        slog.log_event("stats.unavailable", user=slog.uhash(user.id), stage="fetch", error=str(e))
        return [], None
    try:
        return entries, stats_engine.compute(entries)
    except Exception as e:
        logger.warning(f"Stats computation failed, continuing without stats: {e}")
        slog.log_event("stats.unavailable", user=slog.uhash(user.id), stage="compute", error=str(e))
        return [], None


def _finish(request: Request, result: GenerationResult) -> None:
    ctx = getattr(request.state, "log_context", None) or {}
    ctx.update({"provenance": result.provenance, "model": result.model_id})
    request.state.log_context = ctx


def _history(messages: Optional[List[ChatMessage]]) -> List[Dict]:
    return [m.model_dump() for m in (messages or [])]


# --------- Routes ---------

@router.post("/insight", response_model=InsightResponse)
def post_insight(
    req: InsightRequest,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
    identity: Identity = Depends(current_identity),
) -> InsightResponse:
    """Insight + follow-up question for one journal entry."""
    deadline = Deadline()
    user = _admit(request, response, services, identity)
    entries, snapshot = _personalize(services, user, deadline)

    plan = prompting.build(
        "insight", user.tier, user.style,
        entry=req.content,
        mood_rating=req.moodRating,
        stats=snapshot,
        recent_entries=entries[:prompting.RECENT_ENTRIES],
        focus_areas=user.focus_areas,
    )
    result = services.orchestrator.run(
        GenerationRequest("insight", user.tier, req.content, mood_rating=req.moodRating),
        plan,
        deadline,
    )
    _finish(request, result)
    return InsightResponse(
        insight=result.text,
        followUpQuestion=result.secondary_text or "",
        confidence=result.confidence,
        provenance=result.provenance,
        modelId=result.model_id,
    )


@router.post("/chat", response_model=ChatResponse)
def post_chat(
    req: ChatRequest,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
    identity: Identity = Depends(current_identity),
) -> ChatResponse:
    """Conversational reply grounded in the current journal entry."""
    message, history = split_chat(_history(req.messages))
    if not message.strip():
        raise ValidationError("No user message found")

    deadline = Deadline()
    user = _admit(request, response, services, identity)
    _, snapshot = _personalize(services, user, deadline)

    plan = prompting.build(
        "chat", user.tier, user.style,
        message=message,
        history=history,
        journal_context=req.journalContext,
        stats=snapshot,
        focus_areas=user.focus_areas,
    )
    result = services.orchestrator.run(
        GenerationRequest("chat", user.tier, message, history=tuple(history)),
        plan,
        deadline,
    )
    _finish(request, result)
    return ChatResponse(response=result.text, provenance=result.provenance, modelId=result.model_id)


@router.post("/summary", response_model=SummaryResponse)
@router.post("/summarise", response_model=SummaryResponse, include_in_schema=False)
def post_summary(
    req: SummaryRequest,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
    identity: Identity = Depends(current_identity),
) -> SummaryResponse:
    """Bullet-point summary of a journal entry and its related conversation."""
    history = _history(req.conversationHistory)
    deadline = Deadline()
    user = _admit(request, response, services, identity)
    _, snapshot = _personalize(services, user, deadline)

    plan = prompting.build(
        "summary", user.tier, user.style,
        journal_content=req.journalContent,
        history=history,
        stats=snapshot,
    )
    result = services.orchestrator.run(
        GenerationRequest("summary", user.tier, req.journalContent, history=tuple(history)),
        plan,
        deadline,
    )
    _finish(request, result)
    return SummaryResponse(
        summary=result.text,
        confidence=result.confidence,
        provenance=result.provenance,
        modelId=result.model_id,
    )

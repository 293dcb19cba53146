# =============================================
# File: journal_ai/services/kinds.py
# Purpose: RequestKind variant: one generic pipeline, per-kind parser / salvage / fallback / confidence
# =============================================
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence, Tuple

from journal_ai.services.fallback import FallbackReply, LocalFallback
from journal_ai.utils.answer_post import clean_reply, extract_json_object
from journal_ai.utils.answer_style import enforce_style, salvage_pair

SALVAGE_CONFIDENCE = 0.8
CHAT_MAX_SENTENCES = 4


@dataclass(frozen=True)
class GenerationRequest:
    request_type: str
    tier: str
    content: str
    mood_rating: Optional[int] = None
    history: Sequence[Dict] = field(default_factory=tuple)


@dataclass(frozen=True)
class ParsedReply:
    text: str
    secondary_text: Optional[str] = None
    confidence: Optional[float] = None


Parser = Callable[[str], Optional[ParsedReply]]
Fallback = Callable[[LocalFallback, GenerationRequest], FallbackReply]


@dataclass(frozen=True)
class RequestKind:
    name: str
    parse: Parser
    fallback: Fallback
    provider_confidence: float
    salvage: Optional[Parser] = None


def clamp_confidence(value, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return min(1.0, max(0.0, float(value)))


# ---------- insight ----------

def parse_insight(text: str) -> Optional[ParsedReply]:
    data = extract_json_object(text)
    if not data:
        return None
    insight = data.get("insight")
    follow_up = data.get("followUpQuestion")
    if not isinstance(insight, str) or not insight.strip():
        return None
    if not isinstance(follow_up, str) or not follow_up.strip():
        return None
    return ParsedReply(text=insight.strip(), secondary_text=follow_up.strip(), confidence=data.get("confidence"))


def salvage_insight(text: str) -> Optional[ParsedReply]:
    pair = salvage_pair(clean_reply(text))
    if pair is None:
        return None
    primary, follow_up = pair
    return ParsedReply(text=primary, secondary_text=follow_up)


# ---------- chat ----------

def parse_chat(text: str) -> Optional[ParsedReply]:
    reply = clean_reply(text)
    if not reply:
        return None
    return ParsedReply(text=enforce_style(reply, max_sentences=CHAT_MAX_SENTENCES))


# ---------- summary ----------

def parse_summary(text: str) -> Optional[ParsedReply]:
    """Any non-empty free text is a usable summary. A bare JSON object is not."""
    reply = clean_reply(text)
    if not reply or (reply.startswith("{") and extract_json_object(reply) is not None):
        return None
    return ParsedReply(text=reply)


def salvage_summary(text: str) -> Optional[ParsedReply]:
    """Pull the summary string out of a JSON-wrapped reply."""
    data = extract_json_object(text) or {}
    value = data.get("summary")
    if not isinstance(value, str):
        value = next((v for v in data.values() if isinstance(v, str) and v.strip()), "")
    value = clean_reply(value)
    if not value:
        return None
    return ParsedReply(text=value)


INSIGHT = RequestKind(
    name="insight",
    parse=parse_insight,
    salvage=salvage_insight,
    fallback=lambda local, req: local.insight(req.content, req.mood_rating, req.tier),
    provider_confidence=0.85,
)

CHAT = RequestKind(
    name="chat",
    parse=parse_chat,
    fallback=lambda local, req: local.chat(req.content, req.tier),
    provider_confidence=0.85,
)

SUMMARY = RequestKind(
    name="summary",
    parse=parse_summary,
    salvage=salvage_summary,
    fallback=lambda local, req: local.summary(req.content, req.history, req.tier),
    provider_confidence=0.9,
)

KINDS: Dict[str, RequestKind] = {k.name: k for k in (INSIGHT, CHAT, SUMMARY)}


def get_kind(name: str) -> RequestKind:
    try:
        return KINDS[name]
    except KeyError:
        raise ValueError(f"unknown request type: {name!r}") from None


def split_chat(messages: Sequence[Dict]) -> Tuple[str, Sequence[Dict]]:
    """(last user message, history before it)."""
    for idx in range(len(messages) - 1, -1, -1):
        if messages[idx].get("role") == "user":
            return messages[idx].get("content") or "", list(messages[:idx])
    return "", list(messages)

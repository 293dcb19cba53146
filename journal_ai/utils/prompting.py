# =============================================
# File: journal_ai/utils/prompting.py
# Purpose: Prompt policy: token budgets, model class and system instructions per request type/tier/style
# =============================================
"""
Pure string building. No I/O, no side effects: the same inputs always give
the same PromptPlan.
"""
from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from journal_ai.services.models import Entry, StatsSnapshot
from journal_ai.services.stats import describe
from journal_ai.utils.sanitize import collapse_ws, sanitize_context_snippet, truncate


# Policy constants, not computed.
TOKEN_LIMITS: Dict[str, Dict[str, int]] = {
    "insight": {"free": 300, "premium": 500},
    "chat": {"free": 250, "premium": 400},
    "summary": {"free": 100, "premium": 150},
}

MODEL_CLASSES: Dict[str, str] = {"free": "compact", "premium": "full"}

CHAT_HISTORY_TURNS = 5
CHAT_CONTEXT_CHARS = 300
SUMMARY_HISTORY_TURNS = 3
SUMMARY_TURN_CHARS = 100
RECENT_ENTRIES = 3
RECENT_ENTRY_CHARS = 100

PERSONALITIES: Dict[str, Dict] = {
    "coach": {
        "style": "coach",
        "description": "Strategic and direct. Helps you spot patterns and take action. 3 sentences max.",
        "tone": ["Strategic", "Action-oriented and direct"],
        "summary_focus": "focus on patterns and actions",
    },
    "reflector": {
        "style": "reflector",
        "description": "Thoughtful and curious. Gives you space to process and think clearly. 3 sentences max.",
        "tone": ["Processing-focused and gentle", "Creates space for reflection", "Validates feelings"],
        "summary_focus": "focus on feelings and processing",
    },
}

INSIGHT_JSON_FORMAT = (
    "Respond with JSON in this exact format:\n"
    "{{\n"
    "  \"insight\": \"Your {style}-style insight (1-2 sentences max)\",\n"
    "  \"followUpQuestion\": \"A thoughtful question to deepen their reflection\"\n"
    "}}\n"
    "No markdown outside the JSON. No extra text."
)


@dataclass(frozen=True)
class PromptPlan:
    request_type: str
    max_tokens: int
    model_class: str
    system_instructions: str
    user_message: str
    json_mode: bool = False


def get_max_tokens(request_type: str, tier: str) -> int:
    return TOKEN_LIMITS[request_type]["premium" if tier == "premium" else "free"]


def get_model_class(tier: str) -> str:
    return MODEL_CLASSES["premium" if tier == "premium" else "free"]


def resolve_model(model_class: str) -> str:
    """Model class -> concrete provider model id (read at call time)."""
    default = os.getenv("LLM_MODEL", "gpt-4o-mini")
    if model_class == "full":
        return os.getenv("LLM_MODEL_FULL", default)
    return os.getenv("LLM_MODEL_COMPACT", default)


def _personality(style: str) -> Dict:
    return PERSONALITIES["coach" if style == "coach" else "reflector"]


def _persona_block(style: str) -> str:
    p = _personality(style)
    return f"You are a {p['style']}. Your personality is: {', '.join(p['tone'])}."


def _preferences_section(focus_areas: Sequence[str] | None) -> str:
    areas = [a for a in (focus_areas or []) if a]
    if not areas:
        return ""
    return f"\n\nUser's focus areas: {', '.join(areas)}"


def _stats_section(stats: Optional[StatsSnapshot]) -> str:
    clause = describe(stats)
    return f"\n\nUser's journaling stats: {clause}" if clause else ""


def _recent_entries_section(recent: Sequence[Entry] | None) -> str:
    if not recent:
        return ""
    lines = [
        f"- {sanitize_context_snippet(e.content, max_chars=RECENT_ENTRY_CHARS)}"
        for e in list(recent)[:RECENT_ENTRIES]
        if isinstance(e.content, str) and e.content.strip()
    ]
    return "\n\nRecent journal context:\n" + "\n".join(lines) if lines else ""


def _history_lines(history: Sequence[Dict] | None, turns: int, max_chars: int | None = None) -> List[str]:
    lines: List[str] = []
    for msg in list(history or [])[-turns:]:
        who = "User" if msg.get("role") == "user" else "AI"
        text = collapse_ws(msg.get("content") or "")
        if max_chars:
            text = truncate(text, max_chars)
        lines.append(f"{who}: {text}")
    return lines


def build_insight(
    style: str,
    tier: str,
    entry: str,
    mood_rating: int | None = None,
    stats: Optional[StatsSnapshot] = None,
    recent_entries: Sequence[Entry] | None = None,
    focus_areas: Sequence[str] | None = None,
) -> PromptPlan:
    p = _personality(style)
    system = (
        f"{_persona_block(style)}\n\n"
        "Keep responses concise: 2-3 constructive sentences maximum."
        f"{_preferences_section(focus_areas)}"
        f"{_stats_section(stats)}"
        f"{_recent_entries_section(recent_entries)}\n\n"
        + INSIGHT_JSON_FORMAT.format(style=p["style"])
    )
    user = f"Journal entry: \"{entry.strip()}\""
    if mood_rating:
        user += f"\nMood rating: {mood_rating}/5"
    user += f"\n\nProvide a {p['style']}-style insight."
    return PromptPlan(
        request_type="insight",
        max_tokens=get_max_tokens("insight", tier),
        model_class=get_model_class(tier),
        system_instructions=system,
        user_message=user,
        json_mode=True,
    )


def build_chat(
    style: str,
    tier: str,
    message: str,
    history: Sequence[Dict] | None = None,
    journal_context: str | None = None,
    stats: Optional[StatsSnapshot] = None,
    focus_areas: Sequence[str] | None = None,
) -> PromptPlan:
    p = _personality(style)
    context = ""
    if journal_context:
        snippet = sanitize_context_snippet(journal_context, max_chars=CHAT_CONTEXT_CHARS)
        context = f"\n\nCurrent journal entry: \"{snippet}\""
    lines = _history_lines(history, CHAT_HISTORY_TURNS)
    history_section = "\n\nConversation history:\n" + "\n".join(lines) if lines else ""
    system = (
        f"{_persona_block(style)}\n\n"
        "Respond in 1-2 sentences. Be concise and direct."
        f"{_preferences_section(focus_areas)}"
        f"{_stats_section(stats)}"
        f"{context}"
        f"{history_section}\n\n"
        f"Respond naturally and conversationally while maintaining {p['style']} voice."
    )
    return PromptPlan(
        request_type="chat",
        max_tokens=get_max_tokens("chat", tier),
        model_class=get_model_class(tier),
        system_instructions=system,
        user_message=message.strip(),
    )


def build_summary(
    style: str,
    tier: str,
    journal_content: str,
    history: Sequence[Dict] | None = None,
    stats: Optional[StatsSnapshot] = None,
) -> PromptPlan:
    p = _personality(style)
    lines = _history_lines(history, SUMMARY_HISTORY_TURNS, max_chars=SUMMARY_TURN_CHARS)
    conversation = "\n\nRelated conversation:\n" + "\n".join(lines) if lines else ""
    system = (
        "Summarise this journal entry and chat in bullet points.\n\n"
        "- Do not begin with \"Summary:\" or any other preamble.\n"
        "- Begin directly with the content - no labels, no headers, no prefixes.\n"
        "- Keep it concise and to the point (3-5 bullet points).\n"
        f"- Use {p['style']} voice: {p['summary_focus']}\n"
        "- Make it useful for quick scanning later"
        f"{_stats_section(stats)}"
        f"{conversation}"
    )
    return PromptPlan(
        request_type="summary",
        max_tokens=get_max_tokens("summary", tier),
        model_class=get_model_class(tier),
        system_instructions=system,
        user_message=journal_content.strip(),
    )


def build(request_type: str, tier: str, style: str, **inputs) -> PromptPlan:
    """Dispatch on request type; `inputs` are the type-specific builder arguments."""
    if request_type == "insight":
        return build_insight(style, tier, **inputs)
    if request_type == "chat":
        return build_chat(style, tier, **inputs)
    if request_type == "summary":
        return build_summary(style, tier, **inputs)
    raise ValueError(f"unknown request type: {request_type!r}")


def build_messages(plan: PromptPlan) -> List[Dict]:
    """Messages suitable for the Chat Completions API."""
    return [
        {"role": "system", "content": plan.system_instructions},
        {"role": "user", "content": plan.user_message},
    ]

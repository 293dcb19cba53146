# journal_ai/utils/sanitize.py
# Neutralize prompt-injection cues in journal text quoted back into system instructions
from __future__ import annotations
import re

_INJECTION_CUES = (
    "ignore previous instruction",
    "ignore the previous instruction",
    "disregard previous instruction",
    "system prompt",
    "developer message",
    "you are chatgpt",
    "do not follow the above",
    "reset the system",
    "jailbreak",
)
_CUE_RE = re.compile("|".join(re.escape(c) for c in _INJECTION_CUES), re.IGNORECASE)

_WHITESPACE_RE = re.compile(r"\s+")
_SENT_SPLIT_RE = re.compile(r'(?<=[.!?])\s+')


def collapse_ws(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def _strip_injection_sentences(text: str) -> str:
    kept = [s.strip() for s in _SENT_SPLIT_RE.split(text) if s.strip() and not _CUE_RE.search(s)]
    # all sentences flagged: return the text unchanged, the inline pass still scrubs cues
    return " ".join(kept) if kept else text


def truncate(text: str, max_chars: int) -> str:
    if max_chars and len(text) > max_chars:
        return text[:max_chars].rstrip() + "..."
    return text


def sanitize_context_snippet(text: str, max_chars: int = 300) -> str:
    """
    Whitespace-collapsed, injection-scrubbed, length-capped copy of `text`.
    Sentences carrying a cue are dropped; cue phrases that survive are
    removed inline.
    """
    if not text:
        return ""
    t = _CUE_RE.sub("", _strip_injection_sentences(text))
    return truncate(collapse_ws(t), max_chars)

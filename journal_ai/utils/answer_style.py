# =============================================
# File: journal_ai/utils/answer_style.py
# Purpose: Sentence handling for provider replies: split, cap length, salvage insight/follow-up pairs
# =============================================
from __future__ import annotations
import re
from typing import List, Optional, Tuple

_SENT_SPLIT_RE = re.compile(r'(?<=[.!?])\s+')
_TRAILING_PUNCT_RE = re.compile(r'[.!?\s]+$')

GENERIC_FOLLOW_UP = "What would you like to explore further about this reflection?"

def split_sentences(text: str) -> List[str]:
    if not text:
        return []
    return [p.strip() for p in _SENT_SPLIT_RE.split(text.strip()) if p.strip()]

def enforce_style(answer_text: str, max_sentences: int = 3) -> str:
    """Trim a reply to `max_sentences` sentences; shorter replies pass through."""
    if not answer_text or max_sentences <= 0:
        return answer_text or ""
    parts = split_sentences(answer_text)
    if len(parts) <= max_sentences:
        return answer_text.strip()
    return " ".join(parts[:max_sentences])

def salvage_pair(text: str) -> Optional[Tuple[str, str]]:
    """
    Best-effort (primary, follow_up) from unstructured text: every sentence
    but the last becomes the primary text, the last is the follow-up. A
    follow-up without a question mark, or a reply of a single sentence, gets
    GENERIC_FOLLOW_UP so the two fields never repeat each other.
    """
    sentences = split_sentences(text)
    if not sentences:
        return None
    head, last = sentences[:-1], sentences[-1]
    if not head:
        # a lone sentence is the primary text
        return last, GENERIC_FOLLOW_UP
    primary = ". ".join(_TRAILING_PUNCT_RE.sub("", s) for s in head).strip() + "."
    follow_up = last if "?" in last else GENERIC_FOLLOW_UP
    return primary, follow_up

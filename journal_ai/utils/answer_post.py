# =============================================
# File: journal_ai/utils/answer_post.py
# Purpose: Utilities to clean provider replies and pull JSON objects out of them
# =============================================
from __future__ import annotations
import json
import re
from typing import Any, Dict, Optional

# "Summary:", "Insight -", "**Response:**" ... at the very start of a reply
_LEADING_LABEL_RE = re.compile(
    r"^\s*[*#_>\s]*(summary|insight|response|answer|reply)\s*[*_]*\s*[:\-]\s*[*_]*\s*",
    re.IGNORECASE,
)


def _normalize(text: str) -> str:
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]+(\n)", r"\1", text)
    return text.strip()

def clean_reply(raw_text: str) -> str:
    """Drop a leading label/preamble and normalize blank lines."""
    if not raw_text:
        return ""
    text = _LEADING_LABEL_RE.sub("", raw_text, count=1)
    text = _normalize(text)
    # if the label was the whole reply, keep what was there
    return text or _normalize(raw_text)

def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Parse the outermost {...} in `text`. Tolerant to code fences or prose
    around the object; returns None when there is no parseable object.
    """
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start:end + 1])
    except ValueError:
        return None
    return data if isinstance(data, dict) else None

# =============================================
# File: journal_ai/services/stats.py
# Purpose: Personalization signals (streak, mood, words, patterns) derived from a user's entries
# =============================================
"""
Pure and deterministic: no I/O, no caching. Everything is a single pass over
the entries except the mood trend, which sorts the mood-bearing subset.
Day bucketing uses naive local time; tz-aware timestamps are converted to the
service's local zone first.
"""
from __future__ import annotations

import math
import re
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional

from journal_ai.services.models import Entry, StatsSnapshot

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
TIME_BUCKETS = ("morning", "afternoon", "evening", "night")

# Recent-vs-older mood difference that counts as a real change. Small samples
# swing by a few tenths on their own; keep 0.3 unless re-validated.
MOOD_TREND_THRESHOLD = 0.3
RECENT_SHARE = 0.25

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "up", "about", "into", "through", "during",
    "i", "me", "my", "myself", "we", "our", "ours", "you", "your", "yours",
    "he", "him", "his", "she", "her", "hers", "it", "its", "they", "them",
    "their", "theirs", "what", "which", "who", "when", "where", "why", "how",
    "is", "am", "are", "was", "were", "be", "been", "being", "have", "has",
    "had", "do", "does", "did", "will", "would", "should", "could", "may",
    "might", "must", "can", "this", "that", "these", "those", "as", "if",
    "so", "than", "too", "very", "just", "now", "then", "there", "here",
})

_PUNCT_RE = re.compile(r"[^\w\s]")


def _local_naive(ts: datetime) -> datetime:
    if ts.tzinfo is not None:
        return ts.astimezone().replace(tzinfo=None)
    return ts


def _words(content: Optional[str]) -> List[str]:
    return (content or "").split()


def _time_bucket(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def _mode(counts: Dict[str, int]) -> Optional[str]:
    """Highest count wins; ties go to the key inserted first."""
    best, best_n = None, 0
    for key, n in counts.items():
        if n > best_n:
            best, best_n = key, n
    return best


def current_streak(days: Iterable[date], today: date) -> int:
    """
    Consecutive days ending today, or yesterday if nothing was written today
    yet (one-day grace for late-night writers in another timezone).
    """
    day_set = set(days)
    yesterday = today - timedelta(days=1)
    if today in day_set:
        cursor = today
    elif yesterday in day_set:
        cursor = yesterday
    else:
        return 0
    streak = 0
    while cursor in day_set:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def top_words(contents: Iterable[Optional[str]], n: int = 3) -> List[str]:
    counts: Counter = Counter()
    for content in contents:
        for word in _PUNCT_RE.sub("", (content or "").lower()).split():
            if len(word) > 3 and word not in STOP_WORDS:
                counts[word] += 1
    # sorted() is stable and Counter keeps first-seen order, so ties resolve by first appearance
    ranked = sorted(counts.items(), key=lambda kv: -kv[1])
    return [word for word, _ in ranked[:n]]


def mood_trend(entries: Iterable[Entry]) -> str:
    rated = [e for e in entries if e.mood_rating is not None]
    rated.sort(key=lambda e: _local_naive(e.created_at), reverse=True)
    split = math.ceil(len(rated) * RECENT_SHARE)
    recent, older = rated[:split], rated[split:]
    if not recent or not older:
        return "stable"
    recent_avg = sum(e.mood_rating for e in recent) / len(recent)
    older_avg = sum(e.mood_rating for e in older) / len(older)
    diff = recent_avg - older_avg
    if diff > MOOD_TREND_THRESHOLD:
        return "improving"
    if diff < -MOOD_TREND_THRESHOLD:
        return "declining"
    return "stable"


def compute(entries: Iterable[Entry], now: datetime | None = None) -> StatsSnapshot:
    entries = list(entries)
    if not entries:
        return StatsSnapshot()

    now = _local_naive(now) if now is not None else datetime.now()

    days = set()
    weekday_counts: Dict[str, int] = {}
    bucket_counts: Dict[str, int] = {b: 0 for b in TIME_BUCKETS}
    total_words = 0
    mood_sum, mood_n = 0, 0

    for e in entries:
        ts = _local_naive(e.created_at)
        days.add(ts.date())
        day_name = WEEKDAYS[ts.weekday()]
        weekday_counts[day_name] = weekday_counts.get(day_name, 0) + 1
        bucket_counts[_time_bucket(ts.hour)] += 1
        total_words += len(_words(e.content))
        if e.mood_rating is not None:
            mood_sum += e.mood_rating
            mood_n += 1

    total = len(entries)
    return StatsSnapshot(
        total_entries=total,
        current_streak_days=current_streak(days, now.date()),
        average_mood=round(mood_sum / mood_n, 1) if mood_n else None,
        total_words=total_words,
        top_words=top_words(e.content for e in entries),
        favorite_weekday=_mode(weekday_counts),
        average_words_per_entry=int(math.floor(total_words / total + 0.5)),
        best_writing_time_bucket=_mode(bucket_counts),
        mood_trend=mood_trend(entries),
    )


def describe(stats: Optional[StatsSnapshot]) -> str:
    """Compact natural-language clause for prompts. Empty when nothing is known."""
    if stats is None or stats.total_entries == 0:
        return ""
    parts = [f"{stats.total_entries} total entries"]
    if stats.current_streak_days > 0:
        parts.append(f"{stats.current_streak_days}-day streak")
    if stats.average_mood is not None:
        parts.append(f"avg mood: {stats.average_mood}/5")
    if stats.total_words > 0:
        parts.append(f"{stats.total_words:,} words written")
    parts.append(f"mood trend: {stats.mood_trend}")
    if stats.top_words:
        parts.append("frequent themes: " + ", ".join(stats.top_words))
    if stats.favorite_weekday and stats.best_writing_time_bucket:
        parts.append(f"usually writes on {stats.favorite_weekday}s in the {stats.best_writing_time_bucket}")
    return ", ".join(parts)

# =============================================
# File: journal_ai/services/models.py
# Purpose: Domain records shared by the limiter, stats engine and generation pipeline
# =============================================
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

TIERS = ("free", "premium")
STYLES = ("coach", "reflector")

PROVIDER = "provider"
PROVIDER_SALVAGED = "provider-salvaged"
LOCAL_FALLBACK = "local-fallback"
PROVENANCES = (PROVIDER, PROVIDER_SALVAGED, LOCAL_FALLBACK)


@dataclass
class User:
    id: str
    tier: str = "free"
    style: str = "reflector"
    focus_areas: List[str] = field(default_factory=list)

    @property
    def is_premium(self) -> bool:
        return self.tier == "premium"


@dataclass(frozen=True)
class Entry:
    id: str
    owner_id: str
    content: str
    created_at: datetime
    mood_rating: Optional[int] = None


@dataclass
class RateWindow:
    owner_id: str
    count: int
    reset_at: float  # epoch seconds


@dataclass(frozen=True)
class Admission:
    allowed: bool
    remaining: Optional[int]
    reset_at: Optional[float]
    limit: Optional[int] = None


@dataclass(frozen=True)
class StatsSnapshot:
    total_entries: int = 0
    current_streak_days: int = 0
    average_mood: Optional[float] = None
    total_words: int = 0
    top_words: List[str] = field(default_factory=list)
    favorite_weekday: Optional[str] = None
    average_words_per_entry: int = 0
    best_writing_time_bucket: Optional[str] = None
    mood_trend: str = "stable"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalEntries": self.total_entries,
            "currentStreakDays": self.current_streak_days,
            "averageMood": self.average_mood,
            "totalWords": self.total_words,
            "topWords": list(self.top_words),
            "favoriteWeekday": self.favorite_weekday,
            "averageWordsPerEntry": self.average_words_per_entry,
            "bestWritingTimeBucket": self.best_writing_time_bucket,
            "moodTrend": self.mood_trend,
        }


@dataclass(frozen=True)
class GenerationResult:
    """Normalized envelope returned by every generation path."""
    text: str
    provenance: str
    model_id: str
    confidence: float
    secondary_text: Optional[str] = None

    def __post_init__(self) -> None:
        if self.provenance not in PROVENANCES:
            raise ValueError(f"unknown provenance: {self.provenance!r}")

# =============================================
# File: journal_ai/services/fallback.py
# Purpose: Deterministic local replies (no network): keyword classifier + template sets per request type
# =============================================
"""
Last stage of the generation cascade. Nothing here can fail for well-formed
input: every category/sentiment/tier combination has a template.

The classifier is pluggable. Anything with `category(text)` and
`sentiment(mood_rating)` can replace KeywordClassifier without touching the
cascade.
"""
from __future__ import annotations

import re
import zlib
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Sequence

SENTIMENTS = ("positive", "negative", "neutral")

LOCAL_MODEL_ID = "internal"


class SignalClassifier(Protocol):
    def category(self, text: str) -> str: ...
    def sentiment(self, mood_rating: Optional[int]) -> str: ...


_CAREER_RE = re.compile(r"\b(work|job|career|boss|colleague|meeting|project|deadline)", re.IGNORECASE)
_RELATIONSHIP_RE = re.compile(r"\b(friend|family|partner|relationship|love|social|connect)", re.IGNORECASE)


class KeywordClassifier:
    """Regex heuristics. Relationship cues win over career cues when both appear."""

    def category(self, text: str) -> str:
        text = text or ""
        if _RELATIONSHIP_RE.search(text):
            return "relationships"
        if _CAREER_RE.search(text):
            return "career"
        return "general"

    def sentiment(self, mood_rating: Optional[int]) -> str:
        if mood_rating is None:
            return "neutral"
        if mood_rating >= 4:
            return "positive"
        if mood_rating <= 2:
            return "negative"
        return "neutral"


@dataclass(frozen=True)
class Template:
    free: str
    premium: str
    follow_up: Optional[str]
    confidence: float

    def text_for(self, tier: str) -> str:
        return self.premium if tier == "premium" else self.free


@dataclass(frozen=True)
class FallbackReply:
    text: str
    secondary_text: Optional[str]
    confidence: float


INSIGHT_TEMPLATES: Dict[str, Dict[str, Template]] = {
    "career": {
        "positive": Template(
            free="Your work satisfaction shows you're aligned with your goals. This positive energy can fuel further growth and meaningful achievements.",
            premium="Your enthusiasm about work achievements reflects strong intrinsic motivation. This pattern suggests you thrive when your values align with your tasks. The satisfaction you describe indicates you're in a growth phase professionally.",
            follow_up="What specific aspects of this success can you replicate in future projects?",
            confidence=0.75,
        ),
        "negative": Template(
            free="Work stress often signals a mismatch between expectations and reality. Consider what small changes could improve your daily experience.",
            premium="The work frustration you're experiencing seems tied to misaligned expectations or values. Your language suggests this isn't just a bad day, but potentially a signal that your current role needs adjustment or boundary-setting.",
            follow_up="What would need to change for work to feel more aligned with your values?",
            confidence=0.7,
        ),
        "neutral": Template(
            free="Your balanced perspective on work shows healthy reflection. This neutral space can be valuable for planning your next steps.",
            premium="Your measured reflection about work suggests you're in an evaluation phase. This neutral stance often precedes important career decisions. Your thoughtful approach indicates you're processing changes mindfully.",
            follow_up="What career direction feels most authentic to you right now?",
            confidence=0.72,
        ),
    },
    "relationships": {
        "positive": Template(
            free="Your positive connections show your strength in building meaningful relationships. These bonds are clearly a source of energy and growth for you.",
            premium="The connection you describe reveals your capacity for meaningful relationships. Your appreciation for others suggests strong emotional intelligence and the ability to create lasting bonds. These relationships seem to energize rather than drain you.",
            follow_up="How can you nurture and expand these meaningful connections in your life?",
            confidence=0.75,
        ),
        "negative": Template(
            free="Relationship difficulties often reflect boundary needs or communication gaps. Your awareness is the first step toward positive change.",
            premium="The relationship challenges you're facing seem to trigger deeper questions about boundaries and self-worth. Your awareness of these patterns suggests you're ready to address underlying dynamics rather than just surface conflicts.",
            follow_up="What boundaries would help you feel more secure in your relationships?",
            confidence=0.68,
        ),
        "neutral": Template(
            free="Your thoughtful approach to relationships shows emotional maturity. This reflection can guide you toward healthier connections.",
            premium="Your balanced view of relationships suggests you're integrating past experiences with future hopes. This reflective space often leads to more conscious choices about who you invest your emotional energy with.",
            follow_up="What qualities do you value most in your closest relationships?",
            confidence=0.73,
        ),
    },
    "general": {
        "positive": Template(
            free="Your positive energy and self-reflection create a strong foundation for personal growth. You're clearly developing emotional awareness.",
            premium="Your positive outlook and self-awareness shine through your writing. You're demonstrating resilience and the ability to find meaning in daily experiences. This mindset creates a foundation for continued growth and well-being.",
            follow_up="What practices help you maintain this positive perspective during challenging times?",
            confidence=0.74,
        ),
        "negative": Template(
            free="Difficult emotions often contain important messages about our needs and values. Your willingness to explore them shows courage and self-awareness.",
            premium="The challenges you're facing seem to be pushing you toward important self-discovery. Your willingness to examine difficult emotions suggests inner strength. This period of struggle often precedes significant personal breakthroughs.",
            follow_up="What is this challenging experience trying to teach you about yourself?",
            confidence=0.7,
        ),
        "neutral": Template(
            free="Your balanced perspective allows for clear thinking and thoughtful decision-making. This emotional equilibrium is valuable for processing experiences.",
            premium="Your balanced emotional state suggests you're integrating recent experiences thoughtfully. This neutral ground often provides clarity and perspective that extreme emotional states can obscure.",
            follow_up="What insights are emerging as you reflect on recent changes in your life?",
            confidence=0.72,
        ),
    },
}

# Direct cues in the user's chat message, checked in order before the category replies.
CHAT_CUES = (
    (re.compile(r"\b(feel|feeling|emotion)", re.IGNORECASE),
     "Your feelings are valid. What patterns do you notice in these emotions, and what might they be telling you about your needs?"),
    (re.compile(r"\b(stress|anxious|worried|overwhelm)", re.IGNORECASE),
     "Stress often signals a gap between where you are and where you want to be. What would need to change to move toward your preferred outcome?"),
    (re.compile(r"\b(why|understand)", re.IGNORECASE),
     "Self-understanding often comes through examining the patterns behind our experiences. What connections are you starting to see?"),
    (re.compile(r"\b(help|advice)", re.IGNORECASE),
     "I'm here to help you find your own insights. What specific outcome are you hoping for in this situation?"),
)

CHAT_TEMPLATES: Dict[str, Sequence[str]] = {
    "career": (
        "Career challenges often reflect deeper questions about values and direction. What matters most to you in your professional growth right now?",
    ),
    "relationships": (
        "The people around us shape so much of how we feel. What would you like to be different in this relationship?",
    ),
    "general": (
        "That's a valuable insight. What patterns might this reveal about how you make decisions?",
        "Interesting perspective. How does this connect to your broader goals and priorities?",
        "This seems like an important observation. What does it tell you about what to focus on next?",
    ),
}
CHAT_CONFIDENCE = 0.7

SUMMARY_THEMES = (
    (re.compile(r"\b(work|job|career|meeting|project)", re.IGNORECASE), "professional experiences"),
    (re.compile(r"\b(friend|family|relationship|love|social)", re.IGNORECASE), "relationships"),
    (re.compile(r"\b(stress|anxious|worried|pressure)", re.IGNORECASE), "emotional challenges"),
    (re.compile(r"\b(happy|excited|grateful|good)", re.IGNORECASE), "positive experiences"),
    (re.compile(r"\b(goal|plan|future|dream)", re.IGNORECASE), "future planning"),
)
SUMMARY_CONFIDENCE = 0.7


def _pick(options: Sequence[str], seed: str) -> str:
    # stable across processes (unlike hash())
    return options[zlib.crc32(seed.encode("utf-8")) % len(options)]


class LocalFallback:
    def __init__(self, classifier: SignalClassifier | None = None) -> None:
        self.classifier: SignalClassifier = classifier or KeywordClassifier()

    def _category(self, text: str) -> str:
        category = self.classifier.category(text)
        return category if category in INSIGHT_TEMPLATES else "general"

    def insight(self, content: str, mood_rating: Optional[int], tier: str) -> FallbackReply:
        category = self._category(content)
        sentiment = self.classifier.sentiment(mood_rating)
        if sentiment not in SENTIMENTS:
            sentiment = "neutral"
        tpl = INSIGHT_TEMPLATES[category][sentiment]
        return FallbackReply(text=tpl.text_for(tier), secondary_text=tpl.follow_up, confidence=tpl.confidence)

    def chat(self, message: str, tier: str) -> FallbackReply:
        message = message or ""
        for pattern, reply in CHAT_CUES:
            if pattern.search(message):
                return FallbackReply(text=reply, secondary_text=None, confidence=CHAT_CONFIDENCE)
        options = CHAT_TEMPLATES.get(self._category(message)) or CHAT_TEMPLATES["general"]
        return FallbackReply(text=_pick(options, message), secondary_text=None, confidence=CHAT_CONFIDENCE)

    def summary(self, journal_content: str, history: Sequence[Dict] | None, tier: str) -> FallbackReply:
        content = journal_content or ""
        themes = [label for pattern, label in SUMMARY_THEMES if pattern.search(content)]
        if not themes:
            themes = ["personal thoughts and experiences"]
        bullets = [f"• Reflected on {' and '.join(themes[:2])}"]
        if len(themes) > 2:
            bullets.append(f"• Also touched on {', '.join(themes[2:])}")
        if history:
            bullets.append(f"• Explored these themes further across {len(history)} conversation exchanges")
        bullets.append("• Considered what matters most and possible next steps")
        if tier == "premium":
            bullets.append(f"• Entry length: {len(content.split())} words")
        return FallbackReply(text="\n".join(bullets), secondary_text=None, confidence=SUMMARY_CONFIDENCE)

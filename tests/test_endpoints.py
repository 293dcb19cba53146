# =============================================
# File: tests/test_endpoints.py
# Purpose: HTTP surface: auth, validation, quota headers, /usage, personalization, degradation
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from datetime import datetime, timedelta

from fastapi.testclient import TestClient

from journal_ai.deps import Services
from journal_ai.services.generation import GenerationOrchestrator
from journal_ai.services.identity import StaticTokenVerifier
from journal_ai.services.models import Entry, User
from journal_ai.services.provider import ProviderReply
from journal_ai.services.records import InMemoryRecords
from journal_ai.utils import metrics
from journal_ai.utils.ratelimit import RateLimiter

FREE = {"Authorization": "Bearer tok-free"}
PREMIUM = {"Authorization": "Bearer tok-prem"}


class RecordingProvider:
    configured = True

    def __init__(self, text):
        self.text = text
        self.calls = []

    def complete(self, messages, model, max_tokens, timeout, json_mode=False):
        self.calls.append(messages)
        return ProviderReply(text=self.text, model_id=model)


class BrokenStore:
    def get_user(self, user_id):
        raise RuntimeError("users table unavailable")

    def list_entries(self, owner_id, timeout):
        raise RuntimeError("entries table unavailable")


def _mount_client(monkeypatch, capacity=10, provider=None, users=None, entries=None):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    metrics.reset()
    records = InMemoryRecords()
    records.put_user(User(id="u-free"))
    records.put_user(User(id="u-prem", tier="premium", style="coach", focus_areas=["career"]))
    services = Services(
        limiter=RateLimiter(capacity=capacity, window_seconds=86400),
        users=users or records,
        entries=entries or records,
        identity=StaticTokenVerifier({"tok-free": "u-free", "tok-prem": "u-prem", "tok-new": "u-new"}),
        orchestrator=GenerationOrchestrator(provider=provider),
    )
    from journal_ai.main import create_app
    return TestClient(create_app(services)), services, records


def test_health(monkeypatch):
    client, _, _ = _mount_client(monkeypatch)
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert r.headers.get("X-Request-ID")


def test_missing_token_is_401(monkeypatch):
    client, services, _ = _mount_client(monkeypatch)
    r = client.post("/insight", json={"content": "Today was good."})
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"
    assert r.headers.get("WWW-Authenticate") == "Bearer"
    assert services.limiter.window_count() == 0


def test_unknown_token_is_401(monkeypatch):
    client, _, _ = _mount_client(monkeypatch)
    r = client.post("/chat", json={"messages": [{"role": "user", "content": "hi"}]},
                    headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401


def test_auth_checked_before_body_validation(monkeypatch):
    client, _, _ = _mount_client(monkeypatch)
    r = client.post("/insight", json={"content": "   "})
    assert r.status_code == 401


def test_blank_content_is_400_without_consuming_quota(monkeypatch):
    client, services, _ = _mount_client(monkeypatch)
    r = client.post("/insight", json={"content": "   "}, headers=FREE)
    assert r.status_code == 400
    body = r.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["details"]["errors"][0]["field"] == "content"
    assert services.limiter.window_count() == 0


def test_oversized_and_out_of_range_inputs_are_400(monkeypatch):
    client, _, _ = _mount_client(monkeypatch)
    assert client.post("/insight", json={"content": "x" * 10_001}, headers=FREE).status_code == 400
    assert client.post("/insight", json={"content": "ok", "moodRating": 6}, headers=FREE).status_code == 400
    assert client.post("/insight", json={"content": "ok", "moodRating": 0}, headers=FREE).status_code == 400
    assert client.post("/summary", json={"journalContent": "x" * 20_001}, headers=FREE).status_code == 400


def test_insight_without_provider_uses_local_fallback(monkeypatch):
    client, _, _ = _mount_client(monkeypatch)
    r = client.post("/insight", json={"content": "Lunch with a friend made my day.", "moodRating": 5}, headers=FREE)
    assert r.status_code == 200
    body = r.json()
    assert body["provenance"] == "local-fallback"
    assert body["modelId"] == "internal"
    assert body["insight"]
    assert body["followUpQuestion"].endswith("?")
    assert 0 < body["confidence"] <= 0.75
    assert r.headers["X-RateLimit-Limit"] == "10"
    assert r.headers["X-RateLimit-Remaining"] == "9"
    assert r.headers["X-RateLimit-Reset"].endswith("Z")


def test_free_quota_exhaustion_returns_429_with_headers(monkeypatch):
    provider = RecordingProvider('{"insight": "A.", "followUpQuestion": "B?"}')
    client, services, _ = _mount_client(monkeypatch, capacity=2, provider=provider)

    for expected_remaining in ("1", "0"):
        r = client.post("/insight", json={"content": "Entry"}, headers=FREE)
        assert r.status_code == 200
        assert r.headers["X-RateLimit-Remaining"] == expected_remaining

    r = client.post("/insight", json={"content": "Entry"}, headers=FREE)
    assert r.status_code == 429
    body = r.json()
    assert body["code"] == "RATE_LIMIT_EXCEEDED"
    assert body["details"]["limit"] == 2
    assert body["details"]["remaining"] == 0
    assert r.headers["X-RateLimit-Limit"] == "2"
    assert r.headers["X-RateLimit-Remaining"] == "0"
    assert r.headers["X-RateLimit-Reset"] == body["details"]["resetAt"]
    assert len(provider.calls) == 2
    assert services.limiter._windows["u-free"].count == 2
    assert metrics.snapshot()["counters"]["rate_limit_hits_total"] == 1


def test_quota_is_shared_across_request_types(monkeypatch):
    client, _, _ = _mount_client(monkeypatch, capacity=2)
    assert client.post("/insight", json={"content": "Entry"}, headers=FREE).status_code == 200
    assert client.post("/chat", json={"messages": [{"role": "user", "content": "hi"}]}, headers=FREE).status_code == 200
    assert client.post("/summary", json={"journalContent": "Entry"}, headers=FREE).status_code == 429


def test_premium_is_unlimited(monkeypatch):
    client, services, _ = _mount_client(monkeypatch, capacity=1)
    for _ in range(3):
        r = client.post("/insight", json={"content": "Big project win"}, headers=PREMIUM)
        assert r.status_code == 200
    assert r.headers["X-RateLimit-Limit"] == "unlimited"
    assert r.headers["X-RateLimit-Remaining"] == "unlimited"
    assert r.headers["X-RateLimit-Reset"] == "never"
    assert services.limiter.window_count() == 0


def test_unknown_user_gets_free_defaults(monkeypatch):
    client, services, _ = _mount_client(monkeypatch, capacity=1)
    assert client.post("/insight", json={"content": "Entry"}, headers={"Authorization": "Bearer tok-new"}).status_code == 200
    assert services.limiter._windows["u-new"].count == 1


def test_tier_lookup_failure_fails_open(monkeypatch):
    client, services, _ = _mount_client(monkeypatch, capacity=1, users=BrokenStore())
    for _ in range(3):
        r = client.post("/insight", json={"content": "Entry"}, headers=FREE)
        assert r.status_code == 200
        assert "X-RateLimit-Limit" not in r.headers
    assert services.limiter.window_count() == 0
    assert metrics.snapshot()["counters"]["rate_limit_fail_open_total"] == 3


def test_entry_fetch_failure_still_generates(monkeypatch):
    provider = RecordingProvider("Keep going.")
    client, _, _ = _mount_client(monkeypatch, provider=provider, entries=BrokenStore())
    r = client.post("/chat", json={"messages": [{"role": "user", "content": "hi"}]}, headers=FREE)
    assert r.status_code == 200
    assert r.json()["provenance"] == "provider"
    system = provider.calls[0][0]["content"]
    assert "User's journaling stats:" not in system


def test_malformed_entry_degrades_to_no_stats(monkeypatch):
    provider = RecordingProvider('{"insight": "Still here.", "followUpQuestion": "What helps?"}')
    client, _, records = _mount_client(monkeypatch, provider=provider)
    records.add_entry(Entry(id="bad", owner_id="u-free", content=12345, created_at=datetime.now()))

    r = client.post("/insight", json={"content": "Quiet day."}, headers=FREE)
    assert r.status_code == 200
    assert r.json()["provenance"] == "provider"
    system = provider.calls[0][0]["content"]
    assert "User's journaling stats:" not in system
    assert "Recent journal context:" not in system


class ExplodingOrchestrator:
    def run(self, request, plan, deadline=None):
        raise RuntimeError("orchestrator crashed")


def test_unhandled_error_is_500_envelope(monkeypatch):
    client, services, _ = _mount_client(monkeypatch)
    services.orchestrator = ExplodingOrchestrator()
    client = TestClient(client.app, raise_server_exceptions=False)

    r = client.post("/chat", json={"messages": [{"role": "user", "content": "hi"}]}, headers=FREE)
    assert r.status_code == 500
    assert r.json() == {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred."}


def test_stats_and_preferences_reach_the_prompt(monkeypatch):
    monkeypatch.setenv("LLM_MODEL_FULL", "full-model")
    provider = RecordingProvider('{"insight": "Momentum is building.", "followUpQuestion": "What next?"}')
    client, _, records = _mount_client(monkeypatch, provider=provider)
    now = datetime.now()
    for i, mood in enumerate([4, 3, 5]):
        records.add_entry(Entry(id=f"e{i}", owner_id="u-prem", content=f"Shipped the project milestone {i}",
                                created_at=now - timedelta(days=i), mood_rating=mood))

    r = client.post("/insight", json={"content": "Another good day at work", "moodRating": 4}, headers=PREMIUM)
    assert r.status_code == 200
    assert r.json() == {
        "insight": "Momentum is building.",
        "followUpQuestion": "What next?",
        "confidence": 0.85,
        "provenance": "provider",
        "modelId": "full-model",
    }
    system = provider.calls[0][0]["content"]
    assert "You are a coach" in system
    assert "User's focus areas: career" in system
    assert "3 total entries" in system
    assert "3-day streak" in system
    assert "Shipped the project milestone 0" in system


def test_chat_requires_a_user_message(monkeypatch):
    client, services, _ = _mount_client(monkeypatch)
    r = client.post("/chat", json={"messages": [{"role": "assistant", "content": "Hello!"}]}, headers=FREE)
    assert r.status_code == 400
    assert r.json()["message"] == "No user message found"
    assert services.limiter.window_count() == 0

    assert client.post("/chat", json={"messages": []}, headers=FREE).status_code == 400
    assert client.post("/chat", json={"messages": [{"role": "system", "content": "x"}]}, headers=FREE).status_code == 400


def test_chat_local_fallback_reply(monkeypatch):
    client, _, _ = _mount_client(monkeypatch)
    r = client.post("/chat", json={
        "messages": [
            {"role": "user", "content": "Work was rough."},
            {"role": "assistant", "content": "What happened?"},
            {"role": "user", "content": "I feel drained."},
        ],
        "journalContext": "Long day at the office.",
    }, headers=FREE)
    assert r.status_code == 200
    body = r.json()
    assert body["provenance"] == "local-fallback"
    assert body["response"].startswith("Your feelings are valid.")


def test_summary_and_alias(monkeypatch):
    client, _, _ = _mount_client(monkeypatch)
    payload = {
        "journalContent": "Tough meeting at work, then dinner with family.",
        "conversationHistory": [{"role": "user", "content": "It was a lot."}],
    }
    r = client.post("/summary", json=payload, headers=FREE)
    assert r.status_code == 200
    body = r.json()
    assert body["provenance"] == "local-fallback"
    assert body["summary"].startswith("• Reflected on professional experiences and relationships")

    alias = client.post("/summarise", json=payload, headers=FREE)
    assert alias.status_code == 200
    assert alias.json()["summary"] == body["summary"]


def test_usage_is_read_only(monkeypatch):
    client, services, _ = _mount_client(monkeypatch, capacity=3)
    r = client.get("/usage", headers=FREE)
    assert r.status_code == 200
    assert r.json() == {"tier": "free", "isPremium": False, "limit": 3, "remaining": 3, "resetAt": None}
    assert services.limiter.window_count() == 0

    client.post("/insight", json={"content": "Entry"}, headers=FREE)
    body = client.get("/usage", headers=FREE).json()
    assert body["remaining"] == 2
    assert body["resetAt"].endswith("Z")
    assert services.limiter._windows["u-free"].count == 1


def test_usage_premium(monkeypatch):
    client, _, _ = _mount_client(monkeypatch)
    body = client.get("/usage", headers=PREMIUM).json()
    assert body == {"tier": "premium", "isPremium": True, "limit": None, "remaining": None, "resetAt": None}


def test_usage_requires_auth(monkeypatch):
    client, _, _ = _mount_client(monkeypatch)
    assert client.get("/usage").status_code == 401

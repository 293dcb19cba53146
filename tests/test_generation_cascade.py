# =============================================
# File: tests/test_generation_cascade.py
# Purpose: Provider -> parse -> salvage -> local fallback cascade and provenance tagging
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from types import SimpleNamespace

import httpx
import openai
import pytest

from journal_ai.core.errors import ProviderError
from journal_ai.services import provider as provider_mod
from journal_ai.services.generation import GenerationOrchestrator
from journal_ai.services.kinds import GenerationRequest, split_chat
from journal_ai.services.provider import ProviderClient, ProviderReply, classify_failure
from journal_ai.utils import metrics, prompting
from journal_ai.utils.timing import Deadline


class FakeProvider:
    def __init__(self, text=None, exc=None, configured=True):
        self.text = text
        self.exc = exc
        self.configured = configured
        self.calls = []

    def complete(self, messages, model, max_tokens, timeout, json_mode=False):
        self.calls.append(dict(messages=messages, model=model, max_tokens=max_tokens,
                               timeout=timeout, json_mode=json_mode))
        if self.exc is not None:
            raise self.exc
        return ProviderReply(text=self.text, model_id=model)


def _insight(tier="free", content="Great day with my family.", mood=5):
    req = GenerationRequest(request_type="insight", tier=tier, content=content, mood_rating=mood)
    plan = prompting.build_insight("reflector", tier, content, mood_rating=mood)
    return req, plan


def _chat(message="I had a long day.", tier="free"):
    req = GenerationRequest(request_type="chat", tier=tier, content=message)
    return req, prompting.build_chat("coach", tier, message)


def _summary(content="Busy week at work.", tier="free"):
    req = GenerationRequest(request_type="summary", tier=tier, content=content)
    return req, prompting.build_summary("coach", tier, content)


@pytest.fixture(autouse=True)
def _clean(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("LLM_MODEL", "test-model")
    monkeypatch.delenv("LLM_MODEL_COMPACT", raising=False)
    monkeypatch.delenv("LLM_MODEL_FULL", raising=False)
    metrics.reset()
    yield
    metrics.reset()


def test_no_credential_goes_straight_to_local_fallback():
    fake = FakeProvider(text="unused", configured=False)
    result = GenerationOrchestrator(provider=fake).run(*_insight())
    assert fake.calls == []
    assert result.provenance == "local-fallback"
    assert result.model_id == "internal"
    assert result.text and result.secondary_text
    assert result.confidence <= 0.75


def test_default_client_without_key_uses_fallback():
    result = GenerationOrchestrator().run(*_chat())
    assert result.provenance == "local-fallback"


def test_provider_timeout_falls_back_and_is_counted():
    fake = FakeProvider(exc=ProviderError("timeout", "read timed out"))
    result = GenerationOrchestrator(provider=fake).run(*_insight())
    assert len(fake.calls) == 1
    assert result.provenance == "local-fallback"
    assert metrics.snapshot()["provider_failures"] == {"timeout": 1}


def test_unexpected_provider_exception_falls_back():
    fake = FakeProvider(exc=RuntimeError("boom"))
    result = GenerationOrchestrator(provider=fake).run(*_summary())
    assert result.provenance == "local-fallback"
    assert metrics.snapshot()["provider_failures"] == {"unknown": 1}


def test_structured_insight_is_provider():
    fake = FakeProvider(text='{"insight": "You value connection.", "followUpQuestion": "Who energizes you?", "confidence": 0.93}')
    result = GenerationOrchestrator(provider=fake).run(*_insight())
    assert result.provenance == "provider"
    assert result.text == "You value connection."
    assert result.secondary_text == "Who energizes you?"
    assert result.confidence == pytest.approx(0.93)
    assert result.model_id == "test-model"


def test_structured_confidence_defaults_and_clamps():
    fake = FakeProvider(text='{"insight": "A.", "followUpQuestion": "B?"}')
    assert GenerationOrchestrator(provider=fake).run(*_insight()).confidence == pytest.approx(0.85)

    fake = FakeProvider(text='{"insight": "A.", "followUpQuestion": "B?", "confidence": 7}')
    assert GenerationOrchestrator(provider=fake).run(*_insight()).confidence == 1.0

    fake = FakeProvider(text='{"insight": "A.", "followUpQuestion": "B?", "confidence": "high"}')
    assert GenerationOrchestrator(provider=fake).run(*_insight()).confidence == pytest.approx(0.85)


def test_plain_prose_insight_is_salvaged():
    fake = FakeProvider(text="You are carrying a lot. Rest matters. What would help tonight?")
    result = GenerationOrchestrator(provider=fake).run(*_insight())
    assert result.provenance == "provider-salvaged"
    assert result.text == "You are carrying a lot. Rest matters."
    assert result.secondary_text == "What would help tonight?"
    assert result.confidence == pytest.approx(0.8)


def test_json_missing_fields_is_salvaged_not_parsed():
    fake = FakeProvider(text='{"insight": "Only half."}')
    result = GenerationOrchestrator(provider=fake).run(*_insight())
    assert result.provenance == "provider-salvaged"


def test_empty_insight_reply_falls_back():
    fake = FakeProvider(text="")
    result = GenerationOrchestrator(provider=fake).run(*_insight())
    assert result.provenance == "local-fallback"


def test_chat_reply_is_provider_and_capped():
    fake = FakeProvider(text="Response: One. Two. Three. Four. Five.")
    result = GenerationOrchestrator(provider=fake).run(*_chat())
    assert result.provenance == "provider"
    assert result.text == "One. Two. Three. Four."
    assert result.secondary_text is None
    assert result.confidence == pytest.approx(0.85)


def test_empty_chat_reply_has_no_salvage_stage():
    fake = FakeProvider(text="   ")
    result = GenerationOrchestrator(provider=fake).run(*_chat())
    assert result.provenance == "local-fallback"


def test_bulleted_summary_is_provider():
    fake = FakeProvider(text="Summary:\n- Worked late\n- Felt drained")
    result = GenerationOrchestrator(provider=fake).run(*_summary())
    assert result.provenance == "provider"
    assert result.text == "- Worked late\n- Felt drained"
    assert result.confidence == pytest.approx(0.9)


def test_prose_summary_is_provider_text_unchanged():
    fake = FakeProvider(text="You worked late all week and felt drained by Friday.")
    result = GenerationOrchestrator(provider=fake).run(*_summary())
    assert result.provenance == "provider"
    assert result.text == "You worked late all week and felt drained by Friday."
    assert result.confidence == pytest.approx(0.9)


def test_json_wrapped_summary_is_salvaged():
    fake = FakeProvider(text='{"summary": "Worked late. Felt drained."}')
    result = GenerationOrchestrator(provider=fake).run(*_summary())
    assert result.provenance == "provider-salvaged"
    assert result.text == "Worked late. Felt drained."
    assert result.confidence == pytest.approx(0.8)


def test_empty_summary_reply_falls_back():
    fake = FakeProvider(text="  ")
    result = GenerationOrchestrator(provider=fake).run(*_summary())
    assert result.provenance == "local-fallback"


def test_single_question_insight_gets_distinct_follow_up():
    fake = FakeProvider(text="What made today feel heavy?")
    result = GenerationOrchestrator(provider=fake).run(*_insight())
    assert result.provenance == "provider-salvaged"
    assert result.text == "What made today feel heavy?"
    assert result.secondary_text != result.text


def test_plan_is_forwarded_to_provider(monkeypatch):
    monkeypatch.setenv("LLM_MODEL_FULL", "big-model")
    fake = FakeProvider(text='{"insight": "A.", "followUpQuestion": "B?"}')
    GenerationOrchestrator(provider=fake).run(*_insight(tier="premium"))
    call = fake.calls[0]
    assert call["model"] == "big-model"
    assert call["max_tokens"] == 500
    assert call["json_mode"] is True
    assert [m["role"] for m in call["messages"]] == ["system", "user"]


def test_deadline_bounds_provider_timeout(monkeypatch):
    monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "12")
    fake = FakeProvider(text="ok")
    GenerationOrchestrator(provider=fake).run(*_chat(), deadline=Deadline(seconds=2))
    assert 0.1 <= fake.calls[0]["timeout"] <= 2


def test_generation_metrics_by_provenance():
    GenerationOrchestrator(provider=FakeProvider(text="Fine.")).run(*_chat())
    GenerationOrchestrator(provider=FakeProvider(configured=False)).run(*_chat())
    snap = metrics.snapshot()
    assert snap["provenance"] == {"provider": 1, "local-fallback": 1}
    assert snap["counters"]["generations_total"] == 2
    assert snap["model_usage"] == {"test-model": 1, "internal": 1}


def test_split_chat_takes_last_user_message():
    messages = [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "reply"},
        {"role": "user", "content": "second"},
        {"role": "assistant", "content": "trailing"},
    ]
    message, history = split_chat(messages)
    assert message == "second"
    assert [m["content"] for m in history] == ["first", "reply"]
    assert split_chat([{"role": "assistant", "content": "x"}])[0] == ""


# ---------- real client wrapper, SDK stubbed ----------

_REQ = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


class _FakeOpenAI:
    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.create_kwargs = None
        self.behaviour = None
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))
        _FakeOpenAI.instances.append(self)

    def _create(self, **kwargs):
        self.create_kwargs = kwargs
        if isinstance(self.behaviour, Exception):
            raise self.behaviour
        msg = SimpleNamespace(content=self.behaviour)
        return SimpleNamespace(choices=[SimpleNamespace(message=msg)], model="gpt-test-0001")


def test_provider_client_disables_retries_and_passes_json_mode(monkeypatch):
    _FakeOpenAI.instances.clear()
    monkeypatch.setattr(provider_mod, "OpenAI", _FakeOpenAI)
    client = ProviderClient(api_key="sk-test")
    assert client.configured

    client._openai().behaviour = '  {"insight": "x"}  '
    reply = client.complete([{"role": "user", "content": "hi"}], model="m", max_tokens=10,
                            timeout=3.0, json_mode=True)
    inst = _FakeOpenAI.instances[-1]
    assert inst.kwargs["max_retries"] == 0
    assert inst.create_kwargs["timeout"] == 3.0
    assert inst.create_kwargs["response_format"] == {"type": "json_object"}
    assert reply.text == '{"insight": "x"}'
    assert reply.model_id == "gpt-test-0001"


def test_provider_client_wraps_sdk_timeout(monkeypatch):
    monkeypatch.setattr(provider_mod, "OpenAI", _FakeOpenAI)
    client = ProviderClient(api_key="sk-test")
    client._openai().behaviour = openai.APITimeoutError(request=_REQ)
    with pytest.raises(ProviderError) as ei:
        client.complete([], model="m", max_tokens=10, timeout=1.0)
    assert ei.value.failure == "timeout"


def test_provider_client_without_key_raises_auth():
    with pytest.raises(ProviderError) as ei:
        ProviderClient().complete([], model="m", max_tokens=10, timeout=1.0)
    assert ei.value.failure == "auth"


def test_classify_failure():
    resp401 = httpx.Response(401, request=_REQ)
    resp429 = httpx.Response(429, request=_REQ)
    resp503 = httpx.Response(503, request=_REQ)
    resp400 = httpx.Response(400, request=_REQ)
    assert classify_failure(openai.APITimeoutError(request=_REQ)) == "timeout"
    assert classify_failure(openai.APIConnectionError(request=_REQ)) == "transport"
    assert classify_failure(openai.AuthenticationError("no", response=resp401, body=None)) == "auth"
    assert classify_failure(openai.RateLimitError("slow", response=resp429, body=None)) == "rate-limit"
    assert classify_failure(openai.InternalServerError("down", response=resp503, body=None)) == "server"
    assert classify_failure(openai.BadRequestError("bad", response=resp400, body=None)) == "bad-request"
    assert classify_failure(TimeoutError()) == "timeout"

# =============================================
# File: journal_ai/services/provider.py
# Purpose: Single-shot chat completion against the LLM provider (OpenAI SDK v1), errors classified
# =============================================
from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Dict, List

import openai
from openai import OpenAI

from journal_ai.core.errors import ProviderError


def _api_key() -> str:
    return os.getenv("OPENAI_API_KEY", "").strip()


def _temperature() -> float:
    return float(os.getenv("LLM_TEMPERATURE", "0.7"))


def default_timeout() -> float:
    return float(os.getenv("LLM_TIMEOUT_SECONDS", "12"))


@dataclass(frozen=True)
class ProviderReply:
    text: str
    model_id: str


def classify_failure(exc: BaseException) -> str:
    """Map a provider/transport exception to a coarse failure class for logs and metrics."""
    if isinstance(exc, (openai.APITimeoutError, TimeoutError)):
        return "timeout"
    if isinstance(exc, openai.APIConnectionError):
        return "transport"
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return "auth"
    if isinstance(exc, openai.RateLimitError):
        return "rate-limit"
    if isinstance(exc, openai.APIStatusError):
        return "server" if exc.status_code >= 500 else "bad-request"
    return "transport"


class ProviderClient:
    """
    Wraps the OpenAI client with retries disabled: one attempt per request,
    bounded by the caller's timeout. Failures surface as ProviderError.
    """

    def __init__(self, api_key: str | None = None) -> None:
        self._explicit_key = api_key
        self._client: OpenAI | None = None
        self._client_key: str | None = None

    @property
    def configured(self) -> bool:
        return bool(self._key())

    def _key(self) -> str:
        return (self._explicit_key or "").strip() or _api_key()

    def _openai(self) -> OpenAI:
        key = self._key()
        if self._client is None or self._client_key != key:
            self._client = OpenAI(api_key=key, max_retries=0)
            self._client_key = key
        return self._client

    def complete(
        self,
        messages: List[Dict],
        model: str,
        max_tokens: int,
        timeout: float,
        json_mode: bool = False,
    ) -> ProviderReply:
        if not self.configured:
            raise ProviderError("auth", "provider credential not configured")
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            resp = self._openai().chat.completions.create(
                model=model,
                temperature=_temperature(),
                max_tokens=max_tokens,
                messages=messages,
                timeout=timeout,
                **kwargs,
            )
        except openai.OpenAIError as e:
            raise ProviderError(classify_failure(e), str(e)) from e
        except TimeoutError as e:
            raise ProviderError("timeout", str(e)) from e
        text = ""
        if resp.choices:
            text = (resp.choices[0].message.content or "").strip()
        return ProviderReply(text=text, model_id=getattr(resp, "model", None) or model)

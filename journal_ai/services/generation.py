# =============================================
# File: journal_ai/services/generation.py
# Purpose: Generation cascade: provider call -> structured parse -> text salvage -> local fallback
# =============================================
"""
run() always returns a GenerationResult. Provider failures never escape:

    ATTEMPT_PROVIDER --(no credential / error)------------------> LOCAL_FALLBACK
          |
    PARSE_STRUCTURED --(ok)--> provenance=provider
          |
    SALVAGE_TEXT (insight, summary) --(ok)--> provenance=provider-salvaged
          |
    LOCAL_FALLBACK --> provenance=local-fallback

There is no retry: one provider attempt per request, bounded by the timeout.
"""
from __future__ import annotations

from typing import Optional

from loguru import logger

from journal_ai.core.errors import ProviderError
from journal_ai.services.fallback import LocalFallback, LOCAL_MODEL_ID
from journal_ai.services.kinds import (
    GenerationRequest,
    RequestKind,
    SALVAGE_CONFIDENCE,
    clamp_confidence,
    get_kind,
)
from journal_ai.services.models import (
    GenerationResult,
    LOCAL_FALLBACK,
    PROVIDER,
    PROVIDER_SALVAGED,
)
from journal_ai.services.provider import ProviderClient, ProviderReply, default_timeout
from journal_ai.utils import metrics, slog
from journal_ai.utils.prompting import PromptPlan, build_messages, resolve_model
from journal_ai.utils.timing import Deadline, timer


class GenerationOrchestrator:
    def __init__(
        self,
        provider: ProviderClient | None = None,
        fallback: LocalFallback | None = None,
    ) -> None:
        self.provider = provider or ProviderClient()
        self.fallback = fallback or LocalFallback()

    def _attempt_provider(
        self, kind: RequestKind, plan: PromptPlan, deadline: Optional[Deadline]
    ) -> Optional[ProviderReply]:
        if not self.provider.configured:
            slog.log_event("generation.provider_skipped", kind=kind.name, reason="no_credential")
            return None

        model = resolve_model(plan.model_class)
        cap = default_timeout()
        timeout = deadline.timeout(cap) if deadline is not None else cap
        with timer() as elapsed:
            try:
                reply = self.provider.complete(
                    build_messages(plan),
                    model=model,
                    max_tokens=plan.max_tokens,
                    timeout=timeout,
                    json_mode=plan.json_mode,
                )
            except ProviderError as e:
                failure = e.failure
                logger.warning(f"Provider call failed ({failure}) for {kind.name}: {e.message}")
            except Exception as e:
                failure = "unknown"
                logger.exception(f"Unexpected provider error for {kind.name}: {e}")
            else:
                slog.log_event(
                    "generation.provider_ok",
                    kind=kind.name,
                    model=reply.model_id,
                    latency_ms=elapsed(),
                    chars=len(reply.text),
                )
                return reply
        metrics.record_provider_failure(failure)
        slog.log_event(
            "generation.provider_failed",
            kind=kind.name,
            model=model,
            failure=failure,
            latency_ms=elapsed(),
        )
        return None

    def _local(self, kind: RequestKind, request: GenerationRequest) -> GenerationResult:
        reply = kind.fallback(self.fallback, request)
        return GenerationResult(
            text=reply.text,
            secondary_text=reply.secondary_text,
            confidence=reply.confidence,
            provenance=LOCAL_FALLBACK,
            model_id=LOCAL_MODEL_ID,
        )

    def run(
        self,
        request: GenerationRequest,
        plan: PromptPlan,
        deadline: Deadline | None = None,
    ) -> GenerationResult:
        kind = get_kind(request.request_type)
        result = self._cascade(kind, request, plan, deadline)
        metrics.record_generation(result.model_id, result.provenance)
        slog.log_event(
            "generation.completed",
            kind=kind.name,
            tier=request.tier,
            provenance=result.provenance,
            model=result.model_id,
            confidence=result.confidence,
        )
        return result

    def _cascade(
        self,
        kind: RequestKind,
        request: GenerationRequest,
        plan: PromptPlan,
        deadline: Optional[Deadline],
    ) -> GenerationResult:
        reply = self._attempt_provider(kind, plan, deadline)
        if reply is None:
            return self._local(kind, request)

        parsed = kind.parse(reply.text)
        if parsed is not None:
            return GenerationResult(
                text=parsed.text,
                secondary_text=parsed.secondary_text,
                confidence=clamp_confidence(parsed.confidence, kind.provider_confidence),
                provenance=PROVIDER,
                model_id=reply.model_id,
            )

        if kind.salvage is not None:
            salvaged = kind.salvage(reply.text)
            if salvaged is not None:
                logger.info(f"Structured parse failed for {kind.name}; salvaged raw text")
                return GenerationResult(
                    text=salvaged.text,
                    secondary_text=salvaged.secondary_text,
                    confidence=SALVAGE_CONFIDENCE,
                    provenance=PROVIDER_SALVAGED,
                    model_id=reply.model_id,
                )

        slog.log_event("generation.unparseable", kind=kind.name, model=reply.model_id)
        return self._local(kind, request)

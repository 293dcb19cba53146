# =============================================
# File: journal_ai/main.py
# Purpose: FastAPI app: middleware (structured request log + metrics), CORS, error handlers, routers
# =============================================
from __future__ import annotations

import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from journal_ai.core.errors import (
    ServiceError,
    service_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from journal_ai.deps import Services, build_services
from journal_ai.routers import generate, metrics as metrics_router, usage
from journal_ai.utils import slog
from journal_ai.utils.logging import configure_logging
from journal_ai.utils.metrics import record_endpoint, record_request

load_dotenv()
configure_logging()


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ORIGINS", "*").strip()
    if raw == "*":
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


@asynccontextmanager
async def _lifespan(app: FastAPI):
    sweeper = app.state.services.sweeper
    if sweeper is not None:
        sweeper.start()
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.stop()


def create_app(services: Services | None = None) -> FastAPI:
    app = FastAPI(
        title="Journal AI Service",
        description=(
            "Rate-limited, personalized insight / chat / summary generation with a "
            "provider -> salvage -> local fallback cascade.\n\n"
            "All error responses follow the `{code, message, details}` envelope."
        ),
        version="1.0.0",
        lifespan=_lifespan,
    )
    app.state.services = services or build_services()

    # CORS is permissive at the edge; auth is the bearer token, not the origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "X-Request-ID"],
    )

    app.add_exception_handler(ServiceError, service_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.middleware("http")
    async def _logging_middleware(request, call_next):
        start = time.perf_counter()
        req_id = slog.new_request_id()
        client_ip = request.client.host if request.client else None
        try:
            response = await call_next(request)
        except Exception as e:
            latency_ms = int((time.perf_counter() - start) * 1000)
            ctx = getattr(request.state, "log_context", {})
            slog.log_event(
                "request.error",
                request_id=req_id,
                path=str(request.url.path),
                method=request.method,
                latency_ms=latency_ms,
                client_ip=client_ip,
                error=str(e),
                **(ctx or {}),
            )
            raise
        latency_ms = int((time.perf_counter() - start) * 1000)
        ctx = getattr(request.state, "log_context", {}) or {}
        ctx.setdefault("rate_limited", response.status_code == 429)
        slog.finalize_request_log(
            request_id=req_id,
            method=request.method,
            path=str(request.url.path),
            status=response.status_code,
            latency_ms=latency_ms,
            client_ip=client_ip,
            ctx=ctx,
        )
        record_request(latency_ms=latency_ms)
        record_endpoint(method=request.method, path=str(request.url.path), latency_ms=latency_ms)
        response.headers["X-Request-ID"] = req_id
        return response

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok"}

    app.include_router(generate.router)
    app.include_router(usage.router)
    app.include_router(metrics_router.router)
    return app


app = create_app()

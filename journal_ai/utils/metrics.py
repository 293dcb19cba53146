# =============================================
# File: journal_ai/utils/metrics.py
# Purpose: In-process counters & histograms for /metrics (requests, quota, provenance, provider failures)
# =============================================
from __future__ import annotations
from collections import deque
from typing import Any, Deque, Dict, List
import threading
import time

_lock = threading.Lock()

_MAX_SAMPLES: int = 1000
_LATENCY_BUCKETS_MS: List[int] = [50, 100, 200, 500, 1000, 2000, 5000, 10000]

_COUNTER_NAMES = (
    "requests_total",
    "generations_total",
    "rate_limit_hits_total",
    "rate_limit_fail_open_total",
)
# model | provenance | provider_failures -> label -> count
_LABEL_FAMILIES = ("model_usage", "provenance", "provider_failures")


class _Histogram:
    """Fixed buckets plus an overflow slot at the end."""

    def __init__(self, bounds: List[int]) -> None:
        self.bounds = list(bounds)
        self.counts = [0] * (len(bounds) + 1)

    def observe(self, value: float) -> None:
        for i, upper in enumerate(self.bounds):
            if value <= upper:
                self.counts[i] += 1
                return
        self.counts[-1] += 1

    def clear(self) -> None:
        self.counts = [0] * (len(self.bounds) + 1)


_counters: Dict[str, int] = {name: 0 for name in _COUNTER_NAMES}
_labeled: Dict[str, Dict[str, int]] = {family: {} for family in _LABEL_FAMILIES}
_latency = _Histogram(_LATENCY_BUCKETS_MS)
_endpoint_samples: Dict[str, Deque[float]] = {}   # "METHOD /path" -> recent latencies
_endpoint_counts: Dict[str, int] = {}


def _bump(family: str, label: str) -> None:
    # caller holds _lock
    bucket = _labeled[family]
    bucket[label] = bucket.get(label, 0) + 1


def _p95(values) -> float:
    xs = sorted(values)
    if not xs:
        return 0.0
    return xs[int(0.95 * (len(xs) - 1))]


def record_request(latency_ms: int) -> None:
    with _lock:
        _counters["requests_total"] += 1
        _latency.observe(int(latency_ms))


def record_generation(model: str | None, provenance: str) -> None:
    with _lock:
        _counters["generations_total"] += 1
        _bump("provenance", provenance)
        if model:
            _bump("model_usage", model)


def record_provider_failure(failure: str) -> None:
    with _lock:
        _bump("provider_failures", failure)


def record_rate_limit_hit() -> None:
    with _lock:
        _counters["rate_limit_hits_total"] += 1


def record_rate_limit_fail_open() -> None:
    with _lock:
        _counters["rate_limit_fail_open_total"] += 1


def record_endpoint(method: str, path: str, latency_ms: float) -> None:
    key = f"{method.upper()} {path}"
    with _lock:
        _endpoint_counts[key] = _endpoint_counts.get(key, 0) + 1
        samples = _endpoint_samples.get(key)
        if samples is None:
            samples = _endpoint_samples[key] = deque(maxlen=_MAX_SAMPLES)
        samples.append(float(latency_ms))


def snapshot() -> Dict[str, Any]:
    with _lock:
        endpoints = {
            key: {
                "count": float(_endpoint_counts.get(key, 0)),
                "avg_latency_ms": sum(samples) / len(samples) if samples else 0.0,
                "p95_latency_ms": _p95(samples),
            }
            for key, samples in _endpoint_samples.items()
        }
        out: Dict[str, Any] = {"counters": dict(_counters)}
        out.update({family: dict(values) for family, values in _labeled.items()})
        out["latency_ms"] = {
            "buckets": list(_latency.bounds) + ["+Inf"],
            "counts": list(_latency.counts),
        }
        out["performance"] = {"endpoints": endpoints, "generated_at": time.time()}
        return out


def reset() -> None:
    """For tests: zero everything."""
    with _lock:
        for name in _counters:
            _counters[name] = 0
        for values in _labeled.values():
            values.clear()
        _latency.clear()
        _endpoint_samples.clear()
        _endpoint_counts.clear()

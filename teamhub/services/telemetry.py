from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class RequestSample:
    ts: float
    service: str
    path: str
    status_code: int
    latency_ms: float


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    service: str
    latency_ms: float
    success: bool


_request_samples: Deque[RequestSample] = deque(maxlen=20000)
_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)
_gauges: dict[str, float] = {}


def record_request(*, service: str, path: str, status_code: int, latency_ms: float) -> None:
    # Track inbound request latency and status per service.
    _request_samples.append(
        RequestSample(
            ts=time.time(),
            service=service,
            path=path,
            status_code=status_code,
            latency_ms=latency_ms,
        )
    )


def record_external_call(*, service: str, latency_ms: float, success: bool) -> None:
    # Capture outbound call latency and outcome keyed by downstream service name.
    _external_samples.append(
        ExternalCallSample(
            ts=time.time(),
            service=service,
            latency_ms=latency_ms,
            success=success,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def set_gauge(name: str, value: float) -> None:
    _gauges[name] = value


def request_latency_by_service(window_s: int) -> dict[str, dict[str, float]]:
    # Inbound count, p95/max latency and 5xx count per service over the window.
    cutoff = time.time() - window_s
    by_service: dict[str, list[RequestSample]] = defaultdict(list)
    for sample in _request_samples:
        if sample.ts >= cutoff:
            by_service[sample.service].append(sample)
    result: dict[str, dict[str, float]] = {}
    for service, samples in by_service.items():
        latencies = sorted(sample.latency_ms for sample in samples)
        p95_idx = max(0, math.ceil(0.95 * len(latencies)) - 1)
        result[service] = {
            "count": float(len(samples)),
            "p95": latencies[p95_idx],
            "max": latencies[-1],
            "errors": float(sum(1 for sample in samples if sample.status_code >= 500)),
        }
    return result


def external_latency_by_service(window_s: int) -> dict[str, dict[str, float]]:
    # Aggregate outbound p95/max latency and error counts per downstream service.
    cutoff = time.time() - window_s
    by_service: dict[str, list[ExternalCallSample]] = defaultdict(list)
    for sample in _external_samples:
        if sample.ts >= cutoff:
            by_service[sample.service].append(sample)
    result: dict[str, dict[str, float]] = {}
    for service, samples in by_service.items():
        latencies = sorted(sample.latency_ms for sample in samples)
        p95_idx = max(0, math.ceil(0.95 * len(latencies)) - 1)
        result[service] = {
            "p95": latencies[p95_idx],
            "max": latencies[-1],
            "failures": float(sum(1 for sample in samples if not sample.success)),
        }
    return result


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def gauges_snapshot() -> dict[str, float]:
    return dict(_gauges)


def reset_telemetry() -> None:
    # Tests share the module-level buffers; clear them between cases.
    _request_samples.clear()
    _external_samples.clear()
    _counters.clear()
    _gauges.clear()

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from teamhub.core.config import Settings
from teamhub.core.errors import CircuitOpenError
from teamhub.services.telemetry import increment_counter, set_gauge


logger = logging.getLogger(__name__)


TransientException = (TimeoutError, asyncio.TimeoutError, OSError)


def _default_retryable(exc: Exception) -> bool:
    # Retry transient network/timeout failures and 5xx answers; never 4xx.
    if isinstance(exc, TransientException):
        return True
    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and status >= 500:
        return True
    return False


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_retries: int
    backoff_ms: int

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            timeout_ms=settings.svc_call_timeout_ms,
            max_retries=settings.svc_max_retries,
            backoff_ms=settings.svc_retry_backoff_ms,
        )

    def delay_for(self, retry_number: int) -> float:
        # First retry waits the base backoff; every following one doubles it.
        return (self.backoff_ms / 1000.0) * (2 ** (retry_number - 1))


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy,
    retryable: Callable[[Exception], bool] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "call",
) -> Any:
    # Each attempt gets the hard timeout; CancelledError is never swallowed.
    retryable = retryable or _default_retryable
    retries = 0
    while True:
        try:
            return await asyncio.wait_for(func(), timeout=policy.timeout_ms / 1000.0)
        except Exception as exc:  # noqa: BLE001 - caller decides on non-transient failures
            if retries >= max(policy.max_retries, 0) or not retryable(exc):
                raise
            retries += 1
            increment_counter(f"service_call_retries_total.{label}")
            delay = policy.delay_for(retries)
            logger.info(
                "service_call_retry name=%s retry=%s delay_s=%.3f error=%s",
                label,
                retries,
                delay,
                type(exc).__name__,
            )
            await sleep(delay)


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int
    open_seconds: float

    @classmethod
    def from_settings(cls, settings: Settings) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=settings.cb_failure_threshold,
            open_seconds=settings.cb_open_seconds,
        )


@dataclass
class CircuitState:
    consecutive_failures: int = 0
    last_failure_at: float | None = None
    is_open: bool = False


class CircuitBreaker:
    """Process-local breaker for one downstream service.

    There is no half-open state: once the cooldown has elapsed the next call is
    let through and its outcome either closes the circuit or re-arms it.
    Methods never await, so interleaved coroutines cannot lose updates.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig,
        time_source: Callable[[], float] | None = None,
        on_transition: Callable[[str, bool], None] | None = None,
    ) -> None:
        self._name = name
        self._config = config
        self._time = time_source or time.monotonic
        self._on_transition = on_transition
        self._state = CircuitState()

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        return CircuitState(
            consecutive_failures=self._state.consecutive_failures,
            last_failure_at=self._state.last_failure_at,
            is_open=self._state.is_open,
        )

    def _set_open(self, is_open: bool) -> None:
        if self._state.is_open == is_open:
            return
        self._state.is_open = is_open
        if is_open:
            logger.warning(
                "circuit_breaker_opened name=%s failures=%s",
                self._name,
                self._state.consecutive_failures,
            )
            increment_counter("circuit_breaker_open_total")
        else:
            logger.info("circuit_breaker_closed name=%s", self._name)
        increment_counter(f"circuit_breaker_transition_total.{self._name}.{'open' if is_open else 'closed'}")
        set_gauge(f"circuit_breaker_state.{self._name}", 1.0 if is_open else 0.0)
        if self._on_transition is not None:
            self._on_transition(self._name, is_open)

    def before_call(self) -> None:
        # Reject locally while open and still inside the cooldown window.
        state = self._state
        if not state.is_open:
            return
        elapsed = self._time() - (state.last_failure_at or 0.0)
        if elapsed < self._config.open_seconds:
            increment_counter(f"circuit_breaker_rejected_total.{self._name}")
            raise CircuitOpenError(self._name)

    def record_success(self) -> None:
        self._state.consecutive_failures = 0
        self._set_open(False)

    def record_failure(self) -> None:
        self._state.consecutive_failures += 1
        self._state.last_failure_at = self._time()
        if self._state.consecutive_failures >= self._config.failure_threshold:
            self._set_open(True)

    def describe(self) -> str:
        if not self._state.is_open:
            return "closed"
        elapsed = self._time() - (self._state.last_failure_at or 0.0)
        return "open" if elapsed < self._config.open_seconds else "cooldown_elapsed"


class CircuitBreakerRegistry:
    # One breaker per downstream service name for the lifetime of the process.

    def __init__(
        self,
        config: CircuitBreakerConfig,
        *,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._time = time_source
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, config=self._config, time_source=self._time)
            self._breakers[name] = breaker
        return breaker

    def snapshot(self) -> dict[str, str]:
        return {name: breaker.describe() for name, breaker in sorted(self._breakers.items())}

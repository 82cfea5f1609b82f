from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SideEffectOutcome:
    step: str
    ok: bool
    error: str | None = None


@dataclass
class SideEffectChain:
    """Ordered best-effort follow-ups to a committed local mutation.

    Each step runs on its own; a failing step is logged with the chain name and
    correlation context so it can be replayed by hand, and later steps still run.
    Steps must be safe to repeat.
    """

    name: str
    context: dict[str, Any] = field(default_factory=dict)
    _steps: list[tuple[str, Callable[[], Awaitable[Any]]]] = field(default_factory=list, init=False, repr=False)

    def add(self, step: str, action: Callable[[], Awaitable[Any]]) -> "SideEffectChain":
        self._steps.append((step, action))
        return self

    async def run(self) -> list[SideEffectOutcome]:
        outcomes: list[SideEffectOutcome] = []
        for step, action in self._steps:
            try:
                await action()
            except Exception as exc:  # noqa: BLE001 - soft side effects never fail the request
                logger.error(
                    "side_effect_failed chain=%s step=%s context=%s error=%s",
                    self.name,
                    step,
                    self.context,
                    type(exc).__name__,
                )
                outcomes.append(SideEffectOutcome(step=step, ok=False, error=type(exc).__name__))
                continue
            outcomes.append(SideEffectOutcome(step=step, ok=True))
        return outcomes

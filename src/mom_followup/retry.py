"""Bounded exponential backoff shared by the dispatcher and provider handlers.

A call moves through ``ATTEMPTING -> (WAITING -> ATTEMPTING)* -> SUCCESS`` or
ends in ``TERMINAL_FAILURE``. Waiting goes through an injected ``sleep``
coroutine so callers can plug in a virtual clock.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, TypeVar

T = TypeVar("T")
SleepFn = Callable[[float], Awaitable[None]]

LOGGER = logging.getLogger("mom_followup.retry")


class RetryPhase(str, Enum):
    ATTEMPTING = "attempting"
    WAITING = "waiting"
    SUCCESS = "success"
    TERMINAL_FAILURE = "terminal_failure"


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts to make and how long to wait between them."""

    max_attempts: int = 5
    initial_delay: float = 1.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")


@dataclass
class RetryState:
    """Per-call bookkeeping. Never shared between calls.

    ``delay`` starts as ``None`` and is seeded from the policy on first use,
    so a caller can create the state before knowing which retrier runs it.
    """

    delay: Optional[float] = None
    attempt: int = 0
    phase: RetryPhase = RetryPhase.ATTEMPTING
    last_error: Optional[BaseException] = None
    waits: List[float] = field(default_factory=list)

    @property
    def attempts_made(self) -> int:
        return self.attempt + 1

    @property
    def waited(self) -> float:
        return sum(self.waits)


class RetriesExhausted(Exception):
    """Every attempt failed with a retryable error."""

    def __init__(self, state: RetryState):
        self.state = state
        self.last_error = state.last_error
        super().__init__(f"call failed after {state.attempts_made} attempts: {state.last_error}")


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _retryable_attr(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", False))


class Retrier:
    """Drive an attempt coroutine through the backoff state machine."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        sleep: Optional[SleepFn] = None,
        is_retryable: Callable[[BaseException], bool] = _retryable_attr,
        logger: Optional[logging.Logger] = None,
        label: str = "call",
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep
        self._is_retryable = is_retryable
        self._logger = logger or LOGGER
        self._label = label

    async def run(
        self,
        attempt_fn: Callable[[], Awaitable[T]],
        *,
        state: Optional[RetryState] = None,
    ) -> T:
        """Run ``attempt_fn`` until it succeeds, fails terminally, or retries run out.

        Non-retryable exceptions propagate unchanged. Exhaustion raises
        :class:`RetriesExhausted` chained to the last error.
        """
        state = state or RetryState()
        if state.delay is None:
            state.delay = self.policy.initial_delay
        last_index = self.policy.max_attempts - 1
        while True:
            state.phase = RetryPhase.ATTEMPTING
            self._logger.debug(
                "%s attempt %s/%s",
                self._label,
                state.attempts_made,
                self.policy.max_attempts,
            )
            try:
                value = await attempt_fn()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                state.last_error = exc
                if not self._is_retryable(exc):
                    state.phase = RetryPhase.TERMINAL_FAILURE
                    raise
                self._logger.warning(
                    "%s failed: %s (retryable=True, attempt=%s/%s)",
                    self._label,
                    exc,
                    state.attempts_made,
                    self.policy.max_attempts,
                )
                if state.attempt >= last_index:
                    state.phase = RetryPhase.TERMINAL_FAILURE
                    self._logger.error("%s exhausted %s attempts", self._label, self.policy.max_attempts)
                    raise RetriesExhausted(state) from exc

                state.phase = RetryPhase.WAITING
                delay = state.delay
                await self._sleep(delay)
                state.waits.append(delay)
                state.delay = delay * self.policy.multiplier
                state.attempt += 1
                continue

            state.phase = RetryPhase.SUCCESS
            return value

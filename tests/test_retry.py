"""Tests for the backoff state machine."""

import asyncio

import pytest

from mom_followup.retry import (
    Retrier,
    RetriesExhausted,
    RetryPhase,
    RetryPolicy,
    RetryState,
    is_retryable_status,
)


class _Flaky(Exception):
    retryable = True


class _Fatal(Exception):
    retryable = False


def _script(outcomes):
    calls = []

    async def attempt():
        calls.append(len(calls))
        outcome = outcomes[len(calls) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    return attempt, calls


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [0, 1, 2, 3, 4])
async def test_succeeds_after_retryable_failures(recording_sleep, failures):
    """Waits equal the index of the successful attempt minus one."""
    attempt, calls = _script([_Flaky("busy")] * failures + ["ok"])
    state = RetryState(delay=1.0)

    result = await Retrier(sleep=recording_sleep).run(attempt, state=state)

    assert result == "ok"
    assert len(calls) == failures + 1
    assert len(recording_sleep.calls) == failures
    assert recording_sleep.calls == [1.0, 2.0, 4.0, 8.0][:failures]
    assert state.phase is RetryPhase.SUCCESS


@pytest.mark.asyncio
async def test_exhausts_after_five_attempts(recording_sleep):
    attempt, calls = _script([_Flaky(f"busy {n}") for n in range(5)])
    state = RetryState(delay=1.0)

    with pytest.raises(RetriesExhausted) as exc:
        await Retrier(sleep=recording_sleep).run(attempt, state=state)

    assert len(calls) == 5
    assert recording_sleep.calls == [1.0, 2.0, 4.0, 8.0]
    assert str(exc.value.last_error) == "busy 4"
    assert isinstance(exc.value.__cause__, _Flaky)
    assert state.phase is RetryPhase.TERMINAL_FAILURE
    assert state.attempts_made == 5


@pytest.mark.asyncio
async def test_non_retryable_error_fails_immediately(recording_sleep):
    attempt, calls = _script([_Fatal("denied"), "never"])

    with pytest.raises(_Fatal):
        await Retrier(sleep=recording_sleep).run(attempt)

    assert len(calls) == 1
    assert recording_sleep.calls == []


@pytest.mark.asyncio
async def test_plain_exceptions_are_terminal(recording_sleep):
    attempt, calls = _script([KeyError("bug")])

    with pytest.raises(KeyError):
        await Retrier(sleep=recording_sleep).run(attempt)

    assert recording_sleep.calls == []


@pytest.mark.asyncio
async def test_cancellation_is_never_retried(recording_sleep):
    attempt, calls = _script([asyncio.CancelledError()])

    with pytest.raises(asyncio.CancelledError):
        await Retrier(sleep=recording_sleep).run(attempt)

    assert len(calls) == 1
    assert recording_sleep.calls == []


@pytest.mark.asyncio
async def test_custom_policy_and_classifier(recording_sleep):
    attempt, calls = _script([ValueError("a"), ValueError("b"), ValueError("c")])
    retrier = Retrier(
        RetryPolicy(max_attempts=3, initial_delay=0.5, multiplier=3.0),
        sleep=recording_sleep,
        is_retryable=lambda exc: isinstance(exc, ValueError),
    )

    with pytest.raises(RetriesExhausted):
        await retrier.run(attempt)

    assert recording_sleep.calls == [0.5, 1.5]


@pytest.mark.asyncio
async def test_each_call_gets_fresh_state(recording_sleep):
    retrier = Retrier(sleep=recording_sleep)
    first, _ = _script([_Flaky("x"), "one"])
    second, _ = _script([_Flaky("y"), "two"])

    assert await retrier.run(first) == "one"
    assert await retrier.run(second) == "two"
    assert recording_sleep.calls == [1.0, 1.0]


def test_policy_rejects_zero_attempts():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


@pytest.mark.parametrize(
    "status, expected",
    [(429, True), (500, True), (503, True), (400, False), (401, False), (403, False), (404, False)],
)
def test_is_retryable_status(status, expected):
    assert is_retryable_status(status) is expected


@pytest.mark.asyncio
async def test_unseeded_state_takes_policy_delay(recording_sleep):
    attempt, _ = _script([_Flaky("busy"), _Flaky("busy"), "ok"])
    state = RetryState()

    result = await Retrier(RetryPolicy(initial_delay=0.5), sleep=recording_sleep).run(attempt, state=state)

    assert result == "ok"
    assert state.waits == [0.5, 1.0]
    assert state.waited == 1.5
    assert state.attempts_made == 3

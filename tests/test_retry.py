from __future__ import annotations

import pytest

from vyllo.errors import InvalidRequestError, RateLimitedError, UnavailableError
from vyllo.retry import RetryingInvoker, RetryPolicy, invoke


class Flaky:
    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.result = result
        self.attempts = 0

    async def __call__(self):
        self.attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


async def test_returns_first_success_without_sleeping(sleep):
    op = Flaky([])
    assert await invoke(op, sleep=sleep) == "ok"
    assert op.attempts == 1
    assert sleep.delays == []


async def test_retries_rate_limits_then_succeeds(sleep):
    op = Flaky([RateLimitedError("429"), RateLimitedError("429")])
    result = await invoke(op, RetryPolicy(2.0, 1.0, 3), sleep=sleep, rand=lambda a, b: 0.25)
    assert result == "ok"
    assert op.attempts == 3
    assert sleep.delays == [2.25, 4.25]


async def test_gives_up_after_cap(sleep):
    op = Flaky([RateLimitedError("429")] * 10)
    with pytest.raises(RateLimitedError):
        await invoke(op, RetryPolicy(2.0, 1.0, 3), sleep=sleep, rand=lambda a, b: b)
    assert op.attempts == 4
    assert sleep.delays == [3.0, 5.0, 9.0]


async def test_delays_stay_within_jitter_bounds(sleep):
    policy = RetryPolicy(2.0, 1.0, 3)
    op = Flaky([RateLimitedError("429")] * 3)
    await invoke(op, policy, sleep=sleep)
    for k, delay in enumerate(sleep.delays):
        assert 2.0 * 2 ** k <= delay <= 2.0 * 2 ** k + 1.0


@pytest.mark.parametrize("error", [InvalidRequestError("bad"), UnavailableError("down"), RuntimeError("boom")])
async def test_other_errors_are_not_retried(sleep, error):
    op = Flaky([error])
    with pytest.raises(type(error)):
        await invoke(op, sleep=sleep)
    assert op.attempts == 1
    assert sleep.delays == []


async def test_zero_retries_means_single_attempt(sleep):
    op = Flaky([RateLimitedError("429")])
    with pytest.raises(RateLimitedError):
        await invoke(op, RetryPolicy(max_retries=0), sleep=sleep)
    assert op.attempts == 1


async def test_invoker_binds_policy_and_clock(sleep):
    invoker = RetryingInvoker(RetryPolicy(1.0, 0.0, 1), sleep=sleep, rand=lambda a, b: 0.0)
    op = Flaky([RateLimitedError("429")])
    assert await invoker.invoke(op, label="test") == "ok"
    assert sleep.delays == [1.0]

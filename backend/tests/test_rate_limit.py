from __future__ import annotations

import pytest

from vidvault.core.rate_limit import AttemptLimiter


@pytest.mark.asyncio
async def test_window_opens_on_first_attempt_and_decays() -> None:
    now = {"t": 1_000_015.0}
    limiter = AttemptLimiter(max_attempts=2, decay_seconds=60, clock=lambda: now["t"])

    first = await limiter.attempt("share-email:1.2.3.4")
    now["t"] += 20
    second = await limiter.attempt("share-email:1.2.3.4")
    blocked = await limiter.attempt("share-email:1.2.3.4")

    assert [first.allowed, second.allowed, blocked.allowed] == [True, True, False]
    assert first.remaining == 1
    assert second.remaining == 0
    assert blocked.retry_after == 40

    # Other keys have their own budget.
    assert (await limiter.attempt("share-email:5.6.7.8")).allowed

    now["t"] += 39
    assert not (await limiter.attempt("share-email:1.2.3.4")).allowed
    now["t"] += 1
    reopened = await limiter.attempt("share-email:1.2.3.4")
    assert reopened.allowed
    assert reopened.retry_after == 60


@pytest.mark.asyncio
async def test_clear_resets_a_key() -> None:
    limiter = AttemptLimiter(max_attempts=1, decay_seconds=60, clock=lambda: 500.0)

    assert (await limiter.attempt("k")).allowed
    assert not (await limiter.attempt("k")).allowed
    await limiter.clear("k")
    assert (await limiter.attempt("k")).allowed

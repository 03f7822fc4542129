import asyncio
import time

import pytest

from flareroute.poller import PollOutcome, wait_for_absence


def countdown(present_for: int):
    calls = {"n": 0}

    async def still_exists() -> bool:
        calls["n"] += 1
        return calls["n"] <= present_for

    return still_exists, calls


async def test_absent_resource_returns_without_sleeping():
    check, calls = countdown(0)

    started = time.monotonic()
    outcome = await wait_for_absence(check, interval=5, timeout=60)

    assert outcome is PollOutcome.OK
    assert calls["n"] == 1
    assert time.monotonic() - started < 1


async def test_waits_until_resource_disappears():
    check, calls = countdown(3)

    outcome = await wait_for_absence(check, interval=0.01, timeout=5)

    assert outcome is PollOutcome.OK
    assert calls["n"] == 4


async def test_reports_timeout_instead_of_raising():
    async def forever() -> bool:
        return True

    started = time.monotonic()
    outcome = await wait_for_absence(forever, interval=0.02, timeout=0.1)

    assert outcome is PollOutcome.TIMED_OUT
    assert 0.1 <= time.monotonic() - started < 1


async def test_cancellation_interrupts_a_long_interval():
    async def forever() -> bool:
        return True

    task = asyncio.create_task(wait_for_absence(forever, interval=30, timeout=60))
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=1)


async def test_predicate_errors_propagate():
    async def broken() -> bool:
        raise RuntimeError("lookup failed")

    with pytest.raises(RuntimeError, match="lookup failed"):
        await wait_for_absence(broken, interval=0.01, timeout=1)

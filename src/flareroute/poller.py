import asyncio
from enum import StrEnum, auto

from loguru import logger

from flareroute.typealias import ExistenceCheck


class PollOutcome(StrEnum):
    OK = auto()
    TIMED_OUT = auto()


async def wait_for_absence(
        still_exists: ExistenceCheck,
        interval: float,
        timeout: float,
        what: str = "resource") -> PollOutcome:
    """
    Re-evaluate `still_exists` every `interval` seconds until it answers False
    or `timeout` seconds have passed.

    The first check happens immediately, so an already-absent resource returns
    OK without sleeping. Running out of time is reported, not raised; whether
    that is fatal is the caller's call. Cancelling the awaiting task stops the
    wait at the current sleep. Exceptions from the predicate propagate.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    attempt = 0

    while True:
        attempt += 1
        if not await still_exists():
            logger.debug(f"{what} is gone after {attempt} check(s)")
            return PollOutcome.OK

        remaining = deadline - loop.time()
        if remaining <= 0:
            logger.debug(f"{what} still present after {attempt} check(s), giving up")
            return PollOutcome.TIMED_OUT

        logger.debug(f"{what} still present, next check in {min(interval, remaining):.1f}s")
        await asyncio.sleep(min(interval, remaining))

import asyncio
import signal
from collections.abc import Coroutine
from typing import Any

from loguru import logger

_stop_signals = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


class LifecycleRunner:
    """
    Runs one provisioning coroutine as a task and turns the first stop signal
    into a single cancellation of it. The coroutine's own cleanup runs inside
    that cancellation, so later signals are logged and otherwise ignored
    instead of cutting teardown short.
    """

    def __init__(self, signals: tuple[signal.Signals, ...] = _stop_signals):
        self.signals = signals
        self.stop_requested = False
        self._task: asyncio.Task | None = None

    def request_stop(self, signum: int | None = None) -> None:
        name = signal.Signals(signum).name if signum else "stop request"
        if self.stop_requested:
            logger.warning(f"{name} received, teardown is already in progress")
            return
        self.stop_requested = True
        logger.info(f"{name} received, stopping the tunnel")
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _install(self, loop: asyncio.AbstractEventLoop) -> list[signal.Signals]:
        installed = []
        for sig in self.signals:
            try:
                loop.add_signal_handler(sig, self.request_stop, sig)
            except (NotImplementedError, RuntimeError, ValueError):
                # No loop signal support on this platform, KeyboardInterrupt still cancels asyncio.run
                logger.debug(f"Cannot handle {sig.name} here")
                continue
            installed.append(sig)
        return installed

    async def run(self, work: Coroutine[Any, Any, None]) -> bool:
        """
        Await `work` until it finishes or a stop signal cancels it.
        Returns True when it stopped because of a signal. Errors propagate.
        """
        loop = asyncio.get_running_loop()
        self._task = asyncio.create_task(work)
        installed = self._install(loop)
        try:
            await self._task
        except asyncio.CancelledError:
            if not self.stop_requested:
                raise
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                # We were cancelled ourselves, not just the work task
                raise
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
        return self.stop_requested

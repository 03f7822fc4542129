import asyncio
import contextlib
import os
from collections.abc import AsyncIterable, AsyncIterator, Callable
from dataclasses import dataclass, field
from enum import StrEnum, auto
from typing import AsyncContextManager, NamedTuple

import aiostream
from beartype.door import die_if_unbearable
from loguru import logger

from flareroute import consts


class OutputChannel(StrEnum):
    STDOUT = auto()
    STDERR = auto()


class ProcessOutput(NamedTuple):
    data: bytes
    channel: OutputChannel

    def text(self) -> str:
        return self.data.decode(errors="replace")


type OutputSink = Callable[[ProcessOutput], None]


def log_output(output: ProcessOutput) -> None:
    logger.opt(raw=True).debug(output.text())


@dataclass(frozen=True)
class RunningProcess(AsyncIterable[ProcessOutput]):
    """
    A handle to a live process. Iterating yields stdout and stderr lines merged.
    """
    process: asyncio.subprocess.Process
    process_streams: AsyncIterator[ProcessOutput]

    def __aiter__(self) -> AsyncIterator[ProcessOutput]:
        return self.process_streams

    async def drain_wait(self, sink: OutputSink = log_output) -> int:
        """Drains all output until the process completes."""
        async for output in self:
            sink(output)
        return await self.process.wait()

    @property
    def returncode(self) -> int | None:
        return self.process.returncode


@dataclass
class ProcessExecutor(AsyncContextManager[RunningProcess]):
    """
    Manages the lifecycle of a subprocess and its output streams.
    Leaving the context (normally, on error or on cancellation) terminates the
    process, and kills it if it ignores SIGTERM for `terminate_grace` seconds.
    """
    binary_path: str | os.PathLike[str]
    cmd_args: tuple[str, ...]
    terminate_grace: float = consts.terminate_grace

    process: asyncio.subprocess.Process | None = None
    stack: contextlib.AsyncExitStack = field(default_factory=contextlib.AsyncExitStack, init=False)

    async def __aenter__(self) -> RunningProcess:
        if self.process is not None:
            raise RuntimeError("Process already started, make a new executor")
        die_if_unbearable(self.cmd_args, tuple[str, ...])

        logger.debug(f"Spawning {self.binary_path} with args: {self.cmd_args}")
        self.process = await asyncio.create_subprocess_exec(
            self.binary_path, *self.cmd_args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            stdin=asyncio.subprocess.DEVNULL,
        )

        merged = self._build_pipeline(self.process)
        active_iterator = await self.stack.enter_async_context(merged.stream())
        return RunningProcess(process=self.process, process_streams=active_iterator)

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        # 1. Stop the readers
        await self.stack.aclose()

        # 2. Stop the process
        process = self.process
        if process is None or process.returncode is not None:
            return

        logger.debug(f"Terminating {self.binary_path} (pid {process.pid})")
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=self.terminate_grace)
        except ProcessLookupError:
            pass
        except asyncio.TimeoutError:
            logger.warning(f"{self.binary_path} ignored SIGTERM, killing it")
            process.kill()
            await process.wait()

    @staticmethod
    def _build_pipeline(process: asyncio.subprocess.Process) -> aiostream.core.Stream:
        """Constructs the merged output stream without starting it."""

        def channel_tagger(channel: OutputChannel):
            def transformer(chunk: bytes) -> ProcessOutput:
                return ProcessOutput(chunk, channel)

            return transformer

        sources: list[aiostream.core.Stream] = []
        if process.stdout:
            sources.append(aiostream.stream.map(process.stdout, channel_tagger(OutputChannel.STDOUT)))
        if process.stderr:
            sources.append(aiostream.stream.map(process.stderr, channel_tagger(OutputChannel.STDERR)))

        return aiostream.stream.merge(*sources)

    async def run_to_completion(self, sink: OutputSink = log_output) -> int:
        async with self as running:
            return await running.drain_wait(sink)

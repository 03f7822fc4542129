import asyncio
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from flareroute.binary.process import ProcessExecutor
from flareroute.errors import PreconditionMissing


@dataclass(frozen=True)
class TextResult:
    stdout: str
    stderr: str
    return_code: int


def locate_binary(name: str, explicit: str | os.PathLike[str] | None = None) -> Path:
    """
    Resolve a binary from an explicit path, falling back to PATH.
    """
    candidate = explicit or name
    if found := shutil.which(candidate):
        return Path(found)
    raise PreconditionMissing(
        f"'{candidate}' was not found or is not executable. Install {name} or pass its path explicitly"
    )


class BinaryWrapper:

    def __init__(self, binary: str | os.PathLike[str]):
        self.binary = binary

    async def execute_await_response(self, *args: str) -> TextResult:
        logger.debug(f"Running {self.binary} {' '.join(args)}")
        proc = await asyncio.create_subprocess_exec(
            self.binary, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )

        # communicate() handles the memory buffer reading for us
        stdout_bytes, stderr_bytes = await proc.communicate()

        return TextResult(
            stdout_bytes.decode(errors="replace").strip(),
            stderr_bytes.decode(errors="replace").strip(),
            proc.returncode or 0,
        )

    def execute_streaming_response(self, *args: str) -> ProcessExecutor:
        return ProcessExecutor(self.binary, args)

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from loguru import logger
from platformdirs import user_log_dir
from rich.logging import RichHandler

from flareroute import BOOT_FORMAT
from flareroute.consts import APP_NAME, AUTHOR

_file_format = "{time:YYYY-MM-DD HH:mm:ss} - {name} - {level} - {message}"


def log_file_path() -> Path:
    log_dir = Path(user_log_dir(APP_NAME, AUTHOR))
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / "tunnel.log"


@contextmanager
def isolated_logging(level: int = logging.INFO, log_file: Path | None = None) -> Iterator[None]:
    """
    Swap the boot sink for a rich console sink at `level` plus a rotating
    DEBUG file sink. The boot sink comes back on exit.
    """
    logger.remove()
    console_handler = RichHandler(
        level=level,
        markup=False,
        show_path=False,
        rich_tracebacks=True,
    )
    sink_ids = [
        logger.add(console_handler, format="{message}", level=level),
        logger.add(
            log_file or log_file_path(),
            format=_file_format,
            level=logging.DEBUG,
            rotation="5 MB",
            retention=3,
            encoding="utf-8",
        ),
    ]
    try:
        yield
    finally:
        for sink_id in sink_ids:
            logger.remove(sink_id)
        logger.add(sys.stderr, format=BOOT_FORMAT, level=logging.INFO)

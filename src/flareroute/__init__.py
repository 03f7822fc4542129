import logging
import sys
import warnings

from loguru import logger

# Supress Pydantic V1 deprecation warning in cloudflare
warnings.filterwarnings(
    "ignore",
    category=UserWarning,
    module="cloudflare._compat",
)

# 1. Remove the default Loguru handler (which is set to DEBUG by default)
logger.remove()

# 2. "Boot" handler until the CLI installs its own sinks: simple format, INFO only
BOOT_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{message}</level>"
logger.add(sys.stderr, format=BOOT_FORMAT, level=logging.INFO)

# Async pagination fix, needed until the SDK stops requesting pages past the end.
import flareroute.sdk.monkey_patch  # noqa: E402,F401

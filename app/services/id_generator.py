import math
import os
import time
from typing import Callable, Optional

import config
from logger_config import setup_logger

logger = setup_logger()

# Random bytes drawn per ID before hex encoding and truncation
ENTROPY_BYTES = 16


def generate_file_id(
    length: Optional[int] = None,
    random_source: Callable[[int], bytes] = os.urandom,
) -> str:
    """Generate a short, URL-safe file ID.

    The ID is the hex encoding of ``ENTROPY_BYTES`` strong random bytes,
    truncated to ``length`` characters (``config.ID_LENGTH`` by default).
    Hex digits never include ``config.ID_SEPARATOR``.

    If the random source is unavailable the upload must still go through, so
    the current time in nanoseconds is returned instead. Those IDs are only
    unique as long as no two uploads land on the same nanosecond.
    """
    if length is None:
        length = config.ID_LENGTH

    num_bytes = max(ENTROPY_BYTES, math.ceil(length / 2))
    try:
        random_bytes = random_source(num_bytes)
    except (OSError, NotImplementedError) as e:
        fallback_id = str(time.time_ns())
        logger.warning(f"Random source unavailable ({e}), falling back to timestamp ID {fallback_id}")
        return fallback_id

    return random_bytes.hex()[:length]

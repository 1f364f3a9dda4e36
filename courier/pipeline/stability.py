"""Write-completion gate: a file is stable once its size stops changing."""

import asyncio
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 1.0
DEFAULT_MAX_SAMPLES = 10


def _file_size(path: Path) -> int:
    return path.stat().st_size


async def is_stable(
    path: Path,
    interval: float = DEFAULT_INTERVAL,
    max_samples: int = DEFAULT_MAX_SAMPLES,
) -> bool:
    """Sample the size of ``path`` until two consecutive samples agree.

    Returns False when ``max_samples`` samples were taken and no two
    neighbours matched. ``OSError`` from ``stat`` (file vanished) propagates.
    """
    previous: int | None = None
    for sample in range(max_samples):
        size = _file_size(path)
        if size == previous:
            logger.debug("%s stable at %d bytes after %d samples", path.name, size, sample + 1)
            return True
        previous = size
        if sample < max_samples - 1:
            await asyncio.sleep(interval)

    logger.debug("%s still changing after %d samples", path.name, max_samples)
    return False

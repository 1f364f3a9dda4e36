"""Content digests used to prove a staged copy matches its source."""

import asyncio
import hashlib
import logging
from pathlib import Path

from courier.pipeline.errors import PermanentIOError, TransientIOError, is_transient

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 65536  # 64 KB chunks for hashing


def compute_file_hash(file_path: str | Path) -> str:
    """Compute the MD5 hex digest of a file's contents."""
    md5 = hashlib.md5(usedforsecurity=False)
    with open(file_path, "rb") as f:
        while chunk := f.read(HASH_CHUNK_SIZE):
            md5.update(chunk)
    return md5.hexdigest()


async def hash_file(path: Path, *, attempts: int = 5, delay: float = 1.0) -> str:
    """Hash ``path`` off the event loop, retrying while the file is locked.

    Each attempt rereads the whole file. At most ``attempts`` reads are made.

    Raises:
        TransientIOError: The file was still locked after the last attempt.
        PermanentIOError: Any other ``OSError``; not retried.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.to_thread(compute_file_hash, path)
        except OSError as exc:
            if not is_transient(exc):
                raise PermanentIOError(path, exc) from exc
            if attempt == attempts:
                raise TransientIOError(path, attempts, exc) from exc
            logger.warning(
                "Hash of %s failed (attempt %d/%d): %s, retrying",
                path.name,
                attempt,
                attempts,
                exc,
            )
            await asyncio.sleep(delay)

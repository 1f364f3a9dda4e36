"""Error taxonomy for the transfer pipeline.

File-level errors never escape ``TransferEngine.run``: they are turned into a
terminal ``JobState`` plus a status event. ``WatcherFailure`` belongs to the
monitor, not to any single file.
"""

import errno
from pathlib import Path

# EBUSY/EAGAIN on POSIX; sharing and lock violations on Windows.
TRANSIENT_ERRNOS = frozenset({errno.EBUSY, errno.EAGAIN})
TRANSIENT_WINERRORS = frozenset({32, 33})


class CourierError(Exception):
    """Base class for all pipeline errors."""


class UnstableFileError(CourierError):
    """The file kept changing size for the whole stability budget."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"File {path} is not stable")
        self.path = path


class TransientIOError(CourierError):
    """A locked or busy file that outlived its retry budget."""

    def __init__(self, path: Path, attempts: int, cause: OSError) -> None:
        super().__init__(f"{path} still busy after {attempts} attempts: {cause}")
        self.path = path
        self.attempts = attempts


class PermanentIOError(CourierError):
    """A non-retryable filesystem error."""

    def __init__(self, path: Path, cause: OSError) -> None:
        super().__init__(f"{path}: {cause}")
        self.path = path


class IntegrityMismatchError(CourierError):
    """Source and staged copy produced different digests."""

    def __init__(self, file_name: str, source_digest: str, staged_digest: str) -> None:
        super().__init__(
            f"Hashed File mismatch: {file_name} ({source_digest} != {staged_digest})"
        )
        self.source_digest = source_digest
        self.staged_digest = staged_digest


class NotificationFailure(CourierError):
    """Downstream registration or ingestion did not succeed."""


class WatcherFailure(CourierError):
    """The watch subsystem for a root stopped unexpectedly."""

    def __init__(self, root: Path, reason: str) -> None:
        super().__init__(f"Watcher for {root} died: {reason}")
        self.root = root
        self.reason = reason


class FilenameFormatError(CourierError, ValueError):
    """A report filename does not carry the expected delimited fields."""


def is_transient(exc: BaseException) -> bool:
    """Return True if ``exc`` looks like a temporarily locked file."""
    if not isinstance(exc, OSError):
        return False
    if exc.errno in TRANSIENT_ERRNOS:
        return True
    return getattr(exc, "winerror", None) in TRANSIENT_WINERRORS

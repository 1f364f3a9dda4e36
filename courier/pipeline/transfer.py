"""Core transfer logic: stabilize, stage, verify, place, notify, clean up.

A job walks the ``JobState`` machine one step at a time. The source file is
only deleted after the verified copy has been renamed into place, so every
earlier failure leaves the source untouched.
"""

import asyncio
import logging
import os
import shutil
from collections.abc import Callable
from datetime import date
from pathlib import Path

from courier.pipeline.errors import (
    CourierError,
    IntegrityMismatchError,
    NotificationFailure,
    PermanentIOError,
    TransientIOError,
    UnstableFileError,
    is_transient,
)
from courier.pipeline.events import StatusReporter
from courier.pipeline.finalizers import Finalizer
from courier.pipeline.integrity import hash_file
from courier.pipeline.stability import is_stable
from courier.schemas.pipeline import JobState, NotifyOutcome, PipelinePolicy, TransferJob

logger = logging.getLogger(__name__)

STAGING_SUFFIX = ".tmp"


def partition_path(destination_root: Path, day: date) -> Path:
    """Return ``destination_root/YYYY/MM/DD`` for ``day``."""
    return destination_root / f"{day:%Y}" / f"{day:%m}" / f"{day:%d}"


def ensure_partition(destination_root: Path, day: date) -> list[tuple[Path, bool]]:
    """Create the year, month and day directories under ``destination_root``.

    Returns each directory with a flag telling whether it was created now.
    Existing directories are not an error.
    """
    results = []
    current = destination_root
    for segment in (f"{day:%Y}", f"{day:%m}", f"{day:%d}"):
        current = current / segment
        created = not current.is_dir()
        if created:
            current.mkdir(parents=True, exist_ok=True)
        results.append((current, created))
    return results


def copy_file(source: Path, target: Path) -> None:
    shutil.copy2(source, target)


def remove_file(path: Path) -> None:
    path.unlink(missing_ok=True)


def _discard(path: Path) -> None:
    """Remove a staging artifact if present."""
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove staging file %s: %s", path, exc)


class TransferEngine:
    """Run TransferJobs for one root pair.

    Usage::

        engine = TransferEngine(finalizer=finalizer, reporter=reporter)
        job = await engine.run(job)
        assert job.state.is_terminal
    """

    def __init__(
        self,
        *,
        finalizer: Finalizer,
        reporter: StatusReporter,
        policy: PipelinePolicy | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._finalizer = finalizer
        self._reporter = reporter
        self._policy = policy or PipelinePolicy()
        self._today = today

    async def run(self, job: TransferJob) -> TransferJob:
        """Drive ``job`` to a terminal state. File-level errors never escape."""
        try:
            await self._process(job)
        except UnstableFileError as exc:
            self._terminate(job, JobState.DROPPED_UNSTABLE, exc)
        except IntegrityMismatchError as exc:
            self._terminate(job, JobState.DROPPED_MISMATCH, exc)
        except (TransientIOError, PermanentIOError) as exc:
            self._terminate(job, JobState.FAILED_IO, exc)
        except OSError as exc:
            self._terminate(job, JobState.FAILED_IO, PermanentIOError(job.source_path, exc))
        except Exception as exc:
            logger.exception("Unexpected failure processing %s", job.file_name)
            self._terminate(job, JobState.FAILED_IO, exc)
        return job

    def _advance(self, job: TransferJob, state: JobState) -> None:
        logger.debug("%s: %s -> %s", job.file_name, job.state, state)
        job.state = state

    def _terminate(self, job: TransferJob, state: JobState, exc: BaseException) -> None:
        self._advance(job, state)
        job.error = str(exc)
        self._reporter.error(str(exc))

    async def _process(self, job: TransferJob) -> None:
        name = job.file_name
        policy = self._policy

        self._advance(job, JobState.STABILIZING)
        stable = await is_stable(
            job.source_path, policy.stability_interval, policy.stability_samples
        )
        if not stable:
            raise UnstableFileError(job.source_path)
        self._reporter.info(f"Processing {name}")

        self._advance(job, JobState.STAGING)
        day_dir = self._stage(job.destination_root)
        staged = day_dir / f"{name}{STAGING_SUFFIX}"
        final = day_dir / name

        self._advance(job, JobState.HASHING_SOURCE)
        job.source_digest = await hash_file(
            job.source_path, attempts=policy.hash_attempts, delay=policy.hash_delay
        )
        self._reporter.info(f"Created {job.source_digest} hash for {name}")

        self._advance(job, JobState.COPYING_TO_TEMP)
        await self._copy_to_staging(job.source_path, staged)

        self._advance(job, JobState.HASHING_COPY)
        try:
            job.staged_digest = await hash_file(
                staged, attempts=policy.hash_attempts, delay=policy.hash_delay
            )
        except CourierError:
            _discard(staged)
            raise
        self._reporter.info(f"Copied {name}, staged copy hash {job.staged_digest}")

        self._advance(job, JobState.COMPARING)
        if job.source_digest != job.staged_digest:
            if not policy.keep_mismatched_staging:
                _discard(staged)
            raise IntegrityMismatchError(name, job.source_digest, job.staged_digest)

        self._advance(job, JobState.FINALIZING)
        try:
            await asyncio.to_thread(os.replace, staged, final)
        except OSError as exc:
            _discard(staged)
            raise PermanentIOError(final, exc) from exc
        job.destination_path = final
        self._reporter.success(f"Copied {name} successfully")

        self._advance(job, JobState.NOTIFYING)
        outcome = await self._notify(final, name)

        self._advance(job, JobState.CLEANING_SOURCE)
        await self._clean_source(job.source_path)

        self._advance(job, JobState.DONE)
        if outcome.success:
            self._reporter.success(outcome.message)
        else:
            self._reporter.error(outcome.message)

    def _stage(self, destination_root: Path) -> Path:
        """Create today's partition, reporting each directory."""
        day_dir = destination_root
        for directory, created in ensure_partition(destination_root, self._today()):
            if created:
                self._reporter.success(f"Folder created: {directory}")
            else:
                self._reporter.info(f"Folder exists: {directory}")
            day_dir = directory
        return day_dir

    async def _copy_to_staging(self, source: Path, staged: Path) -> None:
        attempts = self._policy.copy_attempts
        for attempt in range(1, attempts + 1):
            try:
                await asyncio.to_thread(copy_file, source, staged)
                return
            except OSError as exc:
                self._reporter.error(f"Error: {exc}")
                if is_transient(exc) and attempt < attempts:
                    logger.warning("Retrying copy of %s (%d/%d)", source.name, attempt, attempts)
                    await asyncio.sleep(self._policy.copy_delay)
                    continue
                _discard(staged)
                if is_transient(exc):
                    raise TransientIOError(source, attempts, exc) from exc
                raise PermanentIOError(source, exc) from exc

    async def _clean_source(self, source: Path) -> bool:
        """Delete the archived source, retrying busy files on the copy budget.

        The archive copy is already in place, so a leftover source is only
        reported as a warning.
        """
        attempts = self._policy.copy_attempts
        for attempt in range(1, attempts + 1):
            try:
                await asyncio.to_thread(remove_file, source)
                logger.info("Removed source file %s", source)
                return True
            except OSError as exc:
                if is_transient(exc) and attempt < attempts:
                    logger.warning("Retrying removal of %s (%d/%d)", source.name, attempt, attempts)
                    await asyncio.sleep(self._policy.copy_delay)
                    continue
                self._reporter.warning(f"Archived {source.name} but could not remove source: {exc}")
                return False

    async def _notify(self, destination: Path, file_name: str) -> NotifyOutcome:
        """Call the finalizer. Failures are reported, never raised."""
        try:
            return await self._finalizer.finalize(destination, file_name)
        except NotificationFailure as exc:
            logger.warning("Notification failed for %s: %s", file_name, exc)
            return NotifyOutcome(success=False, message=f"Error: {exc}")
        except Exception as exc:
            logger.exception("Finalizer failed for %s", file_name)
            return NotifyOutcome(success=False, message=f"Error: {exc}")

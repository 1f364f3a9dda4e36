"""Per-root FIFO dispatcher: exactly one active TransferJob at a time."""

import asyncio
import logging
from collections import Counter, deque
from pathlib import Path

from courier.pipeline.transfer import TransferEngine
from courier.schemas.pipeline import JobState, PipelinePolicy, TransferJob, WatchEvent

logger = logging.getLogger(__name__)

# Recently finished jobs kept for inspection
HISTORY_SIZE = 256


class Dispatcher:
    """Serialize processing of files discovered under one root.

    ``submit`` is called from the event loop (the watcher hops threads with
    ``call_soon_threadsafe``). The first submission while idle starts a drain
    task; later ones queue behind it and are processed in discovery order,
    ``policy.cooldown`` seconds apart.
    """

    def __init__(
        self,
        engine: TransferEngine,
        destination_root: Path,
        *,
        policy: PipelinePolicy | None = None,
    ) -> None:
        self._engine = engine
        self._destination_root = destination_root
        self._policy = policy or PipelinePolicy()
        self._queue: deque[WatchEvent] = deque()
        self._active: Path | None = None
        self._task: asyncio.Task | None = None
        self._unstable_requeues: dict[Path, int] = {}
        self.completed: deque[TransferJob] = deque(maxlen=HISTORY_SIZE)
        self.totals: Counter[JobState] = Counter()

    @property
    def processing(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> list[Path]:
        return [event.path for event in self._queue]

    def submit(self, event: WatchEvent) -> None:
        """Accept a discovered file; start now if idle, otherwise queue it."""
        path = event.path
        if not path.exists():
            logger.error("File does not exist: %s", path)
            return
        if path == self._active or path in self.pending:
            logger.debug("Already scheduled: %s", path.name)
            return

        self._queue.append(event)
        if not self.processing:
            self._task = asyncio.get_running_loop().create_task(self._drain())

    def clear(self) -> None:
        """Drop queued paths. The active job, if any, runs to completion."""
        if self._queue:
            logger.info("Discarding %d queued file(s)", len(self._queue))
        self._queue.clear()

    async def join(self) -> None:
        """Wait until the queue is empty and no job is active."""
        while self._task is not None and not self._task.done():
            await asyncio.shield(self._task)

    async def _drain(self) -> None:
        while self._queue:
            event = self._queue.popleft()
            self._active = event.path
            try:
                job = await self._engine.run(
                    TransferJob(
                        source_path=event.path,
                        destination_root=self._destination_root,
                        discovered_at=event.discovered_at,
                    )
                )
            finally:
                self._active = None
            self.completed.append(job)
            self.totals[job.state] += 1
            self._maybe_requeue(job)
            await asyncio.sleep(self._policy.cooldown)

    def _maybe_requeue(self, job: TransferJob) -> None:
        if job.state != JobState.DROPPED_UNSTABLE:
            self._unstable_requeues.pop(job.source_path, None)
            return
        count = self._unstable_requeues.get(job.source_path, 0)
        if count >= self._policy.unstable_requeue_limit:
            self._unstable_requeues.pop(job.source_path, None)
            return
        self._unstable_requeues[job.source_path] = count + 1
        logger.info(
            "Requeueing unstable file %s (%d/%d)",
            job.file_name,
            count + 1,
            self._policy.unstable_requeue_limit,
        )
        self._queue.append(
            WatchEvent(
                path=job.source_path,
                extension=job.source_path.suffix.lower(),
                discovered_at=job.discovered_at,
            )
        )

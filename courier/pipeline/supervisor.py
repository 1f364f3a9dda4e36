"""Control surface and self-healing monitor for all pipelines.

Each pipeline gets a monitor task that checks its running flag every
``policy.monitor_interval`` seconds. A pipeline found not running triggers a
restart of every pipeline: stop all, wait ``policy.restart_delay``, start
whichever is not running.
"""

import asyncio
import logging

from courier.pipeline.events import StatusReporter
from courier.pipeline.service import Pipeline
from courier.schemas.pipeline import PipelinePolicy, StatusEvent

logger = logging.getLogger(__name__)


class Supervisor:
    """Start, stop, ping and monitor a set of pipelines.

    All methods must be called from the event loop thread.
    """

    def __init__(
        self,
        pipelines: list[Pipeline],
        reporter: StatusReporter,
        *,
        policy: PipelinePolicy | None = None,
    ) -> None:
        self.pipelines = pipelines
        self._reporter = reporter
        self._policy = policy or PipelinePolicy()
        self._monitors: dict[str, asyncio.Task] = {}
        self._restart_task: asyncio.Task | None = None

    @property
    def restarting(self) -> bool:
        return self._restart_task is not None and not self._restart_task.done()

    def start(self) -> None:
        self._reporter.success("File Watcher started.")
        self._start_all()

    async def stop(self) -> None:
        """Stop everything, including a pending restart."""
        if self.restarting:
            self._restart_task.cancel()
        await self._stop_all()

    def ping(self) -> StatusEvent:
        """Publish a liveness event naming each pipeline's state."""
        summary = ", ".join(
            f"{p.name}={'running' if p.state.running else 'stopped'}" for p in self.pipelines
        )
        return self._reporter.info(f"Watchers: {summary}")

    def request_restart(self) -> asyncio.Task:
        """Schedule a restart unless one is already pending."""
        if not self.restarting:
            self._restart_task = asyncio.get_running_loop().create_task(self.restart())
        return self._restart_task

    async def restart(self) -> None:
        logger.info("Restarting File Watcher...")
        self._reporter.warning("Restarting File Watcher...")
        await self._stop_all()
        await asyncio.sleep(self._policy.restart_delay)
        self._start_all()

    async def run_forever(self) -> None:
        """Start and keep running until cancelled."""
        self.start()
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await self.stop()

    async def run_once(self) -> None:
        """Process the current backlog of every root, then return."""
        for pipeline in self.pipelines:
            pipeline.scan_backlog()
        await asyncio.gather(*(p.dispatcher.join() for p in self.pipelines))

    def _start_all(self) -> None:
        for pipeline in self.pipelines:
            pipeline.start()
            self._start_monitor(pipeline)

    async def _stop_all(self) -> None:
        for task in self._monitors.values():
            task.cancel()
        self._monitors.clear()
        for pipeline in self.pipelines:
            await pipeline.stop()

    def _start_monitor(self, pipeline: Pipeline) -> None:
        task = self._monitors.get(pipeline.name)
        if task is not None and not task.done():
            return
        self._monitors[pipeline.name] = asyncio.get_running_loop().create_task(
            self._monitor(pipeline), name=f"monitor-{pipeline.name}"
        )

    async def _monitor(self, pipeline: Pipeline) -> None:
        while True:
            await asyncio.sleep(self._policy.monitor_interval)
            if not pipeline.check():
                logger.warning("Watcher %s is not running. Restarting...", pipeline.name)
                self.request_restart()

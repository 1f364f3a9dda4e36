"""One pipeline instance: watcher -> dispatcher -> transfer engine -> finalizer.

The document and message pipelines are the same class with a different
finalizer; the finalizer also supplies the extension filter.
"""

import logging
from collections.abc import Callable
from datetime import date

from watchdog.observers import Observer

from courier.pipeline.dispatcher import Dispatcher
from courier.pipeline.errors import WatcherFailure
from courier.pipeline.events import StatusReporter
from courier.pipeline.finalizers import (
    ContentIngestor,
    DocumentFinalizer,
    DocumentRegistrar,
    Finalizer,
    MessageFinalizer,
)
from courier.pipeline.state import WatcherState
from courier.pipeline.transfer import TransferEngine
from courier.pipeline.watcher import DirectoryWatcher
from courier.schemas.pipeline import PipelinePolicy, RootPair

logger = logging.getLogger(__name__)

DOCUMENT_PIPELINE = "document"
MESSAGE_PIPELINE = "message"


class Pipeline:
    """A root pair wired end to end, with its own queue and watcher state."""

    def __init__(
        self,
        name: str,
        pair: RootPair,
        finalizer: Finalizer,
        reporter: StatusReporter,
        *,
        policy: PipelinePolicy | None = None,
        today: Callable[[], date] = date.today,
        observer_factory: Callable[[], Observer] = Observer,
    ) -> None:
        policy = policy or PipelinePolicy()
        self.name = name
        self.pair = pair
        self.state = WatcherState(name)
        self.reporter = reporter
        self.engine = TransferEngine(
            finalizer=finalizer, reporter=reporter, policy=policy, today=today
        )
        self.dispatcher = Dispatcher(self.engine, pair.destination_root, policy=policy)
        self.watcher = DirectoryWatcher(
            pair.source_root,
            finalizer.extension,
            self.dispatcher.submit,
            observer_factory=observer_factory,
        )
        self.failure: WatcherFailure | None = None

    def start(self) -> bool:
        """Begin watching. No-op (returns False) if already running."""
        if self.state.running:
            logger.debug("Pipeline %s already running", self.name)
            return False
        try:
            self.watcher.start()
        except OSError as exc:
            self.reporter.error(f"Could not watch {self.pair.source_root}: {exc}")
            return False
        self.state.running = True
        self.failure = None
        return True

    async def stop(self) -> None:
        """Release the watcher and drop queued files. Always clears the flag."""
        was_running = await self.watcher.stop()
        self.dispatcher.clear()
        self.state.running = False
        if was_running:
            self.reporter.error("File Watcher stopped.")

    def check(self) -> bool:
        """Refresh and return the running flag.

        A watcher that can no longer deliver events is marked not running and
        the cause is kept in ``failure``.
        """
        if self.state.running:
            fault = self.watcher.fault()
            if fault is not None:
                self.failure = WatcherFailure(self.pair.source_root, fault)
                self.reporter.error(str(self.failure))
                self.state.running = False
        return self.state.running

    def scan_backlog(self) -> int:
        """Queue existing files without starting the observer."""
        return self.watcher.scan_backlog()


def build_pipelines(
    *,
    document_pair: RootPair,
    message_pair: RootPair,
    registrar: DocumentRegistrar,
    ingestor: ContentIngestor,
    reporter: StatusReporter,
    policy: PipelinePolicy | None = None,
    today: Callable[[], date] = date.today,
) -> list[Pipeline]:
    """Create the document and message pipelines sharing one publisher."""
    return [
        Pipeline(
            DOCUMENT_PIPELINE,
            document_pair,
            DocumentFinalizer(registrar),
            reporter.bind(DOCUMENT_PIPELINE),
            policy=policy,
            today=today,
        ),
        Pipeline(
            MESSAGE_PIPELINE,
            message_pair,
            MessageFinalizer(ingestor),
            reporter.bind(MESSAGE_PIPELINE),
            policy=policy,
            today=today,
        ),
    ]

"""Status event publishing for the transfer pipeline.

The pipeline only knows the ``EventPublisher`` protocol. ``StatusLog`` is an
append-only JSONL sink that ``courier status`` reads back; any UI bridge can be
added behind ``FanoutPublisher`` without touching the pipeline.
"""

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from courier.schemas.pipeline import Severity, StatusEvent

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class EventPublisher(Protocol):
    def publish(self, event: StatusEvent) -> None: ...


class StatusLog:
    """Append-only JSONL log of status events.

    Usage::

        status_log = StatusLog("/path/to/status.jsonl")
        status_log.publish(event)
        entries = status_log.read_entries(since=some_datetime)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def publish(self, event: StatusEvent) -> None:
        """Append a single event to the log file."""
        with self._path.open("a") as f:
            f.write(event.model_dump_json() + "\n")

    def read_entries(
        self,
        *,
        since: datetime | None = None,
        severity: Severity | None = None,
        pipeline: str | None = None,
        limit: int | None = None,
    ) -> list[StatusEvent]:
        """Read events with optional filtering.

        Args:
            since: Only return events after this timestamp.
            severity: Only return events with this severity.
            pipeline: Only return events emitted by this pipeline.
            limit: Maximum number of events to return (newest after filtering).

        Returns:
            List of StatusEvent objects, oldest first.
        """
        if not self._path.exists():
            return []

        entries: list[StatusEvent] = []
        with self._path.open() as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                event = StatusEvent.model_validate_json(line)
                if since and event.timestamp <= since:
                    continue
                if severity and event.severity != severity:
                    continue
                if pipeline is not None and event.pipeline != pipeline:
                    continue
                entries.append(event)

        if limit is not None:
            entries = entries[-limit:]

        return entries


class FanoutPublisher:
    """Deliver each event to several publishers.

    A failing sink is logged and skipped so that observability never stalls a
    transfer.
    """

    def __init__(self, *publishers: EventPublisher) -> None:
        self._publishers = list(publishers)

    def publish(self, event: StatusEvent) -> None:
        for publisher in self._publishers:
            try:
                publisher.publish(event)
            except Exception:
                logger.exception("Status publisher %r failed", publisher)


class StatusReporter:
    """Stamp, log and publish status events on behalf of one pipeline."""

    def __init__(self, publisher: EventPublisher, pipeline: str = "") -> None:
        self._publisher = publisher
        self._pipeline = pipeline
        self._logger = logging.getLogger(f"courier.status.{pipeline or 'supervisor'}")

    def bind(self, pipeline: str) -> "StatusReporter":
        """Return a reporter for another pipeline sharing the same publisher."""
        return StatusReporter(self._publisher, pipeline)

    def emit(self, severity: Severity, message: str) -> StatusEvent:
        event = StatusEvent(
            timestamp=datetime.now(UTC),
            message=message,
            severity=severity,
            pipeline=self._pipeline,
        )
        self._logger.log(_LOG_LEVELS[severity], message)
        self._publisher.publish(event)
        return event

    def info(self, message: str) -> StatusEvent:
        return self.emit(Severity.INFO, message)

    def success(self, message: str) -> StatusEvent:
        return self.emit(Severity.SUCCESS, message)

    def warning(self, message: str) -> StatusEvent:
        return self.emit(Severity.WARNING, message)

    def error(self, message: str) -> StatusEvent:
        return self.emit(Severity.ERROR, message)

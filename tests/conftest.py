"""Shared fixtures for Courier tests."""

import pytest

from courier.pipeline.events import StatusReporter
from courier.schemas.pipeline import PipelinePolicy, RootPair, StatusEvent


@pytest.fixture(autouse=True)
def _no_sops(monkeypatch):
    """Ensure tests never try to invoke SOPS."""
    monkeypatch.setenv("COURIER_USE_SOPS", "false")


class RecordingPublisher:
    """Collects published events in memory."""

    def __init__(self) -> None:
        self.events: list[StatusEvent] = []

    def publish(self, event: StatusEvent) -> None:
        self.events.append(event)

    @property
    def messages(self) -> list[str]:
        return [e.message for e in self.events]


@pytest.fixture()
def publisher():
    return RecordingPublisher()


@pytest.fixture()
def reporter(publisher):
    return StatusReporter(publisher, "test")


@pytest.fixture()
def fast_policy():
    """Default retry budgets with every delay removed."""
    return PipelinePolicy(
        stability_interval=0,
        hash_delay=0,
        copy_delay=0,
        cooldown=0,
        monitor_interval=0.01,
        restart_delay=0,
    )


@pytest.fixture()
def roots(tmp_path):
    source = tmp_path / "inbound"
    destination = tmp_path / "archive"
    source.mkdir()
    destination.mkdir()
    return RootPair(source_root=source, destination_root=destination)

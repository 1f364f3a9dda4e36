"""Explicit per-root-pair watcher state shared by a pipeline and its monitor."""


class WatcherState:
    """Running flag for one root pair.

    Only mutated from the event loop thread (start, stop, restart and monitor
    ticks all run there), so no lock is needed.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.running = False

    def __repr__(self) -> str:
        return f"WatcherState(name={self.name!r}, running={self.running})"

"""Schemas for the archive transfer pipeline.

Covers root configuration, per-file jobs, status events and the timing policy
shared by the stability gate, hashing, copying and the monitor.
"""

from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class Severity(StrEnum):
    """How a status event should be presented to the operator."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class JobState(StrEnum):
    """Lifecycle of a single TransferJob, in processing order."""

    DISCOVERED = "discovered"
    STABILIZING = "stabilizing"
    STAGING = "staging"
    HASHING_SOURCE = "hashing_source"
    COPYING_TO_TEMP = "copying_to_temp"
    HASHING_COPY = "hashing_copy"
    COMPARING = "comparing"
    FINALIZING = "finalizing"
    NOTIFYING = "notifying"
    CLEANING_SOURCE = "cleaning_source"
    DONE = "done"
    DROPPED_UNSTABLE = "dropped_unstable"
    DROPPED_MISMATCH = "dropped_mismatch"
    FAILED_IO = "failed_io"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        JobState.DONE,
        JobState.DROPPED_UNSTABLE,
        JobState.DROPPED_MISMATCH,
        JobState.FAILED_IO,
    }
)


class RootPair(BaseModel):
    """One watched inbound directory and its archive destination."""

    model_config = ConfigDict(frozen=True)

    source_root: Path
    destination_root: Path


class WatchEvent(BaseModel):
    """A file discovered under a watched root."""

    path: Path
    extension: str = Field(description="Matched extension, lower-case with leading dot")
    discovered_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class TransferJob(BaseModel):
    """Unit of work for one file. Lives only in process memory."""

    source_path: Path
    destination_root: Path
    discovered_at: datetime
    state: JobState = JobState.DISCOVERED
    source_digest: str = ""
    staged_digest: str = ""
    destination_path: Path | None = None
    error: str = Field(default="", description="Reason for a non-DONE terminal state")

    @property
    def file_name(self) -> str:
        return self.source_path.name


class StatusEvent(BaseModel):
    """A timestamped milestone published to the observer sink."""

    timestamp: datetime
    message: str
    severity: Severity = Severity.INFO
    pipeline: str = Field(default="", description="Name of the emitting pipeline, if any")


class ParsedIdentity(BaseModel):
    """Identifiers recovered from a structured report filename."""

    render_number: str
    template_code: str
    patient_name: str


class NotifyOutcome(BaseModel):
    """Result of handing a finalized file to the downstream system."""

    success: bool
    message: str


class PipelinePolicy(BaseModel):
    """Retry budgets, delays and open-question switches.

    All durations are in seconds. Tests construct a policy with zero delays.
    """

    stability_interval: float = Field(default=1.0, ge=0)
    stability_samples: int = Field(default=10, ge=2)
    hash_attempts: int = Field(default=5, ge=1)
    hash_delay: float = Field(default=1.0, ge=0)
    copy_attempts: int = Field(default=5, ge=1)
    copy_delay: float = Field(default=10.0, ge=0)
    cooldown: float = Field(default=7.0, ge=0)
    monitor_interval: float = Field(default=10.0, gt=0)
    restart_delay: float = Field(default=5.0, ge=0)
    keep_mismatched_staging: bool = Field(
        default=True,
        description="Leave the staged .tmp copy in place after a digest mismatch",
    )
    unstable_requeue_limit: int = Field(
        default=0,
        ge=0,
        description="How many times an unstable file goes back to the queue tail",
    )

"""Build and job record schemas.

These mirror the build objects returned by the Buildkite build-listing
endpoint. Only the fields the health model needs are declared; anything
else the API sends is ignored at validation time.

State fields are plain strings rather than enum-typed fields. The CI
provider adds states over time, and an unknown state must flow through to
the ranker (which orders it last) instead of failing validation. The enums
below name the states we know about and compare equal to the raw strings.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BuildState(str, Enum):
    """Lifecycle states of a build."""

    RUNNING = "running"
    SCHEDULED = "scheduled"
    PASSED = "passed"
    FAILED = "failed"
    BLOCKED = "blocked"
    CANCELED = "canceled"
    CANCELING = "canceling"
    SKIPPED = "skipped"
    NOT_RUN = "not_run"


class JobState(str, Enum):
    """Lifecycle states of a single job. Richer than BuildState."""

    WAITING = "waiting"
    BLOCKED = "blocked"
    UNBLOCKED = "unblocked"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    CANCELED = "canceled"
    SKIPPED = "skipped"
    BROKEN = "broken"
    TIMING_OUT = "timing_out"
    TIMED_OUT = "timed_out"


class JobType(str, Enum):
    """Kinds of job a build can contain. Only SCRIPT jobs are aggregated."""

    SCRIPT = "script"
    WAITER = "waiter"
    MANUAL = "manual"
    TRIGGER = "trigger"


# Builds in these states are requested from the API. "scheduled" is left out
# so builds that have not started yet do not count toward commit coverage.
FETCHABLE_BUILD_STATES = (
    BuildState.RUNNING,
    BuildState.PASSED,
    BuildState.FAILED,
    BuildState.BLOCKED,
    BuildState.CANCELED,
)


def _as_utc(value: datetime | None) -> datetime | None:
    """Return value as an aware UTC datetime. Naive values are read as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class JobRecord(BaseModel):
    """One job inside a build.

    Attributes:
        id: Provider-assigned job ID.
        type: Job kind ("script", "waiter", "manual", "trigger", ...).
        name: Display name. Waiter jobs have none.
        step_key: Stable key from the pipeline definition, independent of
            the display name. Not every step declares one.
        state: Job lifecycle state, see JobState.
        soft_failed: True when the step is allowed to fail without failing
            the build.
        created_at: When the job was created. Drives last-state resolution.
        started_at: When an agent started running the job, if it has.
        finished_at: When the job finished, if it has.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    type: str
    name: str | None = None
    step_key: str | None = None
    state: str = JobState.WAITING.value
    soft_failed: bool | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @field_validator("created_at", "started_at", "finished_at", mode="after")
    @classmethod
    def _normalize_timestamp(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @property
    def is_script(self) -> bool:
        return self.type == JobType.SCRIPT

    @property
    def identity(self) -> str:
        """Key used to correlate the same job across builds.

        Step key wins over name so a renamed step keeps its history; the raw
        job ID is the last resort for steps with neither.
        """
        return self.step_key or self.name or self.id


class BuildRecord(BaseModel):
    """One pipeline build for a single commit.

    Attributes:
        id: Provider-assigned build ID.
        number: Sequential build number, unique and increasing per pipeline.
        state: Build lifecycle state, see BuildState.
        commit: Full commit SHA the build ran against.
        branch: Branch the build ran on.
        message: Commit message, when the provider sends one.
        created_at: When the build was created.
        started_at: When the first job started.
        finished_at: When the build finished.
        web_url: Browser URL of the build page.
        jobs: Jobs in pipeline order. May be empty.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    number: int
    state: str
    commit: str
    branch: str
    message: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    web_url: str = ""
    jobs: list[JobRecord] = Field(default_factory=list)

    @field_validator("created_at", "started_at", "finished_at", mode="after")
    @classmethod
    def _normalize_timestamp(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @field_validator("jobs", mode="before")
    @classmethod
    def _null_jobs_as_empty(cls, value):
        # Builds that never expanded their pipeline come back with jobs: null.
        return [] if value is None else value

    def script_jobs(self) -> list[JobRecord]:
        """Return only the jobs that take part in aggregation."""
        return [job for job in self.jobs if job.is_script]

    @property
    def has_script_jobs(self) -> bool:
        return any(job.is_script for job in self.jobs)

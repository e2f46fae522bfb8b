"""Job health schemas.

These are the output types of one aggregation pass. Every model here is
frozen: a DashboardSnapshot is built once per refresh and replaced wholesale
by the next one, never patched in place.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

MAX_HISTORY_ENTRIES = 50
SHORT_COMMIT_LENGTH = 7


class BuildHistoryEntry(BaseModel):
    """How one job fared in one build.

    Attributes:
        build_number: Number of the build the job ran in.
        commit: Commit SHA truncated to 7 characters.
        state: Job state in that build.
        started_at: When the job started, if it did.
        finished_at: When the job finished, if it did.
        build_url: Browser URL of the build.
    """

    model_config = ConfigDict(frozen=True)

    build_number: int
    commit: str
    state: str
    started_at: datetime | None = None
    finished_at: datetime | None = None
    build_url: str = ""


class JobHealthAggregate(BaseModel):
    """Everything known about one job across the fetched builds.

    Attributes:
        identity: Correlation key (step key, else name, else job ID).
        name: Display name from the most recently created instance.
        step_key: Step key, if the step declares one.
        last_state: State of the most recently created instance.
        last_run: Creation time of the most recently created instance.
        frequency: Number of job instances seen. Not affected by the
            history cap.
        is_optional: True if any instance was classified optional.
        builds: Per-build history, newest build number first, at most
            MAX_HISTORY_ENTRIES long.
    """

    model_config = ConfigDict(frozen=True)

    identity: str
    name: str
    step_key: str | None = None
    last_state: str
    last_run: datetime | None = None
    frequency: int
    is_optional: bool = False
    builds: tuple[BuildHistoryEntry, ...] = ()


class DashboardSnapshot(BaseModel):
    """Immutable result of one fetch-and-aggregate cycle.

    Attributes:
        generated_at: When the snapshot was built (UTC).
        jobs: Ranked job aggregates.
        total_builds: Number of builds that contributed.
        unique_commits: Number of distinct commits across those builds.
        org_slug: Organization the builds came from, if known.
        pipeline_slug: Pipeline the builds came from, if known.
        branch: Branch the builds were filtered to, if known.
    """

    model_config = ConfigDict(frozen=True)

    generated_at: datetime
    jobs: tuple[JobHealthAggregate, ...] = ()
    total_builds: int = 0
    unique_commits: int = 0
    org_slug: str | None = None
    pipeline_slug: str | None = None
    branch: str | None = None

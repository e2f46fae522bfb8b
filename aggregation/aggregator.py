"""Job health aggregator.

The HealthAggregator folds a list of builds into one JobHealthAggregate per
job identity. It handles three concerns:

1. Correlation. Jobs are matched across builds by identity (step key, else
   name, else job ID), so a renamed step keeps its history.

2. Last-state resolution. The aggregate's last state comes from the
   instance with the newest created_at. Ties keep whichever instance was
   seen first, so input order decides and re-running is reproducible.

3. Bounded history. Every instance adds one history entry; after the pass
   the history is sorted newest build first and cut to 50 entries.
   Frequency counts every instance, including the ones cut.

The fold threads an explicit accumulator through the builds. It is created
per call and frozen into immutable aggregates at the end, so nothing
survives from one pass to the next.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import reduce

from classification.optional import is_optional
from schemas.build import BuildRecord, JobRecord
from schemas.health import (
    MAX_HISTORY_ENTRIES,
    SHORT_COMMIT_LENGTH,
    BuildHistoryEntry,
    JobHealthAggregate,
)

logger = logging.getLogger(__name__)


@dataclass
class _JobAccumulator:
    """Mutable per-identity state for one aggregation pass.

    A dataclass rather than a Pydantic model because it never leaves the
    aggregator. freeze() turns it into the public JobHealthAggregate.
    """

    identity: str
    name: str
    step_key: str | None
    last_state: str
    is_optional: bool
    last_run: datetime | None = None
    frequency: int = 0
    history: list[BuildHistoryEntry] = field(default_factory=list)

    def freeze(self) -> JobHealthAggregate:
        history = sorted(self.history, key=lambda entry: entry.build_number, reverse=True)
        return JobHealthAggregate(
            identity=self.identity,
            name=self.name,
            step_key=self.step_key,
            last_state=self.last_state,
            last_run=self.last_run,
            frequency=self.frequency,
            is_optional=self.is_optional,
            builds=tuple(history[:MAX_HISTORY_ENTRIES]),
        )


class HealthAggregator:
    """Folds builds into per-job health aggregates.

    The output is in first-seen order. Ranking is a separate step, see
    aggregation/ranker.py.
    """

    def aggregate(self, builds: list[BuildRecord]) -> list[JobHealthAggregate]:
        """Aggregate script jobs across all builds.

        Args:
            builds: Builds to fold, in any order. Builds without script jobs
                contribute nothing.

        Returns:
            One JobHealthAggregate per job identity, in the order each
            identity was first seen. Empty if no build has a script job.
        """
        accumulators = reduce(self._fold_build, builds, {})
        logger.debug(
            "Aggregated %d builds into %d jobs.", len(builds), len(accumulators)
        )
        return [acc.freeze() for acc in accumulators.values()]

    # ── Private helpers ───────────────────────────────────────────────────────

    def _fold_build(
        self,
        accumulators: dict[str, _JobAccumulator],
        build: BuildRecord,
    ) -> dict[str, _JobAccumulator]:
        """Fold every script job of one build into the accumulator map."""
        for job in build.script_jobs():
            self._fold_job(accumulators, build, job)
        return accumulators

    def _fold_job(
        self,
        accumulators: dict[str, _JobAccumulator],
        build: BuildRecord,
        job: JobRecord,
    ) -> None:
        optional = is_optional(job)
        acc = accumulators.get(job.identity)
        if acc is None:
            acc = _JobAccumulator(
                identity=job.identity,
                name=job.name or job.identity,
                step_key=job.step_key,
                last_state=job.state,
                is_optional=optional,
            )
            accumulators[job.identity] = acc

        acc.frequency += 1

        if acc.last_run is None or (job.created_at is not None and job.created_at > acc.last_run):
            acc.last_run = job.created_at
            acc.last_state = job.state
            acc.name = job.name or acc.name
            acc.step_key = job.step_key or acc.step_key

        # Once any instance is optional the job stays optional.
        acc.is_optional = acc.is_optional or optional

        acc.history.append(BuildHistoryEntry(
            build_number=build.number,
            commit=build.commit[:SHORT_COMMIT_LENGTH],
            state=job.state,
            started_at=job.started_at,
            finished_at=job.finished_at,
            build_url=build.web_url,
        ))

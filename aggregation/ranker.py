"""Job ranker.

Orders aggregated jobs for display: failures first, then by how often the
job runs. The sort is stable, so jobs that tie on both keys keep the order
the aggregator produced them in.
"""

from schemas.build import JobState
from schemas.health import JobHealthAggregate

# Lower index sorts first. States not listed sort after all of these.
STATE_PRIORITY: tuple[str, ...] = (
    JobState.FAILED.value,
    JobState.RUNNING.value,
    JobState.PASSED.value,
    JobState.SKIPPED.value,
    JobState.CANCELED.value,
)

_PRIORITY_INDEX = {state: index for index, state in enumerate(STATE_PRIORITY)}


def state_priority(state: str) -> int:
    """Return the priority class for a last-observed state."""
    return _PRIORITY_INDEX.get(state, len(STATE_PRIORITY))


class Ranker:
    """Imposes a total, reproducible order over job aggregates."""

    def rank(self, aggregates: list[JobHealthAggregate]) -> list[JobHealthAggregate]:
        """Sort by priority class of last state, then descending frequency.

        Args:
            aggregates: Aggregates in encounter order.

        Returns:
            A new list. The input is not modified.
        """
        return sorted(
            aggregates,
            key=lambda job: (state_priority(job.last_state), -job.frequency),
        )

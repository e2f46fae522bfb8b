"""Filtering over ranked jobs.

Callers narrow a snapshot down by text, last state, or optional flag.
Filtering never reorders: the ranked order is preserved.
"""

from collections.abc import Iterable

from schemas.health import JobHealthAggregate

ANY_STATE = "all"


def filter_jobs(
    jobs: Iterable[JobHealthAggregate],
    text: str = "",
    state: str | None = None,
    hide_optional: bool = False,
) -> list[JobHealthAggregate]:
    """Return the jobs matching every given criterion.

    Args:
        jobs: Jobs in ranked order.
        text: Case-insensitive substring to look for in the name or step key.
            Empty matches everything.
        state: Exact last state to keep. None or "all" keeps every state.
        hide_optional: Drop jobs classified optional.

    Returns:
        Matching jobs in their original order.
    """
    needle = text.strip().lower()
    wanted_state = None if state in (None, "", ANY_STATE) else state

    matches = []
    for job in jobs:
        if needle and needle not in job.name.lower() and needle not in (job.step_key or "").lower():
            continue
        if wanted_state is not None and job.last_state != wanted_state:
            continue
        if hide_optional and job.is_optional:
            continue
        matches.append(job)
    return matches

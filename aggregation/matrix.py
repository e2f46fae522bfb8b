"""Jobs-by-commits matrix.

Pivots the per-job histories of a snapshot into one column per commit, so
a caller can show how every job fared on each recent commit side by side.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from schemas.health import JobHealthAggregate

DEFAULT_MAX_COMMITS = 20


@dataclass
class MatrixCell:
    """State of one job on one commit."""

    state: str
    build_url: str


@dataclass
class CommitColumn:
    """One commit in the matrix.

    Attributes:
        commit: Short commit SHA.
        build_number: Number of the first build seen for this commit.
        build_url: URL of that build.
        timestamp: started_at of the first job seen on that build, if any.
        cells: Job identity -> MatrixCell. Jobs that did not run on this
            commit are absent.
    """

    commit: str
    build_number: int
    build_url: str
    timestamp: datetime | None = None
    cells: dict[str, MatrixCell] = field(default_factory=dict)


def build_commit_matrix(
    jobs: Iterable[JobHealthAggregate],
    max_commits: int = DEFAULT_MAX_COMMITS,
) -> list[CommitColumn]:
    """Pivot job histories into commit columns.

    When a commit was built more than once, the column takes its number and
    URL from the first history entry seen for it; every later entry for the
    same job overwrites that job's cell.

    Args:
        jobs: Job aggregates, typically snapshot.jobs.
        max_commits: Keep only this many columns.

    Returns:
        Columns ordered by descending build number, at most max_commits long.
    """
    if max_commits < 1:
        return []

    columns: dict[str, CommitColumn] = {}
    for job in jobs:
        for entry in job.builds:
            column = columns.get(entry.commit)
            if column is None:
                column = CommitColumn(
                    commit=entry.commit,
                    build_number=entry.build_number,
                    build_url=entry.build_url,
                    timestamp=entry.started_at,
                )
                columns[entry.commit] = column
            column.cells[job.identity] = MatrixCell(state=entry.state, build_url=entry.build_url)

    ordered = sorted(columns.values(), key=lambda c: c.build_number, reverse=True)
    return ordered[:max_commits]

"""Recent-builds fetcher.

RecentBuildsFetcher drives a build source page by page until it has
enough builds to describe recent job health. It stops on the first of:

    1. an empty page                       -> no more data
    2. target_unique_commits reached       -> enough coverage
    3. a short page (fewer than per_page)  -> end of data
    4. build_count_cap reached             -> hard cap

Pages are requested strictly one after another. Each stopping rule depends
on the running totals from earlier pages, so a page is never requested
before the previous one has been folded in.

A failure on any page aborts the whole fetch. The classified error from the
client propagates unchanged and the partial accumulator is dropped with the
call frame; nothing half-fetched reaches the caller.
"""

import asyncio
import logging
import time
from typing import Protocol

from schemas.build import BuildRecord
from schemas.events import FetchEvent, FetchEventType

logger = logging.getLogger(__name__)

DEFAULT_PER_PAGE = 50


class BuildSource(Protocol):
    """Anything that can list one page of builds. BuildkiteClient satisfies it."""

    async def list_builds(self, branch: str, page: int, per_page: int) -> list[BuildRecord]:
        ...


class RecentBuildsFetcher:
    """Pages through a build source with early-stop rules.

    The fetcher holds no state between calls. Every call to
    fetch_recent_builds() owns its own accumulator, so two fetches can never
    mix their results.

    Attributes:
        source: The build source to page through.
        per_page: Page size, independent of the build cap.
    """

    def __init__(self, source: BuildSource, per_page: int = DEFAULT_PER_PAGE) -> None:
        if per_page < 1:
            raise ValueError(f"per_page must be at least 1, got {per_page}.")
        self.source = source
        self.per_page = per_page

    async def fetch_recent_builds(
        self,
        branch: str = "main",
        build_count_cap: int = 100,
        target_unique_commits: int = 30,
        event_queue: asyncio.Queue | None = None,
    ) -> list[BuildRecord]:
        """Fetch recent builds with at least one script job.

        Builds whose jobs are all non-script (waiters, manual blocks,
        triggers) are dropped and their commits are not counted toward the
        target.

        Args:
            branch: Branch to fetch builds for.
            build_count_cap: Maximum number of builds to return.
            target_unique_commits: Stop paging once this many distinct
                commits have been seen.
            event_queue: Optional queue to emit FetchEvents into. If None,
                no events are emitted.

        Returns:
            At most build_count_cap builds, newest created_at first.

        Raises:
            ValueError: If build_count_cap or target_unique_commits is below 1.
            BuildSourceError: If any page request fails.
        """
        if build_count_cap < 1:
            raise ValueError(f"build_count_cap must be at least 1, got {build_count_cap}.")
        if target_unique_commits < 1:
            raise ValueError(
                f"target_unique_commits must be at least 1, got {target_unique_commits}."
            )

        fetch_start = time.perf_counter()
        builds: list[BuildRecord] = []
        seen_commits: set[str] = set()
        page = 1

        async def emit(event_type: FetchEventType, message: str) -> None:
            if event_queue is not None:
                await event_queue.put(FetchEvent(
                    event_type=event_type,
                    page=page,
                    message=message,
                    builds_accumulated=len(builds),
                    unique_commits=len(seen_commits),
                    timestamp_ms=(time.perf_counter() - fetch_start) * 1000,
                ))

        while True:
            await emit(FetchEventType.PAGE_REQUESTED, f"requesting page {page}")
            logger.debug("Fetching page %d (have %d unique commits).", page, len(seen_commits))

            try:
                page_builds = await self.source.list_builds(branch, page, self.per_page)
            except Exception as exc:
                await emit(FetchEventType.ERROR, str(exc))
                raise

            if not page_builds:
                stop_reason = "no more builds"
                break

            for build in page_builds:
                if build.has_script_jobs:
                    seen_commits.add(build.commit)
                    builds.append(build)

            await emit(
                FetchEventType.PAGE_FETCHED,
                f"{len(builds)} builds, {len(seen_commits)} commits",
            )

            if len(seen_commits) >= target_unique_commits:
                stop_reason = f"reached {target_unique_commits} unique commits"
                break
            if len(page_builds) < self.per_page:
                stop_reason = "end of data"
                break
            if len(builds) >= build_count_cap:
                stop_reason = f"reached build cap of {build_count_cap}"
                break

            page += 1

        result = sorted(builds[:build_count_cap], key=lambda b: b.created_at, reverse=True)

        await emit(FetchEventType.STOPPED, stop_reason)
        logger.info(
            "Loaded %d builds with %d unique commits from %d pages (%s).",
            len(result),
            len(seen_commits),
            page,
            stop_reason,
        )
        return result

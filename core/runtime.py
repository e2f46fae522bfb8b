"""Dashboard runtime: the top-level refresh pipeline.

DashboardRuntime is the single entry point for producing job health.
Callers construct it once with settings, then call refresh() as often as
they like. Each call is fully independent: fresh client, fresh
accumulator, fresh snapshot.

Pipeline order inside refresh():
    1. Skip entirely if no credentials are configured
    2. Page through recent builds via RecentBuildsFetcher
    3. Fold builds into per-job aggregates via HealthAggregator
    4. Order the aggregates via Ranker
    5. Freeze everything into a DashboardSnapshot

Steps 3–5 are synchronous and pure; build_snapshot() exposes them on their
own for callers that already hold builds.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from aggregation.aggregator import HealthAggregator
from aggregation.ranker import Ranker
from core.fetcher import RecentBuildsFetcher
from integrations.buildkite import BuildkiteClient
from schemas.build import BuildRecord
from schemas.health import DashboardSnapshot
from schemas.settings import DashboardSettings

logger = logging.getLogger(__name__)

ClientFactory = Callable[[DashboardSettings], BuildkiteClient]


def default_client_factory(settings: DashboardSettings) -> BuildkiteClient:
    """Build a BuildkiteClient from settings."""
    return BuildkiteClient(
        token=settings.api_token,
        org_slug=settings.org_slug,
        pipeline_slug=settings.pipeline_slug,
        api_base=settings.api_base,
        timeout_seconds=settings.timeout_seconds,
    )


def build_snapshot(
    builds: list[BuildRecord],
    generated_at: datetime | None = None,
    settings: DashboardSettings | None = None,
) -> DashboardSnapshot:
    """Aggregate and rank builds into an immutable snapshot.

    Args:
        builds: Builds from one fetch cycle.
        generated_at: Snapshot timestamp. Defaults to now (UTC). The only
            time-dependent part of the output.
        settings: If given, the snapshot records the org, pipeline and
            branch it was built for.

    Returns:
        A DashboardSnapshot with ranked jobs.
    """
    ranked = Ranker().rank(HealthAggregator().aggregate(builds))
    return DashboardSnapshot(
        generated_at=generated_at or datetime.now(timezone.utc),
        jobs=tuple(ranked),
        total_builds=len(builds),
        unique_commits=len({build.commit for build in builds}),
        org_slug=settings.org_slug if settings else None,
        pipeline_slug=settings.pipeline_slug if settings else None,
        branch=settings.branch if settings else None,
    )


class DashboardRuntime:
    """Runs the fetch → aggregate → rank pipeline for one pipeline/branch.

    Attributes:
        settings: Which pipeline to watch and how deep to look.
        _client_factory: Builds the client for each refresh. Tests inject
            one backed by httpx.MockTransport.
    """

    def __init__(
        self,
        settings: DashboardSettings,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.settings = settings
        self._client_factory = client_factory or default_client_factory

    async def refresh(self, event_queue: asyncio.Queue | None = None) -> DashboardSnapshot | None:
        """Fetch recent builds and return a fresh snapshot.

        Args:
            event_queue: Optional queue for FetchEvents (page progress).

        Returns:
            The new snapshot, or None if no credentials are configured. A
            missing token is not an error; it just means nothing is fetched.

        Raises:
            BuildSourceError: If any page request fails. No partial
                snapshot is produced.
        """
        settings = self.settings
        if not settings.has_credentials:
            logger.info("No Buildkite credentials configured, skipping fetch.")
            return None

        logger.info(
            "Refreshing %s/%s on '%s' (cap %d builds, target %d commits).",
            settings.org_slug,
            settings.pipeline_slug,
            settings.branch,
            settings.build_limit,
            settings.target_commits,
        )

        async with self._client_factory(settings) as client:
            fetcher = RecentBuildsFetcher(client, per_page=settings.per_page)
            builds = await fetcher.fetch_recent_builds(
                branch=settings.branch,
                build_count_cap=settings.build_limit,
                target_unique_commits=settings.target_commits,
                event_queue=event_queue,
            )

        snapshot = build_snapshot(builds, settings=settings)
        logger.info(
            "Refresh complete. %d jobs from %d builds.",
            len(snapshot.jobs),
            snapshot.total_builds,
        )
        return snapshot

"""Component tests for the aggregation pipeline.

Covers HealthAggregator, Ranker, filter_jobs, build_commit_matrix,
build_snapshot and DashboardRuntime. All in-memory; the runtime tests use
httpx.MockTransport in place of the API.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from aggregation.aggregator import HealthAggregator
from aggregation.filters import filter_jobs
from aggregation.matrix import build_commit_matrix
from aggregation.ranker import STATE_PRIORITY, Ranker, state_priority
from core.runtime import DashboardRuntime, build_snapshot
from integrations.buildkite import BuildkiteClient
from integrations.errors import NetworkFailureError, UnauthorizedError
from schemas.build import BuildRecord, JobRecord
from schemas.events import FetchEventType
from schemas.health import MAX_HISTORY_ENTRIES, JobHealthAggregate
from schemas.settings import DashboardSettings

BASE_TIME = datetime(2024, 5, 1, tzinfo=timezone.utc)


# ── Shared helpers ────────────────────────────────────────────────────────────

def make_job(name="tests", step_key=None, state="passed", minutes=0, job_type="script",
             soft_failed=None, job_id=None) -> JobRecord:
    return JobRecord(
        id=job_id or f"{name}-{minutes}",
        type=job_type,
        name=name,
        step_key=step_key,
        state=state,
        soft_failed=soft_failed,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        started_at=BASE_TIME + timedelta(minutes=minutes, seconds=30),
        finished_at=BASE_TIME + timedelta(minutes=minutes + 2),
    )


def make_build(number, jobs, commit=None) -> BuildRecord:
    return BuildRecord(
        id=f"build-{number}",
        number=number,
        state="passed",
        commit=commit or f"{number:07d}deadbeefdeadbeefdeadbeefdeadbeef0",
        branch="main",
        created_at=BASE_TIME + timedelta(minutes=number),
        web_url=f"https://buildkite.com/vllm/ci/builds/{number}",
        jobs=jobs,
    )


def make_aggregate(identity="tests", state="passed", frequency=1, optional=False,
                   step_key=None) -> JobHealthAggregate:
    return JobHealthAggregate(
        identity=identity,
        name=identity.title(),
        step_key=step_key,
        last_state=state,
        frequency=frequency,
        is_optional=optional,
    )


def by_identity(aggregates):
    return {a.identity: a for a in aggregates}


# ── HealthAggregator ──────────────────────────────────────────────────────────

class TestHealthAggregator:
    def test_empty_input(self):
        assert HealthAggregator().aggregate([]) == []

    def test_build_with_only_non_script_jobs_contributes_nothing(self):
        build = make_build(1, [
            make_job("wait", job_type="waiter"),
            make_job("deploy?", job_type="manual"),
            make_job("downstream", job_type="trigger"),
        ])
        assert HealthAggregator().aggregate([build]) == []

    def test_frequency_counts_every_instance(self):
        builds = [make_build(n, [make_job("lint", minutes=n), make_job("tests", minutes=n)])
                  for n in range(1, 4)]
        jobs = by_identity(HealthAggregator().aggregate(builds))
        assert jobs["lint"].frequency == 3
        assert jobs["tests"].frequency == 3

    def test_frequency_not_affected_by_history_cap(self):
        builds = [make_build(n, [make_job("tests", minutes=n)]) for n in range(1, 71)]
        [job] = HealthAggregator().aggregate(builds)
        assert job.frequency == 70
        assert len(job.builds) == MAX_HISTORY_ENTRIES

    def test_history_sorted_by_build_number_and_keeps_newest(self):
        builds = [make_build(n, [make_job("tests", minutes=n)]) for n in (5, 60, 1, 33)]
        builds += [make_build(n, [make_job("tests", minutes=n)]) for n in range(100, 150)]
        [job] = HealthAggregator().aggregate(builds)
        numbers = [entry.build_number for entry in job.builds]
        assert numbers == sorted(numbers, reverse=True)
        assert numbers[0] == 149
        assert 1 not in numbers

    def test_last_state_comes_from_newest_created_job(self):
        # Builds fed oldest-last so encounter order differs from recency.
        builds = [
            make_build(3, [make_job("tests", state="passed", minutes=30)]),
            make_build(2, [make_job("tests", state="failed", minutes=50)]),
            make_build(1, [make_job("tests", state="canceled", minutes=10)]),
        ]
        [job] = HealthAggregator().aggregate(builds)
        assert job.last_state == "failed"
        assert job.last_run == BASE_TIME + timedelta(minutes=50)

    def test_equal_timestamps_keep_first_seen_state(self):
        builds = [
            make_build(2, [make_job("tests", state="passed", minutes=10)]),
            make_build(1, [make_job("tests", state="failed", minutes=10)]),
        ]
        [job] = HealthAggregator().aggregate(builds)
        assert job.last_state == "passed"

    def test_identity_uses_step_key_across_renames(self):
        builds = [
            make_build(1, [make_job("Unit Tests", step_key="unit", minutes=1)]),
            make_build(2, [make_job("Unit Tests (py3.12)", step_key="unit", minutes=2)]),
        ]
        [job] = HealthAggregator().aggregate(builds)
        assert job.identity == "unit"
        assert job.frequency == 2
        assert job.name == "Unit Tests (py3.12)"

    def test_optional_flag_is_sticky(self):
        builds = [
            make_build(1, [make_job("tests", step_key="t", minutes=1)]),
            make_build(2, [make_job("tests", step_key="t", minutes=2, soft_failed=True)]),
            make_build(3, [make_job("tests", step_key="t", minutes=3)]),
        ]
        [job] = HealthAggregator().aggregate(builds)
        assert job.is_optional is True

    def test_history_entry_fields(self):
        build = make_build(7, [make_job("tests", state="failed", minutes=7)],
                           commit="abcdef0123456789")
        [job] = HealthAggregator().aggregate([build])
        [entry] = job.builds
        assert entry.build_number == 7
        assert entry.commit == "abcdef0"
        assert entry.state == "failed"
        assert entry.build_url == "https://buildkite.com/vllm/ci/builds/7"
        assert entry.started_at == BASE_TIME + timedelta(minutes=7, seconds=30)

    def test_output_in_first_seen_order(self):
        build = make_build(1, [make_job("b"), make_job("a"), make_job("c")])
        assert [j.identity for j in HealthAggregator().aggregate([build])] == ["b", "a", "c"]

    def test_passes_do_not_leak_between_calls(self):
        aggregator = HealthAggregator()
        build = make_build(1, [make_job("tests")])
        aggregator.aggregate([build])
        [job] = aggregator.aggregate([build])
        assert job.frequency == 1


# ── Ranker ────────────────────────────────────────────────────────────────────

class TestRanker:
    def test_failed_sorts_before_everything(self):
        ranked = Ranker().rank([
            make_aggregate("a", "passed", frequency=100),
            make_aggregate("b", "failed", frequency=1),
        ])
        assert [j.identity for j in ranked] == ["b", "a"]

    def test_full_priority_order(self):
        states = ["canceled", "skipped", "passed", "running", "failed"]
        ranked = Ranker().rank([make_aggregate(s, s) for s in states])
        assert [j.last_state for j in ranked] == list(STATE_PRIORITY)

    def test_unknown_states_sort_last(self):
        ranked = Ranker().rank([
            make_aggregate("a", "waiting", frequency=50),
            make_aggregate("b", "canceled", frequency=1),
            make_aggregate("c", "timed_out", frequency=10),
        ])
        assert [j.identity for j in ranked] == ["b", "a", "c"]

    def test_higher_frequency_first_within_class(self):
        ranked = Ranker().rank([
            make_aggregate("a", "passed", frequency=2),
            make_aggregate("b", "passed", frequency=9),
        ])
        assert [j.identity for j in ranked] == ["b", "a"]

    def test_ties_keep_encounter_order(self):
        ranked = Ranker().rank([
            make_aggregate("z", "passed", frequency=3),
            make_aggregate("a", "passed", frequency=3),
        ])
        assert [j.identity for j in ranked] == ["z", "a"]

    def test_does_not_mutate_input(self):
        jobs = [make_aggregate("a", "passed"), make_aggregate("b", "failed")]
        Ranker().rank(jobs)
        assert [j.identity for j in jobs] == ["a", "b"]

    def test_state_priority_values(self):
        assert state_priority("failed") == 0
        assert state_priority("not-a-state") == len(STATE_PRIORITY)


# ── Filters ───────────────────────────────────────────────────────────────────

class TestFilterJobs:
    def setup_method(self):
        self.jobs = [
            make_aggregate("lint", "failed", step_key="lint-py"),
            make_aggregate("benchmarks", "passed", optional=True),
            make_aggregate("unit", "passed", step_key="unit-tests"),
        ]

    def test_no_criteria_keeps_everything(self):
        assert filter_jobs(self.jobs) == self.jobs

    def test_text_matches_name_or_step_key(self):
        assert [j.identity for j in filter_jobs(self.jobs, text="PY")] == ["lint"]
        assert [j.identity for j in filter_jobs(self.jobs, text="unit-t")] == ["unit"]

    def test_state_filter(self):
        assert [j.identity for j in filter_jobs(self.jobs, state="passed")] == ["benchmarks", "unit"]

    def test_all_state_means_any(self):
        assert len(filter_jobs(self.jobs, state="all")) == 3

    def test_hide_optional(self):
        assert [j.identity for j in filter_jobs(self.jobs, hide_optional=True)] == ["lint", "unit"]


# ── Commit matrix ─────────────────────────────────────────────────────────────

class TestCommitMatrix:
    def test_columns_per_commit_newest_first(self):
        builds = [
            make_build(1, [make_job("lint", minutes=1), make_job("unit", minutes=1)], commit="aaaaaaa111"),
            make_build(2, [make_job("lint", state="failed", minutes=2)], commit="bbbbbbb222"),
        ]
        columns = build_commit_matrix(HealthAggregator().aggregate(builds))
        assert [c.commit for c in columns] == ["bbbbbbb", "aaaaaaa"]
        assert columns[0].cells["lint"].state == "failed"
        assert "unit" not in columns[0].cells
        assert set(columns[1].cells) == {"lint", "unit"}

    def test_max_commits_truncates(self):
        builds = [make_build(n, [make_job("unit", minutes=n)]) for n in range(1, 31)]
        columns = build_commit_matrix(HealthAggregator().aggregate(builds), max_commits=5)
        assert [c.build_number for c in columns] == [30, 29, 28, 27, 26]

    def test_zero_max_commits(self):
        assert build_commit_matrix([make_aggregate()], max_commits=0) == []


# ── build_snapshot ────────────────────────────────────────────────────────────

class TestBuildSnapshot:
    def _builds(self):
        return [
            make_build(n, [
                make_job("lint", state="passed", minutes=n),
                make_job("unit", state="failed" if n == 4 else "passed", minutes=n),
                make_job("docs", state="passed", minutes=n) if n % 2 else make_job("wait", job_type="waiter"),
            ], commit=f"c{n % 3}")
            for n in range(1, 5)
        ]

    def test_ranked_and_counted(self):
        snapshot = build_snapshot(self._builds(), generated_at=BASE_TIME)
        assert [j.identity for j in snapshot.jobs] == ["unit", "lint", "docs"]
        assert snapshot.total_builds == 4
        assert snapshot.unique_commits == 3
        assert snapshot.generated_at == BASE_TIME

    def test_deterministic_for_identical_input(self):
        first = build_snapshot(self._builds(), generated_at=BASE_TIME)
        second = build_snapshot(self._builds(), generated_at=BASE_TIME)
        assert first == second

    def test_records_settings(self):
        settings = DashboardSettings(org_slug="acme", pipeline_slug="deploy", branch="release")
        snapshot = build_snapshot([], settings=settings)
        assert (snapshot.org_slug, snapshot.pipeline_slug, snapshot.branch) == ("acme", "deploy", "release")
        assert snapshot.jobs == ()


# ── DashboardRuntime ──────────────────────────────────────────────────────────

def build_payload(number: int, state: str = "passed") -> dict:
    return {
        "id": f"build-{number}",
        "number": number,
        "state": "passed",
        "commit": f"{number:040x}",
        "branch": "main",
        "created_at": (BASE_TIME + timedelta(minutes=number)).isoformat(),
        "web_url": f"https://buildkite.com/acme/ci/builds/{number}",
        "jobs": [{
            "id": f"job-{number}",
            "type": "script",
            "name": "unit",
            "step_key": "unit",
            "state": state,
            "created_at": (BASE_TIME + timedelta(minutes=number)).isoformat(),
        }],
    }


def factory_for(handler):
    def factory(settings: DashboardSettings) -> BuildkiteClient:
        return BuildkiteClient(
            token=settings.api_token,
            org_slug=settings.org_slug,
            pipeline_slug=settings.pipeline_slug,
            transport=httpx.MockTransport(handler),
        )
    return factory


SETTINGS = DashboardSettings(api_token="secret", org_slug="acme", pipeline_slug="ci",
                             build_limit=50, target_commits=30)


class TestDashboardRuntime:
    async def test_no_token_skips_fetch(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=[])

        runtime = DashboardRuntime(DashboardSettings(), client_factory=factory_for(handler))
        assert await runtime.refresh() is None
        assert calls == []

    async def test_refresh_builds_snapshot(self):
        def handler(request):
            page = int(request.url.params["page"])
            if page == 1:
                return httpx.Response(200, json=[build_payload(3, "failed"), build_payload(2), build_payload(1)])
            return httpx.Response(200, json=[])

        runtime = DashboardRuntime(SETTINGS, client_factory=factory_for(handler))
        snapshot = await runtime.refresh()

        assert snapshot.total_builds == 3
        [job] = snapshot.jobs
        assert job.identity == "unit"
        assert job.last_state == "failed"
        assert job.frequency == 3
        assert snapshot.org_slug == "acme"

    async def test_page_failure_surfaces_classified_error(self):
        def handler(request):
            page = int(request.url.params["page"])
            if page == 1:
                return httpx.Response(200, json=[build_payload(n) for n in range(100, 50, -1)])
            return httpx.Response(401, json={"message": "Unauthorized"})

        runtime = DashboardRuntime(SETTINGS.model_copy(update={"target_commits": 1000, "build_limit": 500}),
                                   client_factory=factory_for(handler))
        with pytest.raises(UnauthorizedError):
            await runtime.refresh()

    async def test_transport_failure_is_network_failure(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        runtime = DashboardRuntime(SETTINGS, client_factory=factory_for(handler))
        with pytest.raises(NetworkFailureError):
            await runtime.refresh()

    async def test_forwards_progress_events(self):
        def handler(request):
            return httpx.Response(200, json=[build_payload(1)])

        queue: asyncio.Queue = asyncio.Queue()
        runtime = DashboardRuntime(SETTINGS, client_factory=factory_for(handler))
        await runtime.refresh(event_queue=queue)

        types = []
        while not queue.empty():
            types.append(queue.get_nowait().event_type)
        assert types[-1] == FetchEventType.STOPPED

    async def test_build_with_null_jobs_is_left_out(self):
        empty = build_payload(2)
        empty["jobs"] = None

        def handler(request):
            page = int(request.url.params["page"])
            return httpx.Response(200, json=[empty, build_payload(1)] if page == 1 else [])

        runtime = DashboardRuntime(SETTINGS, client_factory=factory_for(handler))
        snapshot = await runtime.refresh()

        assert snapshot.total_builds == 1
        assert snapshot.jobs[0].builds[0].build_number == 1

    async def test_mixed_naive_and_aware_timestamps_refresh(self):
        older = build_payload(1, "failed")
        older["created_at"] = "2024-05-01T09:00:00"
        older["jobs"][0]["created_at"] = "2024-05-01T09:00:00"
        newer = build_payload(2)
        newer["created_at"] = "2024-05-01T10:00:00Z"
        newer["jobs"][0]["created_at"] = "2024-05-01T10:00:00Z"

        def handler(request):
            page = int(request.url.params["page"])
            return httpx.Response(200, json=[older, newer] if page == 1 else [])

        runtime = DashboardRuntime(SETTINGS, client_factory=factory_for(handler))
        snapshot = await runtime.refresh()

        assert snapshot.total_builds == 2
        [job] = snapshot.jobs
        assert job.last_state == "passed"
        assert job.last_run == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

"""CI Job Health: refresh API.

This file handles two concerns:

1. Refresh: accepts a refresh request, runs the fetch/aggregate pipeline
   as a background task, and returns a refresh_id immediately.

2. Snapshot API: exposes read endpoints a frontend polls for the latest
   ranked job health.

Flow after a refresh request arrives:
    POST /api/refresh
        → create pending RefreshRecord, mark it the latest request
        → start background task
        → return 202 + refresh_id

    background task:
        → DashboardRuntime.refresh()
        → if a newer refresh was requested meanwhile, drop the result
          and mark this one "superseded"
        → otherwise publish the snapshot and mark "complete"
          (or "skipped" with no token, "failed" on a classified error)

    frontend polls:
        GET /api/refresh/{id}       → status of one refresh
        GET /api/snapshot/latest    → ranked jobs, optionally filtered
        GET /api/snapshot/matrix    → jobs-by-commits pivot

Run locally:
    uv run uvicorn main:app --reload
"""

import logging
import logging.handlers
import pathlib
import uuid
from datetime import datetime, timezone
from typing import Literal

import uvicorn
from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, HTTPException
from pydantic import BaseModel

load_dotenv()

from aggregation.filters import filter_jobs
from aggregation.matrix import DEFAULT_MAX_COMMITS, build_commit_matrix
from core.runtime import DashboardRuntime
from integrations.errors import BuildSourceError
from schemas.health import DashboardSnapshot
from schemas.settings import DashboardSettings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_FILE = pathlib.Path(__file__).parent / "ci_job_health.log"
LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_file_handler = logging.handlers.RotatingFileHandler(
    LOG_FILE, maxBytes=1_000_000, backupCount=3, encoding="utf-8",
)
_file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

_root_logger = logging.getLogger()
_root_logger.setLevel(logging.INFO)
_root_logger.addHandler(_file_handler)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App + runtime
# ---------------------------------------------------------------------------

app = FastAPI(title="CI Job Health")

runtime = DashboardRuntime(DashboardSettings.from_env())

# ---------------------------------------------------------------------------
# Refresh store
# ---------------------------------------------------------------------------

class RefreshRecord(BaseModel):
    """A single refresh request, which is what the frontend polls for.

    status lifecycle:
        "pending"    → created when the request arrives
        "complete"   → snapshot published
        "skipped"    → no credentials configured, nothing fetched
        "failed"     → a page fetch failed; error and error_kind are set
        "superseded" → finished after a newer refresh was requested;
                       its snapshot was discarded
    """
    refresh_id: str
    status: Literal["pending", "complete", "skipped", "failed", "superseded"]
    error: str | None = None
    error_kind: str | None = None
    total_builds: int | None = None
    job_count: int | None = None
    created_at: str = ""


# In-memory only. A snapshot is recomputed on every refresh, so nothing here
# needs to survive a restart.
MAX_REFRESH_RECORDS = 100

_records: dict[str, RefreshRecord] = {}
_latest_request_id: str | None = None
_snapshot: DashboardSnapshot | None = None


def _save(record: RefreshRecord) -> None:
    _records[record.refresh_id] = record
    # dicts keep insertion order, so the first key is the oldest request
    while len(_records) > MAX_REFRESH_RECORDS:
        del _records[next(iter(_records))]


def _update(refresh_id: str, **changes) -> None:
    if refresh_id not in _records:
        logger.info("Refresh %s was pruned before it finished.", refresh_id)
        return
    _save(_records[refresh_id].model_copy(update=changes))


# ---------------------------------------------------------------------------
# Background refresh task
# ---------------------------------------------------------------------------

async def _run_refresh(refresh_id: str) -> None:
    """Run the pipeline and publish the snapshot if still the latest request.

    Classified build source errors are recorded on the refresh record so the
    frontend always gets a terminal state. Anything else is a bug and is
    logged with its traceback before being recorded.
    """
    global _snapshot

    try:
        snapshot = await runtime.refresh()
    except BuildSourceError as exc:
        logger.error("Refresh %s failed: %s", refresh_id, exc)
        _update(refresh_id, status="failed", error=str(exc), error_kind=exc.kind)
        return
    except Exception as exc:
        logger.exception("Refresh %s crashed.", refresh_id)
        _update(refresh_id, status="failed", error=str(exc), error_kind="internal")
        return

    if snapshot is None:
        _update(refresh_id, status="skipped")
        return

    if refresh_id != _latest_request_id:
        logger.info("Refresh %s superseded by %s, discarding.", refresh_id, _latest_request_id)
        _update(refresh_id, status="superseded")
        return

    _snapshot = snapshot
    _update(
        refresh_id,
        status="complete",
        total_builds=snapshot.total_builds,
        job_count=len(snapshot.jobs),
    )


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health")
def health():
    return {"status": "ok", "configured": runtime.settings.has_credentials}


# ---------------------------------------------------------------------------
# Refresh API
# ---------------------------------------------------------------------------

@app.post("/api/refresh", status_code=202)
async def request_refresh(background_tasks: BackgroundTasks):
    """Start a refresh and return its id immediately."""
    global _latest_request_id

    refresh_id = str(uuid.uuid4())
    _save(RefreshRecord(
        refresh_id=refresh_id,
        status="pending",
        created_at=datetime.now(timezone.utc).isoformat(),
    ))
    _latest_request_id = refresh_id

    background_tasks.add_task(_run_refresh, refresh_id)
    return {"refresh_id": refresh_id, "status": "pending"}


@app.get("/api/refresh/{refresh_id}", response_model=RefreshRecord)
def get_refresh(refresh_id: str):
    """Return the status of one refresh. 404 if the id is unknown."""
    if refresh_id not in _records:
        raise HTTPException(status_code=404, detail=f"Refresh '{refresh_id}' not found.")
    return _records[refresh_id]


# ---------------------------------------------------------------------------
# Snapshot API: frontend polling endpoints
# ---------------------------------------------------------------------------

def _require_snapshot() -> DashboardSnapshot:
    if _snapshot is None:
        raise HTTPException(status_code=404, detail="No snapshot yet.")
    return _snapshot


@app.get("/api/snapshot/latest", response_model=DashboardSnapshot)
def get_latest_snapshot(q: str = "", state: str | None = None, hide_optional: bool = False):
    """Return the latest snapshot, optionally filtered.

    Filters keep the ranked order. Returns 404 until a refresh completes.
    """
    snapshot = _require_snapshot()
    if not q and state is None and not hide_optional:
        return snapshot
    jobs = filter_jobs(snapshot.jobs, text=q, state=state, hide_optional=hide_optional)
    return snapshot.model_copy(update={"jobs": tuple(jobs)})


@app.get("/api/snapshot/matrix")
def get_snapshot_matrix(max_commits: int = DEFAULT_MAX_COMMITS):
    """Return the jobs-by-commits matrix for the latest snapshot."""
    snapshot = _require_snapshot()
    columns = build_commit_matrix(snapshot.jobs, max_commits=max_commits)
    return {
        "generated_at": snapshot.generated_at.isoformat(),
        "jobs": [{"identity": job.identity, "name": job.name} for job in snapshot.jobs],
        "commits": [
            {
                "commit": column.commit,
                "build_number": column.build_number,
                "build_url": column.build_url,
                "timestamp": column.timestamp.isoformat() if column.timestamp else None,
                "cells": {
                    identity: {"state": cell.state, "build_url": cell.build_url}
                    for identity, cell in column.cells.items()
                },
            }
            for column in columns
        ],
    }


if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)

"""Fetch progress event schema.

Events are emitted by the fetcher while it pages through builds so a caller
can show progress. The fetcher is decoupled from whoever listens: it works
the same whether or not anything reads these events.
"""

from enum import Enum

from pydantic import BaseModel


class FetchEventType(str, Enum):
    """The stages of one paginated fetch.

    Extends str so values serialize to plain strings ("page_fetched")
    rather than "FetchEventType.PAGE_FETCHED".

    Values:
        PAGE_REQUESTED: A page request is about to be sent.
        PAGE_FETCHED: A page came back and was folded into the accumulator.
        STOPPED: Pagination finished; the message names the stop reason.
        ERROR: A page request failed and the fetch was aborted.
    """

    PAGE_REQUESTED = "page_requested"
    PAGE_FETCHED = "page_fetched"
    STOPPED = "stopped"
    ERROR = "error"


class FetchEvent(BaseModel):
    """A single progress event emitted during a fetch.

    Attributes:
        event_type: Stage this event represents.
        page: Page number the event refers to (1-based).
        message: Human-readable description (e.g. "50 builds, 12 commits").
        builds_accumulated: Builds kept so far.
        unique_commits: Distinct commits seen so far.
        timestamp_ms: Milliseconds since the fetch started.
    """

    event_type: FetchEventType
    page: int
    message: str
    builds_accumulated: int = 0
    unique_commits: int = 0
    timestamp_ms: float = 0.0

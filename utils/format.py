"""Human-readable time formatting for job health output."""

from datetime import datetime, timezone


def format_duration(started_at: datetime | None, finished_at: datetime | None) -> str:
    """Format how long a job ran.

    Returns "Not started" before the job starts, "Running..." until it
    finishes, then "{m}m {s}s" or "{s}s" when under a minute.
    """
    if started_at is None:
        return "Not started"
    if finished_at is None:
        return "Running..."

    total_seconds = int((finished_at - started_at).total_seconds())
    minutes, seconds = divmod(max(total_seconds, 0), 60)
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def relative_time(moment: datetime, now: datetime | None = None) -> str:
    """Format a past moment relative to now ("5m ago", "3h ago", "2d ago").

    Naive datetimes are treated as UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    elapsed = (now - moment).total_seconds()
    minutes = int(elapsed // 60)
    hours = int(elapsed // 3600)
    days = int(elapsed // 86400)

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    return f"{days}d ago"

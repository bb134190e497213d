"""
Normalizing and summarizing stored activity snapshots.

Snapshots can be built from several fetches of the same day, so the same
commit/PR/issue may show up more than once. Everything here collapses
those duplicates and keeps the cached totals consistent with the lists.
"""

from datetime import date, datetime, timezone
from typing import Callable, Hashable, Iterable, Optional, TypeVar, Union

from model import (
    ActivitySnapshot,
    ActivityStats,
    ActivitySummary,
    CommitRecord,
    IssueRecord,
    PullRequestRecord,
    RepositoryCount,
)

R = TypeVar("R", CommitRecord, PullRequestRecord, IssueRecord)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def parse_timestamp(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp or date into an aware UTC datetime.

    Naive values are taken to be UTC. Returns None for anything unparsable.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text[-1] in "zZ":
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _deduplicate(records: Iterable[R], key: Callable[[R], Hashable]) -> list[R]:
    # A later duplicate replaces the kept one only when strictly newer;
    # unparsable timestamps never win.
    unique: dict[Hashable, R] = {}
    for record in records:
        k = key(record)
        current = unique.get(k)
        if current is None:
            unique[k] = record
            continue

        new_ts = parse_timestamp(record.timestamp)
        old_ts = parse_timestamp(current.timestamp)
        if new_ts is not None and (old_ts is None or new_ts > old_ts):
            unique[k] = record

    return list(unique.values())


def deduplicate_commits(commits: Iterable[CommitRecord]) -> list[CommitRecord]:
    """Remove duplicate commits by SHA, keeping the most recent version."""
    return _deduplicate(commits, lambda c: c.sha)


def deduplicate_pull_requests(prs: Iterable[PullRequestRecord]) -> list[PullRequestRecord]:
    """Remove duplicate pull requests by id, keeping the most recent version."""
    return _deduplicate(prs, lambda pr: pr.id)


def deduplicate_issues(issues: Iterable[IssueRecord]) -> list[IssueRecord]:
    """Remove duplicate issues by id, keeping the most recent version."""
    return _deduplicate(issues, lambda issue: issue.id)


def normalize_activity(snapshot: ActivitySnapshot) -> ActivitySnapshot:
    """
    Deduplicate every list and recompute the totals from them.

    Returns a new snapshot; the input is left alone.
    """
    commits = deduplicate_commits(snapshot.commits)
    pull_requests = deduplicate_pull_requests(snapshot.pull_requests)
    issues = deduplicate_issues(snapshot.issues)

    return snapshot.model_copy(
        update={
            "commits": commits,
            "pull_requests": pull_requests,
            "issues": issues,
            "total_commits": len(commits),
            "total_pull_requests": len(pull_requests),
            "total_issues": len(issues),
        }
    )


def normalize_activities(snapshots: Iterable[ActivitySnapshot]) -> list[ActivitySnapshot]:
    """Normalize each snapshot, keeping the input order."""
    return [normalize_activity(s) for s in snapshots]


def _date_key(snapshot: ActivitySnapshot) -> datetime:
    return parse_timestamp(snapshot.date) or _EPOCH


def sort_activities_by_date(snapshots: Iterable[ActivitySnapshot]) -> list[ActivitySnapshot]:
    """Newest first. Snapshots with an unparsable date sort last."""
    return sorted(snapshots, key=_date_key, reverse=True)


def group_activities_by_date(
    snapshots: Iterable[ActivitySnapshot],
) -> dict[str, list[ActivitySnapshot]]:
    """Group snapshots by their date string, in first-seen order."""
    grouped: dict[str, list[ActivitySnapshot]] = {}
    for snapshot in snapshots:
        grouped.setdefault(snapshot.date, []).append(snapshot)
    return grouped


def filter_activities_by_date_range(
    snapshots: Iterable[ActivitySnapshot],
    start: Union[str, date, datetime],
    end: Union[str, date, datetime],
) -> list[ActivitySnapshot]:
    """Keep snapshots whose date lies in [start, end], both ends inclusive."""
    start_dt = parse_timestamp(start)
    end_dt = parse_timestamp(end)
    if start_dt is None or end_dt is None:
        raise ValueError("start and end must be valid dates")

    result = []
    for snapshot in snapshots:
        day = parse_timestamp(snapshot.date)
        if day is not None and start_dt <= day <= end_dt:
            result.append(snapshot)
    return result


def _has_activity(snapshot: ActivitySnapshot) -> bool:
    return (
        snapshot.total_commits > 0
        or snapshot.total_pull_requests > 0
        or snapshot.total_issues > 0
    )


def optimize_activity_data(snapshots: Iterable[ActivitySnapshot]) -> list[ActivitySnapshot]:
    """
    Normalize, drop days with no activity and sort newest first.

    Idempotent: running it on its own output changes nothing.
    """
    normalized = [s for s in normalize_activities(snapshots) if _has_activity(s)]
    return sort_activities_by_date(normalized)


def _repository_counts(snapshots: Iterable[ActivitySnapshot]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for snapshot in snapshots:
        for record in [*snapshot.commits, *snapshot.pull_requests, *snapshot.issues]:
            counts[record.repository] = counts.get(record.repository, 0) + 1
    return counts


def calculate_activity_stats(snapshots: Iterable[ActivitySnapshot]) -> ActivityStats:
    """
    Aggregate totals, per-day averages and the most active repository.

    Averages are 0 when there are no days. Ties for most active repository
    go to the one seen first.
    """
    snapshots = list(snapshots)

    total_commits = sum(s.total_commits for s in snapshots)
    total_prs = sum(s.total_pull_requests for s in snapshots)
    total_issues = sum(s.total_issues for s in snapshots)

    counts = _repository_counts(snapshots)
    most_active: Optional[str] = None
    most_active_count = 0
    for repository, count in counts.items():
        if count > most_active_count:
            most_active = repository
            most_active_count = count

    active_days = len(snapshots)

    return ActivityStats(
        total_activities=len(snapshots),
        total_commits=total_commits,
        total_pull_requests=total_prs,
        total_issues=total_issues,
        unique_repositories=set(counts),
        active_days=active_days,
        average_commits_per_day=total_commits / active_days if active_days else 0,
        average_prs_per_day=total_prs / active_days if active_days else 0,
        average_issues_per_day=total_issues / active_days if active_days else 0,
        most_active_repository=most_active,
        most_active_repository_count=most_active_count,
    )


def create_activity_summary(
    snapshots: Iterable[ActivitySnapshot],
    user_id: str,
    now: Optional[datetime] = None,
) -> ActivitySummary:
    """Compact summary for dashboards and for feeding summary generation."""
    now = now or datetime.now(timezone.utc)
    optimized = optimize_activity_data(snapshots)
    stats = calculate_activity_stats(optimized)

    dates = [d for d in (parse_timestamp(s.date) for s in optimized) if d is not None]
    start = min(dates) if dates else now
    end = max(dates) if dates else now

    # sorted() is stable, so equal counts keep first-seen order
    ranked = sorted(_repository_counts(optimized).items(), key=lambda kv: kv[1], reverse=True)
    top_repositories = [RepositoryCount(name=name, count=count) for name, count in ranked[:10]]

    return ActivitySummary(
        user_id=user_id,
        start=start,
        end=end,
        stats=stats,
        top_repositories=top_repositories,
        recent_activities=optimized[:20],
        last_updated=now,
    )

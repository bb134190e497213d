"""
Pipeline module for turning GitHub activity into stored daily snapshots.

1. Aggregate raw activity from GitHub for the window
2. Parse it into stored record models, bucketed per UTC day
3. Normalize and validate each day
4. Upsert one snapshot per (user, date)
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import NamedTuple, Optional, Sequence

from loguru import logger

from aggregator import aggregate
from config import Settings
from github_api import GitHubClient
from model import (
    ActivitySnapshot,
    CommitRecord,
    DeveloperActivity,
    GithubCommit,
    GithubIssue,
    GithubPullRequest,
    IssueRecord,
    PullRequestRecord,
)
from normalize import normalize_activity, parse_timestamp
from validation import validate_activity


class PipelineResult(NamedTuple):
    activity: DeveloperActivity
    snapshots: list[ActivitySnapshot]


def parse_commits(commits: Sequence[GithubCommit]) -> list[CommitRecord]:
    """Parse GitHub commit data into CommitRecord models."""
    records = []
    for commit in commits:
        records.append(
            CommitRecord(
                sha=commit.sha,
                message=commit.commit.message,
                url=commit.html_url,
                repository=commit.repository_full_name or "",
                additions=commit.stats.additions if commit.stats else 0,
                deletions=commit.stats.deletions if commit.stats else 0,
                timestamp=commit.commit.author.date,
            )
        )
    return records


def parse_pull_requests(prs: Sequence[GithubPullRequest]) -> list[PullRequestRecord]:
    """
    Parse GitHub PR data into PullRequestRecord models.

    The list endpoint reports merged PRs as "closed" with merged_at set.
    """
    records = []
    for pr in prs:
        state = "merged" if pr.merged_at else pr.state
        action = {"merged": "merged", "closed": "closed"}.get(state, "opened")

        records.append(
            PullRequestRecord(
                id=pr.id,
                title=pr.title,
                url=pr.html_url,
                repository=pr.repository_full_name or "",
                state=state,
                action=action,
                additions=pr.additions,
                deletions=pr.deletions,
                timestamp=pr.updated_at or pr.created_at,
            )
        )
    return records


def parse_issues(issues: Sequence[GithubIssue]) -> list[IssueRecord]:
    """Parse GitHub issue data into IssueRecord models."""
    records = []
    for issue in issues:
        records.append(
            IssueRecord(
                id=issue.id,
                title=issue.title,
                url=issue.html_url,
                repository=issue.repository_full_name or "",
                state=issue.state,
                action="closed" if issue.state == "closed" else "opened",
                timestamp=issue.updated_at or issue.created_at,
            )
        )
    return records


def day_range(start: date, end: date) -> list[date]:
    """Every calendar day in [start, end)."""
    return [start + timedelta(days=n) for n in range((end - start).days)]


def _day_of(timestamp: Optional[str]) -> Optional[str]:
    moment = parse_timestamp(timestamp)
    return moment.astimezone(timezone.utc).date().isoformat() if moment else None


def build_snapshots(
    activity: DeveloperActivity,
    user_id: str,
    start: date,
    end: date,
    fetched_at: Optional[datetime] = None,
) -> list[ActivitySnapshot]:
    """
    Split an aggregated window into one normalized snapshot per day.

    Commits are bucketed by author date, PRs and issues by created_at, the
    same fields the aggregator filtered on. Days without activity still
    get an (empty) snapshot.

    Args:
        activity: Aggregated activity for the whole window
        user_id: Owner of the snapshots
        start: First day (inclusive)
        end: Last day (exclusive)
        fetched_at: Fetch time to stamp on every snapshot, defaults to now

    Returns:
        One normalized ActivitySnapshot per day, oldest first
    """
    fetched_at = fetched_at or datetime.now(timezone.utc)
    days = {
        day.isoformat(): ActivitySnapshot(user_id=user_id, date=day.isoformat())
        for day in day_range(start, end)
    }

    for commit, record in zip(activity.commits, parse_commits(activity.commits)):
        day = days.get(_day_of(commit.commit.author.date))
        if day is not None:
            day.commits.append(record)

    for pr, record in zip(activity.pull_requests, parse_pull_requests(activity.pull_requests)):
        day = days.get(_day_of(pr.created_at))
        if day is not None:
            day.pull_requests.append(record)

    for issue, record in zip(activity.issues, parse_issues(activity.issues)):
        day = days.get(_day_of(issue.created_at))
        if day is not None:
            day.issues.append(record)

    return [
        normalize_activity(snapshot).model_copy(update={"fetched_at": fetched_at})
        for snapshot in days.values()
    ]


def write_snapshots_to_db(snapshots: Sequence[ActivitySnapshot], store) -> list[ActivitySnapshot]:
    """
    Validate and upsert snapshots.

    An existing row keeps its id. Snapshots that fail validation are
    logged and not written, so the previous cache entry stays in place.
    """
    if not snapshots:
        logger.info("No snapshots to write")
        return []

    written = []
    for snapshot in snapshots:
        existing = store.find_snapshot(snapshot.user_id, snapshot.date)
        snapshot = snapshot.model_copy(
            update={"id": existing.id if existing else uuid.uuid4().hex}
        )

        result = validate_activity(snapshot)
        for warning in result.warnings:
            logger.warning(f"{snapshot.date}: {warning}")
        if not result.is_valid:
            logger.error(f"Not storing invalid snapshot for {snapshot.date}: {result.errors}")
            continue

        written.append(store.upsert_snapshot(snapshot))

    logger.info(f"Upserted {len(written)} of {len(snapshots)} snapshots")
    return written


def run_pipeline(
    store,
    client: GitHubClient,
    user_id: str,
    repository_ids: Sequence[str],
    start: date,
    end: date,
    settings: Optional[Settings] = None,
) -> PipelineResult:
    """
    Execute the full pipeline for one user and window [start, end).

    Args:
        store: SupabaseStore or MemoryStore to write snapshots to
        client: GitHub client for the user's token
        user_id: User the snapshots belong to
        repository_ids: Tracked "owner/repo" names
        start: First day (inclusive)
        end: Last day (exclusive)
        settings: Paging and line-count options, defaults to Settings()

    Returns:
        PipelineResult with the aggregated activity and the stored
        snapshots, oldest day first

    Raises:
        ValueError: end is not after start
    """
    settings = settings or Settings()
    if end <= start:
        raise ValueError("end must be after start")

    logger.info(f"Starting pipeline for user {user_id}: {start} to {end}")

    since = datetime(start.year, start.month, start.day, tzinfo=timezone.utc)
    until = datetime(end.year, end.month, end.day, tzinfo=timezone.utc)

    activity = aggregate(
        client,
        repository_ids,
        since=since,
        until=until,
        per_page=settings.per_page,
        max_pages=settings.max_pages,
        max_workers=settings.max_workers,
        count_pr_lines=settings.count_pr_lines,
        include_commit_stats=settings.include_commit_stats,
        include_pr_details=settings.include_pr_details,
    )

    snapshots = build_snapshots(activity, user_id, start, end)
    written = write_snapshots_to_db(snapshots, store)

    logger.info("Pipeline completed successfully")
    return PipelineResult(activity=activity, snapshots=written)

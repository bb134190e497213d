"""
Aggregate developer activity across repositories for a date window.

For each "owner/repo":
1. Fetch repository info
2. Fetch commits (filtered by GitHub on since/until/author)
3. Fetch PRs and issues, then filter them here by created_at and author
4. Merge everything into one DeveloperActivity

One repository failing (renamed, deleted, access revoked) is logged and
skipped; the others still count. A rate limit stops further fetching but
keeps what was already gathered, and records the reset time on the result.
A rejected token (401) aborts the run.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, NamedTuple, Optional, Sequence, Union

from loguru import logger

from errors import AuthError, RateLimitError
from github_api import GitHubClient, Timestamp, format_timestamp
from model import (
    AggregateStats,
    ApiResponse,
    DeveloperActivity,
    GithubCommit,
    GithubIssue,
    GithubPullRequest,
    GithubRepository,
)
from normalize import parse_timestamp


class RepositoryActivity(NamedTuple):
    repository: GithubRepository
    commits: list[GithubCommit]
    pull_requests: list[GithubPullRequest]
    issues: list[GithubIssue]


def split_repository_id(repository_id: str) -> Optional[tuple[str, str]]:
    """Split "owner/repo". Returns None when it is not of that form."""
    parts = repository_id.strip().split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]


def in_window(
    timestamp: Optional[str], since: Optional[datetime], until: Optional[datetime]
) -> bool:
    """since <= timestamp < until; an open bound always passes."""
    moment = parse_timestamp(timestamp)
    if moment is None:
        return False
    return (since is None or moment >= since) and (until is None or moment < until)


def _same_login(login: Optional[str], author: str) -> bool:
    return login is not None and login.casefold() == author.casefold()


def collect_pages(
    fetch_page: Callable[[int], ApiResponse],
    max_pages: int,
    stop_before: Optional[datetime] = None,
) -> list:
    """
    Follow pagination until GitHub has no next page or max_pages is hit.

    With stop_before, the listing must be sorted by updated_at descending;
    paging stops once a page ends with an item updated before stop_before.
    """
    items = []
    page = 1
    for _ in range(max_pages):
        response = fetch_page(page)
        items.extend(response.data)

        if stop_before is not None and response.data:
            oldest = parse_timestamp(response.data[-1].updated_at)
            if oldest is not None and oldest < stop_before:
                break

        if response.next_page is None:
            break
        page = response.next_page
    else:
        logger.debug(f"Stopped paging after {max_pages} pages")

    return items


def _ensure_budget(client: GitHubClient) -> None:
    rate_limit = client.last_rate_limit
    if rate_limit and rate_limit.remaining == 0 and rate_limit.reset > datetime.now(timezone.utc):
        raise RateLimitError(rate_limit.reset)


def fetch_repository_activity(
    client: GitHubClient,
    owner: str,
    repo: str,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    author: Optional[str] = None,
    per_page: int = 100,
    max_pages: int = 10,
    include_commit_stats: bool = False,
    include_pr_details: bool = False,
) -> RepositoryActivity:
    """
    Fetch and filter everything for one repository.

    Commits are filtered by GitHub; PRs and issues are filtered here by
    created_at and, when author is given, by login.

    Args:
        client: GitHub client for the user's token
        owner: Repository owner
        repo: Repository name
        since: Window start (inclusive), or None for no lower bound
        until: Window end (exclusive), or None for no upper bound
        author: Optional GitHub login to filter by
        per_page: Page size for every listing
        max_pages: Page cap for every listing
        include_commit_stats: Fetch each commit's detail for line stats
        include_pr_details: Fetch each PR's detail for line stats

    Returns:
        RepositoryActivity with every record tagged with the repository name

    Raises:
        RateLimitError, AuthError, RepositoryNotAccessibleError or
        UpstreamApiError from the client.
    """
    _ensure_budget(client)

    repository = client.get_repository(owner, repo)
    full_name = repository.full_name

    commits = collect_pages(
        lambda page: client.list_commits(
            owner, repo, since=since, until=until, author=author, page=page, per_page=per_page
        ),
        max_pages,
    )
    if include_commit_stats:
        commits = [
            commit.model_copy(update={"stats": client.get_commit(owner, repo, commit.sha).stats})
            for commit in commits
        ]

    prs = collect_pages(
        lambda page: client.list_pull_requests(
            owner, repo, state="all", sort="updated", direction="desc", page=page, per_page=per_page
        ),
        max_pages,
        stop_before=since,
    )
    prs = [
        pr
        for pr in prs
        if in_window(pr.created_at, since, until)
        and (author is None or _same_login(pr.user.login, author))
    ]
    if include_pr_details:
        prs = [client.get_pull_request(owner, repo, pr.number) for pr in prs]

    issues = collect_pages(
        lambda page: client.list_issues(
            owner,
            repo,
            state="all",
            sort="updated",
            direction="desc",
            assignee=author,
            page=page,
            per_page=per_page,
        ),
        max_pages,
        stop_before=since,
    )
    issues = [
        issue
        for issue in issues
        if in_window(issue.created_at, since, until)
        and (
            author is None
            or _same_login(issue.user.login, author)
            or any(_same_login(a.login, author) for a in issue.assignees)
        )
    ]

    tag = {"repository_full_name": full_name}
    logger.debug(
        f"{full_name}: {len(commits)} commits, {len(prs)} PRs, {len(issues)} issues in window"
    )
    return RepositoryActivity(
        repository=repository,
        commits=[c.model_copy(update=tag) for c in commits],
        pull_requests=[pr.model_copy(update=tag) for pr in prs],
        issues=[i.model_copy(update=tag) for i in issues],
    )


def compute_stats(activity: DeveloperActivity, count_pr_lines: bool = True) -> AggregateStats:
    """
    Totals and line deltas for an aggregated window.

    With count_pr_lines, PR additions/deletions are added on top of commit
    stats. A PR and its own commits then count the same lines twice.
    """
    lines_added = sum(c.stats.additions for c in activity.commits if c.stats)
    lines_deleted = sum(c.stats.deletions for c in activity.commits if c.stats)
    if count_pr_lines:
        lines_added += sum(pr.additions or 0 for pr in activity.pull_requests)
        lines_deleted += sum(pr.deletions or 0 for pr in activity.pull_requests)

    return AggregateStats(
        total_commits=len(activity.commits),
        total_prs=len(activity.pull_requests),
        total_issues=len(activity.issues),
        lines_added=lines_added,
        lines_deleted=lines_deleted,
        repositories_worked_on=len(activity.repositories),
    )


def aggregate(
    client: GitHubClient,
    repository_ids: Sequence[str],
    since: Timestamp = None,
    until: Timestamp = None,
    author: Optional[str] = None,
    *,
    per_page: int = 100,
    max_pages: int = 10,
    max_workers: int = 1,
    count_pr_lines: bool = True,
    include_commit_stats: bool = False,
    include_pr_details: bool = False,
) -> DeveloperActivity:
    """
    Build a DeveloperActivity for repository_ids over [since, until).

    Results keep the input order of repository_ids, also when fetched in
    parallel (max_workers > 1). Malformed ids are skipped silently.

    Args:
        client: GitHub client for the user's token
        repository_ids: "owner/repo" strings, in priority order
        since: Window start (ISO 8601 string, date or datetime)
        until: Window end, exclusive
        author: Optional GitHub login to filter by
        per_page: Page size for every listing
        max_pages: Page cap for every listing
        max_workers: Repositories fetched in parallel (1 = sequential)
        count_pr_lines: Add PR line deltas on top of commit line deltas
        include_commit_stats: Fetch each commit's detail for line stats
        include_pr_details: Fetch each PR's detail for line stats

    Returns:
        DeveloperActivity. Repositories that failed are listed in
        failed_repositories. When GitHub rate limited the run, fetching
        stopped there, the remaining repositories are listed as failed and
        rate_limited_until holds the reset time.

    Raises:
        ValueError: since or until is not a valid timestamp
        RateLimitError: rate limited before any repository succeeded
        AuthError: GitHub rejected the token
    """
    since_dt = parse_timestamp(since) if since is not None else None
    until_dt = parse_timestamp(until) if until is not None else None
    if (since is not None and since_dt is None) or (until is not None and until_dt is None):
        raise ValueError("since and until must be ISO 8601 timestamps")

    targets = []
    for repository_id in repository_ids:
        parsed = split_repository_id(repository_id)
        if parsed is None:
            logger.debug(f"Skipping malformed repository id {repository_id!r}")
            continue
        targets.append((repository_id, *parsed))

    def fetch(target: tuple[str, str, str]) -> Union[RepositoryActivity, Exception]:
        _, owner, repo = target
        try:
            return fetch_repository_activity(
                client,
                owner,
                repo,
                since=since_dt,
                until=until_dt,
                author=author,
                per_page=per_page,
                max_pages=max_pages,
                include_commit_stats=include_commit_stats,
                include_pr_details=include_pr_details,
            )
        except Exception as e:
            return e

    if max_workers > 1 and len(targets) > 1:
        with ThreadPoolExecutor(max_workers=min(max_workers, len(targets))) as pool:
            outcomes = list(pool.map(fetch, targets))
    else:
        outcomes = []
        for target in targets:
            outcome = fetch(target)
            outcomes.append(outcome)
            if isinstance(outcome, (RateLimitError, AuthError)):
                break

    activity = DeveloperActivity(
        date=format_timestamp(since_dt) or datetime.now(timezone.utc).isoformat()
    )
    rate_limits: list[RateLimitError] = []

    for index, (repository_id, _, _) in enumerate(targets):
        outcome = outcomes[index] if index < len(outcomes) else None
        if isinstance(outcome, AuthError):
            raise outcome
        if outcome is None:
            logger.warning(f"Skipped {repository_id}: rate limited")
            activity.failed_repositories.append(repository_id)
            continue
        if isinstance(outcome, Exception):
            if isinstance(outcome, RateLimitError):
                rate_limits.append(outcome)
            logger.warning(f"Failed to fetch data for {repository_id}: {outcome}")
            activity.failed_repositories.append(repository_id)
            continue

        activity.repositories.append(outcome.repository)
        activity.commits.extend(outcome.commits)
        activity.pull_requests.extend(outcome.pull_requests)
        activity.issues.extend(outcome.issues)

    if rate_limits:
        latest = max(rate_limits, key=lambda e: e.reset_at)
        if not activity.repositories:
            raise latest
        activity.rate_limited_until = latest.reset_at
        logger.warning(
            f"Rate limited until {latest.reset_at.isoformat()}; keeping "
            f"{len(activity.repositories)} of {len(targets)} repositories"
        )

    activity.stats = compute_stats(activity, count_pr_lines=count_pr_lines)

    logger.info(
        f"Aggregated {activity.stats.total_commits} commits, {activity.stats.total_prs} PRs, "
        f"{activity.stats.total_issues} issues from "
        f"{activity.stats.repositories_worked_on}/{len(targets)} repositories"
    )
    return activity

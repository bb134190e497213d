"""
Data models for the GitHub activity service.

Two groups live here:
- Raw GitHub shapes, used to validate API responses before anything else
  touches them.
- Stored records and snapshots. These match the github_tokens,
  repositories and daily_activities tables.
"""

from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")

PR_STATES = ("open", "closed", "merged")
PR_ACTIONS = ("opened", "closed", "merged", "reviewed")
ISSUE_STATES = ("open", "closed")
ISSUE_ACTIONS = ("opened", "closed", "commented")


# ---------------------------------------------------------------------------
# Raw GitHub shapes
# ---------------------------------------------------------------------------


class GithubUser(BaseModel):
    id: int
    login: str
    avatar_url: Optional[str] = None
    type: Optional[str] = None


class GithubRepository(BaseModel):
    """A repository as returned by /user/repos and /repos/{owner}/{repo}."""
    id: int
    name: str
    full_name: str
    private: bool = False
    description: Optional[str] = None
    html_url: str
    clone_url: Optional[str] = None
    default_branch: Optional[str] = None
    language: Optional[str] = None
    stargazers_count: int = 0
    forks_count: int = 0
    open_issues_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    pushed_at: Optional[str] = None
    owner: GithubUser


class GithubCommitAuthor(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    date: str


class GithubCommitDetail(BaseModel):
    message: str
    author: GithubCommitAuthor
    committer: Optional[GithubCommitAuthor] = None


class GithubCommitStats(BaseModel):
    additions: int = 0
    deletions: int = 0
    total: int = 0


class GithubCommit(BaseModel):
    """
    A commit from /repos/{owner}/{repo}/commits.

    The list endpoint never includes stats; only the single-commit
    endpoint does.
    """
    sha: str
    commit: GithubCommitDetail
    author: Optional[GithubUser] = None  # None when the email has no GitHub user
    committer: Optional[GithubUser] = None
    html_url: str
    stats: Optional[GithubCommitStats] = None

    # Set by the aggregator, not by GitHub
    repository_full_name: Optional[str] = None


class GithubPullRequest(BaseModel):
    """
    A pull request from /repos/{owner}/{repo}/pulls.

    additions/deletions are only present on the detail endpoint.
    """
    id: int
    number: int
    title: str
    body: Optional[str] = None
    state: str  # open, closed
    draft: bool = False
    html_url: str
    created_at: str
    updated_at: str
    closed_at: Optional[str] = None
    merged_at: Optional[str] = None
    user: GithubUser
    assignees: list[GithubUser] = []
    additions: Optional[int] = None
    deletions: Optional[int] = None
    changed_files: Optional[int] = None

    repository_full_name: Optional[str] = None


class GithubIssue(BaseModel):
    """An issue from /repos/{owner}/{repo}/issues (pull requests already removed)."""
    id: int
    number: int
    title: str
    body: Optional[str] = None
    state: str  # open, closed
    html_url: str
    created_at: str
    updated_at: str
    closed_at: Optional[str] = None
    user: GithubUser
    assignees: list[GithubUser] = []
    comments: int = 0

    repository_full_name: Optional[str] = None


class RateLimitInfo(BaseModel):
    limit: int
    remaining: int
    reset: datetime
    used: int


class ApiResponse(BaseModel, Generic[T]):
    """One page of a GitHub listing plus the metadata that came with it."""
    data: T
    status: int
    rate_limit: Optional[RateLimitInfo] = None
    next_page: Optional[int] = None


# ---------------------------------------------------------------------------
# Aggregation results
# ---------------------------------------------------------------------------


class AggregateStats(BaseModel):
    total_commits: int = 0
    total_prs: int = 0
    total_issues: int = 0
    lines_added: int = 0
    lines_deleted: int = 0
    repositories_worked_on: int = 0


class DeveloperActivity(BaseModel):
    """Everything fetched for one aggregation window, across repositories."""
    date: str
    repositories: list[GithubRepository] = []
    commits: list[GithubCommit] = []
    pull_requests: list[GithubPullRequest] = []
    issues: list[GithubIssue] = []
    stats: AggregateStats = Field(default_factory=AggregateStats)
    failed_repositories: list[str] = []
    # Set when GitHub throttled the run; repositories from that point on are
    # in failed_repositories
    rate_limited_until: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Stored entities
# ---------------------------------------------------------------------------


class Connection(BaseModel):
    """
    Matches the github_tokens table.

    At most one row per user.
    """
    user_id: str
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    scope: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TrackedRepository(BaseModel):
    """
    Matches the repositories table.

    (user_id, github_repo_id) is unique; disconnecting flips is_active.
    """
    id: Optional[str] = None
    user_id: str
    github_repo_id: int
    name: str
    full_name: str
    private: bool = False
    default_branch: str = "main"
    language: Optional[str] = None
    description: Optional[str] = None
    html_url: str
    clone_url: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Records are deliberately lenient: a snapshot loaded from storage may be
# partial or legacy, and the validation engine reports on it instead of
# refusing to load it.


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CommitRecord(_Record):
    sha: str = ""
    message: str = ""
    url: str = ""
    repository: str = ""
    additions: int = 0
    deletions: int = 0
    timestamp: str = ""


class PullRequestRecord(_Record):
    id: Optional[int] = None
    title: str = ""
    url: str = ""
    repository: str = ""
    state: str = "open"  # open, closed, merged
    action: str = "opened"  # opened, closed, merged, reviewed
    additions: Optional[int] = None
    deletions: Optional[int] = None
    timestamp: str = ""


class IssueRecord(_Record):
    id: Optional[int] = None
    title: str = ""
    url: str = ""
    repository: str = ""
    state: str = "open"  # open, closed
    action: str = "opened"  # opened, closed, commented
    timestamp: str = ""


class ActivitySnapshot(_Record):
    """
    Matches the daily_activities table.

    One row per (user_id, date). Totals are a cache of the list lengths;
    normalization recomputes them.
    """
    id: Optional[str] = None
    user_id: Optional[str] = None
    date: str = ""  # YYYY-MM-DD
    commits: list[CommitRecord] = []
    pull_requests: list[PullRequestRecord] = []
    issues: list[IssueRecord] = []
    total_commits: int = 0
    total_pull_requests: int = 0
    total_issues: int = 0
    fetched_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Derived reports
# ---------------------------------------------------------------------------


class ActivityStats(BaseModel):
    total_activities: int = 0
    total_commits: int = 0
    total_pull_requests: int = 0
    total_issues: int = 0
    unique_repositories: set[str] = set()
    active_days: int = 0
    average_commits_per_day: float = 0
    average_prs_per_day: float = 0
    average_issues_per_day: float = 0
    most_active_repository: Optional[str] = None
    most_active_repository_count: int = 0


class RepositoryCount(BaseModel):
    name: str
    count: int


class ActivitySummary(BaseModel):
    user_id: str
    start: datetime
    end: datetime
    stats: ActivityStats
    top_repositories: list[RepositoryCount] = []
    recent_activities: list[ActivitySnapshot] = []
    last_updated: datetime


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = []
    warnings: list[str] = []


class ValidationSummary(BaseModel):
    valid_count: int
    invalid_count: int
    total_warnings: int
    results: list[ValidationResult] = []


class ConnectionStatus(BaseModel):
    connected: bool
    token_expiry: Optional[datetime] = None
    connected_repositories: int = 0
    repositories: list[TrackedRepository] = []


class SyncResult(BaseModel):
    message: str
    date: str
    stats: AggregateStats
    failed_repositories: list[str] = []
    rate_limited_until: Optional[datetime] = None

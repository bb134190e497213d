"""
Operations the HTTP layer calls.

Every method takes the authenticated user id; authentication itself
happens before we get here.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional, Union

from loguru import logger

from aggregator import collect_pages
from config import Settings
from connection import ConnectionPolicy
from errors import (
    ActivityNotFoundError,
    NotConnectedError,
    RateLimitError,
    RepositoryNotAccessibleError,
)
from github_api import GitHubClient
from model import (
    ActivitySnapshot,
    ActivitySummary,
    Connection,
    ConnectionStatus,
    GithubRepository,
    RateLimitInfo,
    SyncResult,
    TrackedRepository,
)
from normalize import create_activity_summary, optimize_activity_data, parse_timestamp
from pipeline import PipelineResult, run_pipeline
from rate_limit import KeyedLock, RequestRateLimiter, TokenBudget

DateLike = Union[str, date, datetime]
MAX_RECENT_LIMIT = 100


def parse_date(value: DateLike) -> date:
    """Accept a date, a datetime or an ISO 8601 string and return the UTC day."""
    if isinstance(value, datetime):
        moment = parse_timestamp(value)
        return moment.astimezone(timezone.utc).date()
    if isinstance(value, date):
        return value
    moment = parse_timestamp(value)
    if moment is None:
        raise ValueError(f"Invalid date: {value!r}")
    return moment.astimezone(timezone.utc).date()


class ActivityService:
    def __init__(
        self,
        store,
        settings: Optional[Settings] = None,
        client_factory: Optional[Callable[[str], GitHubClient]] = None,
        budget: Optional[TokenBudget] = None,
        policy: Optional[ConnectionPolicy] = None,
        rate_limiter: Optional[RequestRateLimiter] = None,
    ):
        self.store = store
        self.settings = settings or Settings()
        self.budget = budget or TokenBudget(self.settings.max_concurrent_per_token)
        self.client_factory = client_factory or self._build_client
        self.policy = policy or ConnectionPolicy(store)
        self.rate_limiter = rate_limiter
        self._sync_locks = KeyedLock()

    def _build_client(self, token: str) -> GitHubClient:
        return GitHubClient(
            token,
            base_url=self.settings.github_api_url,
            timeout=self.settings.github_api_timeout,
            user_agent=self.settings.github_user_agent,
            budget=self.budget,
        )

    def _client_for(self, user_id: str) -> GitHubClient:
        connection = self.policy.assert_usable(user_id)
        return self.client_factory(connection.access_token)

    def check_request_rate(self, user_id: str) -> None:
        """Raise RateLimitError once the user has used up their request quota."""
        if self.rate_limiter is None:
            return
        decision = self.rate_limiter.hit(user_id)
        if not decision.allowed:
            reset_at = datetime.now(timezone.utc) + timedelta(seconds=decision.reset_in)
            raise RateLimitError(reset_at, message="Rate limit exceeded")

    # Connection

    def get_connection_status(self, user_id: str) -> ConnectionStatus:
        check = self.policy.check_connection(user_id)
        repositories = self.store.list_repositories(user_id, active_only=True)
        return ConnectionStatus(
            connected=check.connected,
            token_expiry=check.expires_at,
            connected_repositories=len(repositories),
            repositories=repositories,
        )

    def store_token(
        self,
        user_id: str,
        access_token: str,
        refresh_token: Optional[str] = None,
        token_type: str = "bearer",
        scope: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> Connection:
        """Create or replace the user's connection. Reconnecting goes through here."""
        if not access_token:
            raise ValueError("Access token is required")

        connection = self.store.upsert_connection(
            Connection(
                user_id=user_id,
                access_token=access_token,
                refresh_token=refresh_token,
                token_type=token_type or "bearer",
                scope=scope,
                expires_at=expires_at,
            )
        )
        logger.info(f"Stored GitHub token for user {user_id}")
        return connection

    def validate_token(self, user_id: str) -> Connection:
        return self.policy.assert_usable(user_id)

    def disconnect_account(self, user_id: str) -> None:
        """Deactivate every tracked repository and delete the token."""
        connection = self.store.find_connection(user_id)
        if connection is None:
            raise NotConnectedError("No token found to delete")

        for repository in self.store.list_repositories(user_id, active_only=True):
            self.store.set_repository_active(user_id, repository.id, False)

        self.store.delete_connection(user_id)
        self.budget.release_token(connection.access_token)
        logger.info(f"Disconnected GitHub account for user {user_id}")

    # Repositories

    def list_available_repositories(
        self, user_id: str
    ) -> tuple[list[GithubRepository], Optional[RateLimitInfo]]:
        """Repositories the user can see on GitHub right now (live call)."""
        self.check_request_rate(user_id)
        client = self._client_for(user_id)
        repositories = collect_pages(
            lambda page: client.list_repositories(
                visibility="all",
                sort="updated",
                direction="desc",
                page=page,
                per_page=self.settings.per_page,
            ),
            self.settings.max_pages,
        )
        return repositories, client.last_rate_limit

    def connect_repository(self, user_id: str, owner: str, repo: str) -> TrackedRepository:
        """
        Start tracking owner/repo.

        A repository that was tracked before is reactivated, not duplicated.
        """
        if not owner or not repo:
            raise ValueError("Owner and repository name are required")

        self.check_request_rate(user_id)
        client = self._client_for(user_id)
        repo_data = client.get_repository(owner, repo)

        existing = self.store.find_repository_by_github_id(user_id, repo_data.id)
        if existing:
            updated = self.store.set_repository_active(user_id, existing.id, True)
            if updated is None:
                raise RepositoryNotAccessibleError(repo_data.full_name)
            logger.info(f"Reconnected {repo_data.full_name} for user {user_id}")
            return updated

        repository = self.store.upsert_repository(
            TrackedRepository(
                user_id=user_id,
                github_repo_id=repo_data.id,
                name=repo_data.name,
                full_name=repo_data.full_name,
                private=repo_data.private,
                default_branch=repo_data.default_branch or "main",
                language=repo_data.language,
                description=repo_data.description,
                html_url=repo_data.html_url,
                clone_url=repo_data.clone_url,
                is_active=True,
            )
        )
        logger.info(f"Connected {repo_data.full_name} for user {user_id}")
        return repository

    def disconnect_repository(self, user_id: str, repository_id: str) -> None:
        updated = self.store.set_repository_active(user_id, repository_id, False)
        if updated is None:
            raise RepositoryNotAccessibleError(
                repository_id, message="Repository not found or access denied"
            )
        logger.info(f"Disconnected {updated.full_name} for user {user_id}")

    # Activity

    def _sync(self, user_id: str, start: date, end: date) -> PipelineResult:
        # Two overlapping syncs for one user would race on the same rows
        with self._sync_locks.hold(user_id):
            client = self._client_for(user_id)
            repositories = self.policy.require_repositories(user_id)
            return run_pipeline(
                self.store,
                client,
                user_id,
                [r.full_name for r in repositories],
                start,
                end,
                settings=self.settings,
            )

    def fetch_activity(
        self, user_id: str, start_date: DateLike, end_date: Optional[DateLike] = None
    ) -> list[ActivitySnapshot]:
        """
        Rebuild and store snapshots for [start_date, end_date).

        end_date defaults to the day after start_date. Returns one snapshot
        per day, oldest first.
        """
        start = parse_date(start_date)
        end = parse_date(end_date) if end_date is not None else start + timedelta(days=1)
        if end <= start:
            raise ValueError("endDate must be after startDate")

        self.check_request_rate(user_id)
        return self._sync(user_id, start, end).snapshots

    def sync_user_data(self, user_id: str, day: DateLike) -> SyncResult:
        """Re-sync a single day and report the aggregate stats."""
        start = parse_date(day)
        self.check_request_rate(user_id)
        return self._sync_day(user_id, start)

    def _sync_day(self, user_id: str, start: date) -> SyncResult:
        result = self._sync(user_id, start, start + timedelta(days=1))
        return SyncResult(
            message="GitHub data synced successfully",
            date=start.isoformat(),
            stats=result.activity.stats,
            failed_repositories=result.activity.failed_repositories,
            rate_limited_until=result.activity.rate_limited_until,
        )

    def get_daily_activity(self, user_id: str, day: DateLike) -> ActivitySnapshot:
        key = parse_date(day).isoformat()
        snapshot = self.store.find_snapshot(user_id, key)
        if snapshot is None:
            raise ActivityNotFoundError(key)
        return snapshot

    def get_recent_activities(self, user_id: str, limit: int = 30) -> list[ActivitySnapshot]:
        """Most recent days with any activity, newest first."""
        if not 1 <= limit <= MAX_RECENT_LIMIT:
            raise ValueError(f"Limit must be a number between 1 and {MAX_RECENT_LIMIT}")
        return optimize_activity_data(self.store.list_recent_snapshots(user_id, limit))

    def get_activity_summary(self, user_id: str, limit: int = 30) -> ActivitySummary:
        if not 1 <= limit <= MAX_RECENT_LIMIT:
            raise ValueError(f"Limit must be a number between 1 and {MAX_RECENT_LIMIT}")
        return create_activity_summary(self.store.list_recent_snapshots(user_id, limit), user_id)

    def handle_repository_event(
        self,
        github_repo_id: int,
        repository_full_name: str,
        day: Optional[DateLike] = None,
    ) -> list[str]:
        """
        Re-sync one day for every user tracking a repository (webhook path).

        One user's failure does not stop the others. These syncs do not count
        against the users' request quota. Returns the user ids that synced
        successfully.
        """
        day = parse_date(day) if day is not None else datetime.now(timezone.utc).date()
        synced = []
        for user_id in self.store.find_users_with_repository(github_repo_id):
            try:
                self._sync_day(user_id, day)
            except Exception as e:
                logger.error(f"Failed to sync {repository_full_name} for user {user_id}: {e}")
                continue
            logger.info(f"Synced repository {repository_full_name} for user {user_id}")
            synced.append(user_id)
        return synced

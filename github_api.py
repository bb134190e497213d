"""
GitHub API client for fetching developer activity.

Handles all calls to GitHub for one access token.

GitHub API uses:
- Base URL: https://api.github.com
- Auth: OAuth / personal access token as Bearer token
- Pagination: Link header or per_page/page params
- Quota: X-RateLimit-* headers on every response
"""

from contextlib import nullcontext
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Type, TypeVar, Union
from urllib.parse import parse_qs, urlparse

import requests
from loguru import logger
from pydantic import BaseModel, ValidationError

from errors import AuthError, RateLimitError, RepositoryNotAccessibleError, UpstreamApiError
from model import (
    ApiResponse,
    GithubCommit,
    GithubIssue,
    GithubPullRequest,
    GithubRepository,
    RateLimitInfo,
)
from rate_limit import TokenBudget

BASE_URL = "https://api.github.com"
API_VERSION = "2022-11-28"

M = TypeVar("M", bound=BaseModel)
Timestamp = Union[str, datetime, date, None]


def format_timestamp(value: Timestamp) -> Optional[str]:
    """Render a datetime/date as the ISO 8601 UTC string GitHub expects."""
    if value is None or isinstance(value, str):
        return value
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_rate_limit(headers) -> Optional[RateLimitInfo]:
    """Read X-RateLimit-* headers. Returns None if any of them is missing."""
    limit = headers.get("X-RateLimit-Limit")
    remaining = headers.get("X-RateLimit-Remaining")
    reset = headers.get("X-RateLimit-Reset")
    if not (limit and remaining and reset):
        return None

    try:
        limit_i, remaining_i, reset_i = int(limit), int(remaining), int(reset)
    except ValueError:
        return None

    used = headers.get("X-RateLimit-Used")
    return RateLimitInfo(
        limit=limit_i,
        remaining=remaining_i,
        reset=datetime.fromtimestamp(reset_i, tz=timezone.utc),
        used=int(used) if used and used.isdigit() else limit_i - remaining_i,
    )


def parse_next_page(headers) -> Optional[int]:
    """Page number of the rel="next" link, if there is one."""
    link_header = headers.get("Link")
    if not link_header:
        return None

    for link in link_header.split(", "):
        if 'rel="next"' in link:
            url = link.split(";")[0].strip("<> ")
            page = parse_qs(urlparse(url).query).get("page")
            if page and page[0].isdigit():
                return int(page[0])
    return None


class GitHubClient:
    """
    Client for one access token.

    Built explicitly and handed to whatever needs it, so tests can pass a
    fake session instead of patching a global.
    """

    def __init__(
        self,
        token: str,
        base_url: str = BASE_URL,
        timeout: float = 30,
        user_agent: str = "github-activity/1.0",
        session: Optional[requests.Session] = None,
        budget: Optional[TokenBudget] = None,
    ):
        if not token:
            raise ValueError("token cannot be empty")

        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent
        self.session = session or requests.Session()
        self.budget = budget
        self.last_rate_limit: Optional[RateLimitInfo] = None

    def _get_headers(self) -> dict:
        return {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self.token}",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": self.user_agent,
        }

    def _get(
        self, path: str, params: Optional[dict] = None, repository: Optional[str] = None
    ) -> requests.Response:
        url = f"{self.base_url}{path}"
        params = {k: v for k, v in (params or {}).items() if v is not None}
        guard = self.budget.acquire(self.token) if self.budget else nullcontext()

        logger.debug(f"GET {path} {params}")
        try:
            with guard:
                response = self.session.get(
                    url, headers=self._get_headers(), params=params, timeout=self.timeout
                )
        except requests.RequestException as e:
            raise UpstreamApiError(f"Request to {path} failed: {e}") from e

        rate_limit = parse_rate_limit(response.headers)
        if rate_limit:
            self.last_rate_limit = rate_limit

        self._raise_for_status(response, repository)
        return response

    def _raise_for_status(self, response: requests.Response, repository: Optional[str]) -> None:
        status = response.status_code
        if status < 400:
            return

        message = _error_message(response)

        if status == 401:
            raise AuthError(message, response=response)

        if status in (403, 429):
            if response.headers.get("X-RateLimit-Remaining") == "0":
                reset = response.headers.get("X-RateLimit-Reset", "")
                if reset.isdigit():
                    reset_at = datetime.fromtimestamp(int(reset), tz=timezone.utc)
                else:
                    reset_at = datetime.now(timezone.utc) + timedelta(seconds=60)
                raise RateLimitError(reset_at, status=status, response=response)

            retry_after = response.headers.get("Retry-After", "")
            if retry_after.isdigit():
                # Secondary rate limit
                reset_at = datetime.now(timezone.utc) + timedelta(seconds=int(retry_after))
                raise RateLimitError(reset_at, message, status=status, response=response)

        if status == 404 and repository:
            raise RepositoryNotAccessibleError(repository)

        raise UpstreamApiError(message, status=status, response=response)

    def _parse_list(self, model: Type[M], response: requests.Response, path: str) -> list[M]:
        payload = _json(response, path)
        if not isinstance(payload, list):
            raise UpstreamApiError(
                f"Expected a list from {path}", status=response.status_code, response=response
            )
        try:
            return [model.model_validate(item) for item in payload]
        except ValidationError as e:
            raise UpstreamApiError(
                f"Unexpected response shape from {path}: {e}",
                status=response.status_code,
                response=response,
            ) from e

    def _parse_one(self, model: Type[M], response: requests.Response, path: str) -> M:
        try:
            return model.model_validate(_json(response, path))
        except ValidationError as e:
            raise UpstreamApiError(
                f"Unexpected response shape from {path}: {e}",
                status=response.status_code,
                response=response,
            ) from e

    def _page(self, data, response: requests.Response) -> ApiResponse:
        return ApiResponse(
            data=data,
            status=response.status_code,
            rate_limit=parse_rate_limit(response.headers),
            next_page=parse_next_page(response.headers),
        )

    def get_rate_limit(self) -> RateLimitInfo:
        """Fetch the core quota for this token."""
        path = "/rate_limit"
        response = self._get(path)
        body = _json(response, path)
        rate = (body.get("rate") if isinstance(body, dict) else None) or {}
        try:
            return RateLimitInfo(
                limit=rate["limit"],
                remaining=rate["remaining"],
                reset=datetime.fromtimestamp(rate["reset"], tz=timezone.utc),
                used=rate.get("used", rate["limit"] - rate["remaining"]),
            )
        except (KeyError, TypeError) as e:
            raise UpstreamApiError(
                "Unexpected response shape from /rate_limit", status=response.status_code
            ) from e

    def list_repositories(
        self,
        visibility: str = "all",
        sort: str = "updated",
        direction: str = "desc",
        page: int = 1,
        per_page: int = 30,
    ) -> ApiResponse[list[GithubRepository]]:
        """List repositories the authenticated user can access."""
        path = "/user/repos"
        response = self._get(
            path,
            {
                "visibility": visibility,
                "sort": sort,
                "direction": direction,
                "page": page,
                "per_page": per_page,
            },
        )
        repositories = self._parse_list(GithubRepository, response, path)
        logger.debug(f"Fetched {len(repositories)} repositories (page {page})")
        return self._page(repositories, response)

    def get_repository(self, owner: str, repo: str) -> GithubRepository:
        """
        Fetch repository information including the numeric ID.

        Raises RepositoryNotAccessibleError when GitHub answers 404.
        """
        if not owner or not repo:
            raise ValueError("owner and repo cannot be empty")

        path = f"/repos/{owner}/{repo}"
        response = self._get(path, repository=f"{owner}/{repo}")
        return self._parse_one(GithubRepository, response, path)

    def list_commits(
        self,
        owner: str,
        repo: str,
        since: Timestamp = None,
        until: Timestamp = None,
        author: Optional[str] = None,
        page: int = 1,
        per_page: int = 30,
    ) -> ApiResponse[list[GithubCommit]]:
        """
        List commits for a repository.

        since/until/author are filtered server-side.
        """
        path = f"/repos/{owner}/{repo}/commits"
        response = self._get(
            path,
            {
                "since": format_timestamp(since),
                "until": format_timestamp(until),
                "author": author,
                "page": page,
                "per_page": per_page,
            },
            repository=f"{owner}/{repo}",
        )
        commits = self._parse_list(GithubCommit, response, path)
        logger.debug(f"Fetched {len(commits)} commits from {owner}/{repo} (page {page})")
        return self._page(commits, response)

    def get_commit(self, owner: str, repo: str, sha: str) -> GithubCommit:
        """Fetch a single commit. Unlike the listing, this includes stats."""
        path = f"/repos/{owner}/{repo}/commits/{sha}"
        response = self._get(path, repository=f"{owner}/{repo}")
        return self._parse_one(GithubCommit, response, path)

    def list_pull_requests(
        self,
        owner: str,
        repo: str,
        state: str = "all",
        sort: str = "updated",
        direction: str = "desc",
        page: int = 1,
        per_page: int = 30,
    ) -> ApiResponse[list[GithubPullRequest]]:
        """List pull requests (open, closed and merged with state="all")."""
        path = f"/repos/{owner}/{repo}/pulls"
        response = self._get(
            path,
            {
                "state": state,
                "sort": sort,
                "direction": direction,
                "page": page,
                "per_page": per_page,
            },
            repository=f"{owner}/{repo}",
        )
        prs = self._parse_list(GithubPullRequest, response, path)
        logger.debug(f"Fetched {len(prs)} PRs from {owner}/{repo} (page {page})")
        return self._page(prs, response)

    def get_pull_request(self, owner: str, repo: str, number: int) -> GithubPullRequest:
        """
        Fetch detailed information for a specific PR.

        Gets additional fields like additions, deletions, changed files.
        """
        path = f"/repos/{owner}/{repo}/pulls/{number}"
        response = self._get(path, repository=f"{owner}/{repo}")
        return self._parse_one(GithubPullRequest, response, path)

    def list_issues(
        self,
        owner: str,
        repo: str,
        state: str = "all",
        sort: str = "updated",
        direction: str = "desc",
        assignee: Optional[str] = None,
        page: int = 1,
        per_page: int = 30,
    ) -> ApiResponse[list[GithubIssue]]:
        """
        List issues for a repository.

        PRs are also issues in GitHub, so the endpoint returns both; anything
        carrying a pull_request marker is dropped here.
        """
        path = f"/repos/{owner}/{repo}/issues"
        response = self._get(
            path,
            {
                "state": state,
                "sort": sort,
                "direction": direction,
                "assignee": assignee,
                "page": page,
                "per_page": per_page,
            },
            repository=f"{owner}/{repo}",
        )

        payload = _json(response, path)
        if not isinstance(payload, list):
            raise UpstreamApiError(
                f"Expected a list from {path}", status=response.status_code, response=response
            )
        try:
            issues = [
                GithubIssue.model_validate(item)
                for item in payload
                if not item.get("pull_request")
            ]
        except ValidationError as e:
            raise UpstreamApiError(
                f"Unexpected response shape from {path}: {e}",
                status=response.status_code,
                response=response,
            ) from e

        logger.debug(f"Fetched {len(issues)} issues from {owner}/{repo} (page {page})")
        return self._page(issues, response)


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return f"GitHub API error {response.status_code}: {body['message']}"
    return f"GitHub API error {response.status_code}"


def _json(response: requests.Response, path: str):
    try:
        return response.json()
    except ValueError as e:
        raise UpstreamApiError(
            f"Invalid JSON from {path}", status=response.status_code, response=response
        ) from e

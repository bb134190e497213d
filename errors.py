"""
Error taxonomy for the GitHub activity service.

Callers switch on the exception class (or its ``kind``), never on the
message text.
"""

from datetime import datetime, timezone
from typing import Any, Optional


class ActivityError(Exception):
    """Base class for every error the service raises on purpose."""
    kind = "error"


class NotConnectedError(ActivityError):
    kind = "not_connected"

    def __init__(self, message: str = "GitHub not connected"):
        super().__init__(message)


class TokenExpiredError(ActivityError):
    """The stored token is past its expiry. There is no in-place refresh."""
    kind = "token_expired"

    def __init__(
        self,
        expires_at: Optional[datetime] = None,
        message: str = "GitHub token has expired. Please reconnect your account.",
    ):
        super().__init__(message)
        self.expires_at = expires_at


class NoRepositoriesError(ActivityError):
    kind = "no_repositories"

    def __init__(self, message: str = "No repositories connected"):
        super().__init__(message)


class RepositoryNotAccessibleError(ActivityError):
    kind = "not_found"

    def __init__(
        self,
        repository: Optional[str] = None,
        message: str = "Repository not found or not accessible",
    ):
        super().__init__(message)
        self.repository = repository


class ActivityNotFoundError(ActivityError):
    kind = "not_found"

    def __init__(self, date: str, message: str = "No activity found for this date"):
        super().__init__(message)
        self.date = date


class UpstreamApiError(ActivityError):
    """Any GitHub failure not covered by a more specific class."""
    kind = "upstream_unavailable"

    def __init__(
        self,
        message: str = "GitHub API error",
        status: Optional[int] = None,
        response: Any = None,
    ):
        super().__init__(message)
        self.status = status
        self.response = response


class AuthError(UpstreamApiError):
    """GitHub rejected the token (HTTP 401)."""
    kind = "token_invalid"

    def __init__(self, message: str = "GitHub rejected the access token", response: Any = None):
        super().__init__(message, status=401, response=response)


class RateLimitError(UpstreamApiError):
    """The per-token quota is exhausted until ``reset_at``."""
    kind = "rate_limited"

    def __init__(
        self,
        reset_at: datetime,
        message: str = "GitHub API rate limit exceeded",
        status: int = 429,
        response: Any = None,
    ):
        super().__init__(message, status=status, response=response)
        self.reset_at = reset_at

    def retry_after(self, now: Optional[datetime] = None) -> int:
        """Whole seconds until the quota resets, never negative."""
        now = now or datetime.now(timezone.utc)
        return max(0, int((self.reset_at - now).total_seconds() + 0.999))


def describe_error(exc: Exception) -> tuple[str, str]:
    """Map an exception to ``(kind, message)`` suitable for showing a user."""
    if isinstance(exc, (NotConnectedError, TokenExpiredError, AuthError)):
        return exc.kind, "Connect your GitHub account to continue."
    if isinstance(exc, RateLimitError):
        return exc.kind, f"GitHub rate limit reached. Try again after {exc.reset_at.isoformat()}."
    if isinstance(exc, NoRepositoriesError):
        return exc.kind, "Connect at least one repository to collect activity."
    if isinstance(exc, RepositoryNotAccessibleError):
        return exc.kind, "Repository not found or no access."
    if isinstance(exc, ActivityNotFoundError):
        return exc.kind, str(exc)
    return UpstreamApiError.kind, "GitHub is unavailable right now. Please try again."

"""
Settings for the GitHub activity service.

Everything comes from the environment (a local .env is loaded first).
"""

from os import environ

from dotenv import load_dotenv
from pydantic import BaseModel

DEFAULT_API_URL = "https://api.github.com"
MAX_PER_PAGE = 100  # GitHub's hard cap


class Settings(BaseModel):
    github_api_url: str = DEFAULT_API_URL
    github_api_timeout: float = 30
    github_user_agent: str = "github-activity/1.0"

    per_page: int = MAX_PER_PAGE
    max_pages: int = 10
    max_workers: int = 1
    max_concurrent_per_token: int = 4

    # PR line deltas overlap with the commits they contain; kept on by
    # default so totals match previously stored data.
    count_pr_lines: bool = True
    include_commit_stats: bool = False
    include_pr_details: bool = False

    request_rate_limit_max: int = 60
    request_rate_limit_window: float = 60

    supabase_url: str = ""
    supabase_service_role_key: str = ""

    log_level: str = "INFO"


def _int(name: str, default: int) -> int:
    value = environ.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _float(name: str, default: float) -> float:
    value = environ.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


def _bool(name: str, default: bool) -> bool:
    value = environ.get(name)
    if value is None or value == "":
        return default
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def load_settings() -> Settings:
    """Load .env, then build Settings from the environment."""
    load_dotenv()

    per_page = _int("ACTIVITY_PER_PAGE", MAX_PER_PAGE)

    return Settings(
        github_api_url=environ.get("GITHUB_API_URL") or DEFAULT_API_URL,
        github_api_timeout=_float("GITHUB_API_TIMEOUT", 30),
        github_user_agent=environ.get("GITHUB_USER_AGENT") or "github-activity/1.0",
        per_page=max(1, min(per_page, MAX_PER_PAGE)),
        max_pages=max(1, _int("ACTIVITY_MAX_PAGES", 10)),
        max_workers=max(1, _int("ACTIVITY_MAX_WORKERS", 1)),
        max_concurrent_per_token=max(1, _int("ACTIVITY_MAX_CONCURRENT_PER_TOKEN", 4)),
        count_pr_lines=_bool("ACTIVITY_COUNT_PR_LINES", True),
        include_commit_stats=_bool("ACTIVITY_INCLUDE_COMMIT_STATS", False),
        include_pr_details=_bool("ACTIVITY_INCLUDE_PR_DETAILS", False),
        request_rate_limit_max=_int("REQUEST_RATE_LIMIT_MAX", 60),
        request_rate_limit_window=_float("REQUEST_RATE_LIMIT_WINDOW", 60),
        supabase_url=environ.get("SUPABASE_URL", ""),
        supabase_service_role_key=environ.get("SUPABASE_SERVICE_ROLE_KEY", ""),
        log_level=environ.get("LOG_LEVEL") or "INFO",
    )

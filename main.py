#!/usr/bin/env python3
"""
Main entry point for the GitHub activity service.

Usage:
    python main.py status <user_id>
    python main.py sync <user_id> <date> [<end_date>]
    python main.py recent <user_id> [limit]

Example:
    python main.py sync 3f9c2 2024-01-15
    python main.py sync 3f9c2 2024-01-08 2024-01-15
"""

import sys

from loguru import logger

from config import Settings, load_settings
from errors import ActivityError, describe_error
from rate_limit import RequestRateLimiter, TokenBudget
from service import ActivityService
from store import SupabaseStore, get_supabase_client

USAGE = [
    "Usage: python main.py status <user_id>",
    "       python main.py sync <user_id> <date> [<end_date>]",
    "       python main.py recent <user_id> [limit]",
]


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def build_service(settings: Settings) -> ActivityService:
    client = get_supabase_client(settings.supabase_url, settings.supabase_service_role_key)
    return ActivityService(
        SupabaseStore(client),
        settings=settings,
        budget=TokenBudget(settings.max_concurrent_per_token),
        rate_limiter=RequestRateLimiter(
            settings.request_rate_limit_max, settings.request_rate_limit_window
        ),
    )


def run(argv: list[str], service: ActivityService) -> None:
    command, user_id, rest = argv[0], argv[1], argv[2:]

    if command == "status":
        status = service.get_connection_status(user_id)
        print(status.model_dump_json(indent=2))

    elif command == "sync" and 1 <= len(rest) <= 2:
        snapshots = service.fetch_activity(user_id, rest[0], rest[1] if len(rest) == 2 else None)
        for snapshot in snapshots:
            print(snapshot.model_dump_json(by_alias=True, exclude_none=True))

    elif command == "recent" and len(rest) <= 1:
        limit = int(rest[0]) if rest else 30
        for snapshot in service.get_recent_activities(user_id, limit):
            logger.info(
                f"{snapshot.date}: {snapshot.total_commits} commits, "
                f"{snapshot.total_pull_requests} PRs, {snapshot.total_issues} issues"
            )

    else:
        raise ValueError(f"Unknown command or arguments: {' '.join(argv)}")


def main():
    """Main entry point."""
    settings = load_settings()
    configure_logging(settings.log_level)

    if len(sys.argv) < 3:
        for line in USAGE:
            logger.error(line)
        sys.exit(1)

    try:
        run(sys.argv[1:], build_service(settings))
    except ActivityError as e:
        kind, message = describe_error(e)
        logger.error(f"{kind}: {message} ({e})")
        sys.exit(2)
    except ValueError as e:
        logger.error(str(e))
        for line in USAGE:
            logger.error(line)
        sys.exit(1)


if __name__ == "__main__":
    main()

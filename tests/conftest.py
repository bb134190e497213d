"""
Pytest fixtures shared by the test modules.
"""

from datetime import datetime, timedelta, timezone

import pytest

from config import Settings
from github_api import GitHubClient
from model import ActivitySnapshot, CommitRecord, IssueRecord, PullRequestRecord
from service import ActivityService
from store import MemoryStore
from tests.helpers import FakeSession


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def client(session):
    return GitHubClient("gho_test_token", session=session)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def settings():
    return Settings(per_page=100, max_pages=3)


@pytest.fixture
def service(store, settings, session):
    return ActivityService(
        store,
        settings=settings,
        client_factory=lambda token: GitHubClient(token, session=session),
    )


@pytest.fixture
def connected_user(service):
    """A user with a valid token for one day ahead."""
    service.store_token(
        "user-1",
        "gho_test_token",
        scope="repo,read:user",
        expires_at=datetime.now(timezone.utc) + timedelta(days=1),
    )
    return "user-1"


@pytest.fixture
def snapshot():
    return ActivitySnapshot(
        id="act-1",
        user_id="user-1",
        date="2024-01-15",
        commits=[
            CommitRecord(
                sha="abc",
                message="Fix bug",
                url="https://github.com/octocat/hello/commit/abc",
                repository="octocat/hello",
                timestamp="2024-01-15T10:00:00Z",
            )
        ],
        pull_requests=[
            PullRequestRecord(
                id=11,
                title="Add feature",
                url="https://github.com/octocat/hello/pull/1",
                repository="octocat/hello",
                state="open",
                action="opened",
                timestamp="2024-01-15T09:00:00Z",
            )
        ],
        issues=[
            IssueRecord(
                id=21,
                title="Crash on start",
                url="https://github.com/octocat/hello/issues/2",
                repository="octocat/world",
                state="closed",
                action="closed",
                timestamp="2024-01-15T11:00:00Z",
            )
        ],
        total_commits=1,
        total_pull_requests=1,
        total_issues=1,
    )

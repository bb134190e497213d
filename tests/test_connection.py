"""
Tests for the connection policy.
"""

from datetime import datetime, timedelta, timezone

import pytest

from connection import ConnectionPolicy, ConnectionState
from errors import NoRepositoriesError, NotConnectedError, TokenExpiredError
from model import Connection, TrackedRepository

NOW = datetime(2024, 1, 15, 12, tzinfo=timezone.utc)


@pytest.fixture
def policy(store):
    return ConnectionPolicy(store, clock=lambda: NOW)


def connect(store, expires_at=None, token="gho_token"):
    return store.upsert_connection(
        Connection(user_id="user-1", access_token=token, expires_at=expires_at)
    )


class TestConnectionState:
    """Test the DISCONNECTED / CONNECTED / EXPIRED states"""

    def test_no_token_is_disconnected(self, policy):
        assert policy.state("user-1") == ConnectionState.DISCONNECTED

    def test_token_without_expiry_is_connected(self, store, policy):
        connect(store)

        assert policy.state("user-1") == ConnectionState.CONNECTED

    def test_expired_token(self, store, policy):
        connect(store, expires_at=NOW - timedelta(minutes=1))

        assert policy.state("user-1") == ConnectionState.EXPIRED

    def test_naive_expiry_is_treated_as_utc(self, store, policy):
        connect(store, expires_at=datetime(2024, 1, 15, 11))

        assert policy.state("user-1") == ConnectionState.EXPIRED

    def test_reconnect_after_expiry(self, store, policy):
        connect(store, expires_at=NOW - timedelta(days=1))
        connect(store, expires_at=NOW + timedelta(days=1), token="gho_new")

        assert policy.state("user-1") == ConnectionState.CONNECTED

    def test_disconnect(self, store, policy):
        connect(store)
        store.delete_connection("user-1")

        assert policy.state("user-1") == ConnectionState.DISCONNECTED


class TestCheckConnection:
    """Test check_connection"""

    def test_not_connected(self, policy):
        check = policy.check_connection("user-1")

        assert check.connected is False
        assert check.expires_at is None

    def test_reports_expiry_even_when_expired(self, store, policy):
        expiry = NOW - timedelta(hours=1)
        connect(store, expires_at=expiry)

        check = policy.check_connection("user-1")

        assert check.connected is True
        assert check.expires_at == expiry


class TestAssertUsable:
    """Test assert_usable and require_repositories"""

    def test_not_connected(self, policy):
        with pytest.raises(NotConnectedError):
            policy.assert_usable("user-1")

    def test_expired(self, store, policy):
        expiry = NOW - timedelta(seconds=1)
        connect(store, expires_at=expiry)

        with pytest.raises(TokenExpiredError) as exc_info:
            policy.assert_usable("user-1")

        assert exc_info.value.expires_at == expiry

    def test_usable_returns_connection(self, store, policy):
        connect(store, expires_at=NOW + timedelta(hours=1))

        assert policy.assert_usable("user-1").access_token == "gho_token"

    def test_no_active_repositories(self, store, policy):
        repo = store.upsert_repository(
            TrackedRepository(
                user_id="user-1",
                github_repo_id=100,
                name="hello",
                full_name="octocat/hello",
                html_url="https://github.com/octocat/hello",
            )
        )
        store.set_repository_active("user-1", repo.id, False)

        with pytest.raises(NoRepositoriesError):
            policy.require_repositories("user-1")

    def test_active_repositories_returned(self, store, policy):
        store.upsert_repository(
            TrackedRepository(
                user_id="user-1",
                github_repo_id=100,
                name="hello",
                full_name="octocat/hello",
                html_url="https://github.com/octocat/hello",
            )
        )

        assert [r.full_name for r in policy.require_repositories("user-1")] == ["octocat/hello"]

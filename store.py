"""
Persistence for tokens, tracked repositories and activity snapshots.

SupabaseStore writes to the github_tokens, repositories and
daily_activities tables. MemoryStore keeps the same data in process
(local runs and tests). Both expose the same methods.
"""

import os
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional

from loguru import logger
from supabase import Client, create_client

from model import ActivitySnapshot, Connection, TrackedRepository

TOKENS_TABLE = "github_tokens"
REPOSITORIES_TABLE = "repositories"
ACTIVITIES_TABLE = "daily_activities"


def get_supabase_client(url: Optional[str] = None, key: Optional[str] = None) -> Client:
    """Initialize and return a Supabase client."""
    url = url or os.environ.get("SUPABASE_URL")
    key = key or os.environ.get("SUPABASE_SERVICE_ROLE_KEY")

    if not url or not key:
        raise ValueError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY environment variables must be set"
        )

    return create_client(url, key)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _snapshot_row(snapshot: ActivitySnapshot) -> dict:
    row = snapshot.model_dump(mode="json", exclude={"id", "fetched_at"})
    row["updated_at"] = (snapshot.fetched_at or _now()).isoformat()
    return row


def _snapshot_from_row(row: dict) -> ActivitySnapshot:
    data = dict(row)
    data.setdefault("fetched_at", row.get("updated_at"))
    return ActivitySnapshot.model_validate(data)


class SupabaseStore:
    def __init__(self, client: Client):
        self.client = client

    # Tokens

    def find_connection(self, user_id: str) -> Optional[Connection]:
        response = (
            self.client.table(TOKENS_TABLE).select("*").eq("user_id", user_id).limit(1).execute()
        )
        return Connection.model_validate(response.data[0]) if response.data else None

    def upsert_connection(self, connection: Connection) -> Connection:
        # None columns are sent too; they must overwrite the previous token's values
        row = connection.model_dump(mode="json", exclude={"created_at"})
        row["updated_at"] = _now().isoformat()
        response = (
            self.client.table(TOKENS_TABLE).upsert(row, on_conflict="user_id").execute()
        )
        logger.debug(f"Upserted token for user {connection.user_id}")
        return Connection.model_validate(response.data[0])

    def delete_connection(self, user_id: str) -> bool:
        response = self.client.table(TOKENS_TABLE).delete().eq("user_id", user_id).execute()
        return bool(response.data)

    # Repositories

    def list_repositories(self, user_id: str, active_only: bool = False) -> list[TrackedRepository]:
        query = self.client.table(REPOSITORIES_TABLE).select("*").eq("user_id", user_id)
        if active_only:
            query = query.eq("is_active", True)
        response = query.order("updated_at", desc=True).execute()
        return [TrackedRepository.model_validate(row) for row in response.data]

    def find_repository_by_github_id(
        self, user_id: str, github_repo_id: int
    ) -> Optional[TrackedRepository]:
        response = (
            self.client.table(REPOSITORIES_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("github_repo_id", github_repo_id)
            .limit(1)
            .execute()
        )
        return TrackedRepository.model_validate(response.data[0]) if response.data else None

    def upsert_repository(self, repository: TrackedRepository) -> TrackedRepository:
        row = repository.model_dump(
            mode="json", exclude={"created_at"} if repository.id else {"id", "created_at"}
        )
        row["updated_at"] = _now().isoformat()
        response = (
            self.client.table(REPOSITORIES_TABLE)
            .upsert(row, on_conflict="user_id,github_repo_id")
            .execute()
        )
        return TrackedRepository.model_validate(response.data[0])

    def set_repository_active(
        self, user_id: str, repository_id: str, active: bool
    ) -> Optional[TrackedRepository]:
        response = (
            self.client.table(REPOSITORIES_TABLE)
            .update({"is_active": active, "updated_at": _now().isoformat()})
            .eq("id", repository_id)
            .eq("user_id", user_id)
            .execute()
        )
        return TrackedRepository.model_validate(response.data[0]) if response.data else None

    def find_users_with_repository(self, github_repo_id: int) -> list[str]:
        response = (
            self.client.table(REPOSITORIES_TABLE)
            .select("user_id")
            .eq("github_repo_id", github_repo_id)
            .eq("is_active", True)
            .execute()
        )
        return list(dict.fromkeys(row["user_id"] for row in response.data))

    # Snapshots

    def find_snapshot(self, user_id: str, date: str) -> Optional[ActivitySnapshot]:
        response = (
            self.client.table(ACTIVITIES_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("date", date)
            .limit(1)
            .execute()
        )
        return _snapshot_from_row(response.data[0]) if response.data else None

    def upsert_snapshot(self, snapshot: ActivitySnapshot) -> ActivitySnapshot:
        response = (
            self.client.table(ACTIVITIES_TABLE)
            .upsert(_snapshot_row(snapshot), on_conflict="user_id,date")
            .execute()
        )
        logger.info(
            f"Upserted activity for {snapshot.user_id} on {snapshot.date} "
            f"({snapshot.total_commits} commits, {snapshot.total_pull_requests} PRs, "
            f"{snapshot.total_issues} issues)"
        )
        return _snapshot_from_row(response.data[0])

    def list_recent_snapshots(self, user_id: str, limit: int = 30) -> list[ActivitySnapshot]:
        response = (
            self.client.table(ACTIVITIES_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("date", desc=True)
            .limit(limit)
            .execute()
        )
        return [_snapshot_from_row(row) for row in response.data]


class MemoryStore:
    """In-process store with the same interface as SupabaseStore."""

    def __init__(self):
        self._lock = threading.RLock()
        self._connections: dict[str, Connection] = {}
        self._repositories: dict[str, TrackedRepository] = {}
        self._snapshots: dict[tuple[str, str], ActivitySnapshot] = {}

    # Tokens

    def find_connection(self, user_id: str) -> Optional[Connection]:
        with self._lock:
            connection = self._connections.get(user_id)
            return connection.model_copy(deep=True) if connection else None

    def upsert_connection(self, connection: Connection) -> Connection:
        with self._lock:
            existing = self._connections.get(connection.user_id)
            now = _now()
            stored = connection.model_copy(
                update={
                    "created_at": existing.created_at if existing else now,
                    "updated_at": now,
                }
            )
            self._connections[connection.user_id] = stored
            return stored.model_copy(deep=True)

    def delete_connection(self, user_id: str) -> bool:
        with self._lock:
            return self._connections.pop(user_id, None) is not None

    # Repositories

    def list_repositories(self, user_id: str, active_only: bool = False) -> list[TrackedRepository]:
        with self._lock:
            repos = [
                r.model_copy(deep=True)
                for r in self._repositories.values()
                if r.user_id == user_id and (r.is_active or not active_only)
            ]
        return sorted(repos, key=lambda r: r.updated_at or _now(), reverse=True)

    def find_repository_by_github_id(
        self, user_id: str, github_repo_id: int
    ) -> Optional[TrackedRepository]:
        with self._lock:
            for repo in self._repositories.values():
                if repo.user_id == user_id and repo.github_repo_id == github_repo_id:
                    return repo.model_copy(deep=True)
        return None

    def upsert_repository(self, repository: TrackedRepository) -> TrackedRepository:
        with self._lock:
            existing = self.find_repository_by_github_id(
                repository.user_id, repository.github_repo_id
            )
            now = _now()
            stored = repository.model_copy(
                update={
                    "id": existing.id if existing else (repository.id or uuid.uuid4().hex),
                    "created_at": existing.created_at if existing else now,
                    "updated_at": now,
                }
            )
            self._repositories[stored.id] = stored
            return stored.model_copy(deep=True)

    def set_repository_active(
        self, user_id: str, repository_id: str, active: bool
    ) -> Optional[TrackedRepository]:
        with self._lock:
            repo = self._repositories.get(repository_id)
            if repo is None or repo.user_id != user_id:
                return None
            repo.is_active = active
            repo.updated_at = _now()
            return repo.model_copy(deep=True)

    def find_users_with_repository(self, github_repo_id: int) -> list[str]:
        with self._lock:
            users = [
                r.user_id
                for r in self._repositories.values()
                if r.github_repo_id == github_repo_id and r.is_active
            ]
        return list(dict.fromkeys(users))

    # Snapshots

    def find_snapshot(self, user_id: str, date: str) -> Optional[ActivitySnapshot]:
        with self._lock:
            snapshot = self._snapshots.get((user_id, date))
            return snapshot.model_copy(deep=True) if snapshot else None

    def upsert_snapshot(self, snapshot: ActivitySnapshot) -> ActivitySnapshot:
        with self._lock:
            key = (snapshot.user_id, snapshot.date)
            existing = self._snapshots.get(key)
            stored = snapshot.model_copy(
                deep=True,
                update={
                    "id": existing.id if existing else (snapshot.id or uuid.uuid4().hex),
                    "fetched_at": snapshot.fetched_at or _now(),
                },
            )
            self._snapshots[key] = stored
            return stored.model_copy(deep=True)

    def list_recent_snapshots(self, user_id: str, limit: int = 30) -> list[ActivitySnapshot]:
        with self._lock:
            snapshots = [
                s.model_copy(deep=True) for (uid, _), s in self._snapshots.items() if uid == user_id
            ]
        snapshots.sort(key=lambda s: s.date, reverse=True)
        return snapshots[:limit]

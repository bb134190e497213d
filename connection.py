"""
Connection policy: is this user's GitHub connection usable right now?

    DISCONNECTED -> CONNECTED -> EXPIRED
         ^              |           |
         +--------------+-----------+   (explicit disconnect)

EXPIRED only goes back to CONNECTED through a full reconnect (a new token
is stored). There is no in-place refresh.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel

from errors import NoRepositoriesError, NotConnectedError, TokenExpiredError
from model import Connection, TrackedRepository


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    EXPIRED = "expired"


class ConnectionCheck(BaseModel):
    connected: bool
    expires_at: Optional[datetime] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class ConnectionPolicy:
    def __init__(self, store, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self.clock = clock

    def is_expired(self, connection: Connection) -> bool:
        return connection.expires_at is not None and _as_utc(connection.expires_at) < self.clock()

    def state(self, user_id: str) -> ConnectionState:
        connection = self.store.find_connection(user_id)
        if connection is None:
            return ConnectionState.DISCONNECTED
        if self.is_expired(connection):
            return ConnectionState.EXPIRED
        return ConnectionState.CONNECTED

    def check_connection(self, user_id: str) -> ConnectionCheck:
        """Whether a token is stored, and when it expires."""
        connection = self.store.find_connection(user_id)
        if connection is None:
            return ConnectionCheck(connected=False)
        return ConnectionCheck(connected=True, expires_at=connection.expires_at)

    def assert_usable(self, user_id: str) -> Connection:
        """
        Return the stored connection or raise.

        NotConnectedError without a token, TokenExpiredError once it has
        expired.
        """
        connection = self.store.find_connection(user_id)
        if connection is None:
            raise NotConnectedError()
        if self.is_expired(connection):
            raise TokenExpiredError(connection.expires_at)
        return connection

    def require_repositories(self, user_id: str) -> list[TrackedRepository]:
        repositories = self.store.list_repositories(user_id, active_only=True)
        if not repositories:
            raise NoRepositoriesError()
        return repositories

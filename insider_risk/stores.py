"""
Activity and user store contracts.

The pipeline reads activity through ``ActivityStore`` and mutates block
state only through ``UserStore``. Each user mutation is a single-document
update from the pipeline's perspective. The in-memory implementations back
the tests, the CLI and the MCP server.
"""

import logging
import re
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Union

from models_validation import ActivityLogEntry, RiskNote, Role, User, utcnow

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A store could not be reached or queried."""


class PersistenceError(StoreError):
    """A write to a store failed."""


class UserNotFoundError(StoreError):
    """No user exists with the requested id."""

    def __init__(self, user_id: str):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


# =============================================================================
# Contracts
# =============================================================================

class ActivityStore(ABC):
    """Append-only record of user actions."""

    @abstractmethod
    def find(
        self,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        action_pattern: Optional[str] = None,
        risk_score_above: Optional[float] = None,
        newest_first: bool = False,
    ) -> List[ActivityLogEntry]:
        """
        Query entries.

        Args:
            user_id: Restrict to one user
            since: Inclusive lower timestamp bound
            until: Inclusive upper timestamp bound
            action_pattern: Case-insensitive regular expression searched in the action name
            risk_score_above: Keep entries whose persisted risk score is strictly greater
            newest_first: Sort descending by timestamp instead of ascending
        """

    @abstractmethod
    def count(
        self,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        action_pattern: Optional[str] = None,
        risk_score_above: Optional[float] = None,
    ) -> int:
        """Count entries matching the same filters as ``find``."""

    @abstractmethod
    def insert(self, entry: ActivityLogEntry) -> ActivityLogEntry:
        """Append a new entry."""

    @abstractmethod
    def ping(self) -> bool:
        """Connectivity check."""


class UserStore(ABC):
    """Users and their block state."""

    @abstractmethod
    def get(self, user_id: str) -> Optional[User]:
        """Fetch a user by id, or None."""

    @abstractmethod
    def find(
        self,
        is_blocked: Optional[bool] = None,
        role: Optional[Union[Role, str]] = None,
    ) -> List[User]:
        """Fetch users by block state and/or role."""

    @abstractmethod
    def count(
        self,
        is_blocked: Optional[bool] = None,
        role: Optional[Union[Role, str]] = None,
    ) -> int:
        """Count users by block state and/or role."""

    @abstractmethod
    def add(self, user: User) -> User:
        """Register a user."""

    @abstractmethod
    def block(self, user_id: str, note: RiskNote, blocked_at: datetime) -> User:
        """Set is_blocked/blocked_at and append a risk note in one update."""

    @abstractmethod
    def add_note(self, user_id: str, note: RiskNote) -> User:
        """Append a risk note without changing block state."""

    @abstractmethod
    def clear_block(self, user_id: str) -> User:
        """Clear is_blocked, blocked_at and the risk notes in one update."""

    @abstractmethod
    def ping(self) -> bool:
        """Connectivity check."""


# =============================================================================
# In-memory implementations
# =============================================================================

class InMemoryActivityStore(ActivityStore):
    """Thread-safe list-backed activity store."""

    def __init__(self, entries: Optional[List[ActivityLogEntry]] = None):
        self._lock = threading.Lock()
        self._entries: List[ActivityLogEntry] = list(entries or [])

    def _matching(
        self,
        user_id: Optional[str],
        since: Optional[datetime],
        until: Optional[datetime],
        action_pattern: Optional[str],
        risk_score_above: Optional[float],
    ) -> List[ActivityLogEntry]:
        pattern = re.compile(action_pattern, re.IGNORECASE) if action_pattern else None
        with self._lock:
            entries = list(self._entries)

        matched = []
        for entry in entries:
            if user_id is not None and entry.user_id != user_id:
                continue
            if since is not None and entry.timestamp < since:
                continue
            if until is not None and entry.timestamp > until:
                continue
            if pattern is not None and not pattern.search(entry.action):
                continue
            if risk_score_above is not None and not entry.risk_score > risk_score_above:
                continue
            matched.append(entry)
        return matched

    def find(
        self,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        action_pattern: Optional[str] = None,
        risk_score_above: Optional[float] = None,
        newest_first: bool = False,
    ) -> List[ActivityLogEntry]:
        matched = self._matching(user_id, since, until, action_pattern, risk_score_above)
        return sorted(matched, key=lambda e: e.timestamp, reverse=newest_first)

    def count(
        self,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        action_pattern: Optional[str] = None,
        risk_score_above: Optional[float] = None,
    ) -> int:
        return len(self._matching(user_id, since, until, action_pattern, risk_score_above))

    def insert(self, entry: ActivityLogEntry) -> ActivityLogEntry:
        with self._lock:
            self._entries.append(entry)
        return entry

    def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class InMemoryUserStore(UserStore):
    """Thread-safe dict-backed user store.

    Returned users are copies; callers never hold a reference into the store.
    """

    def __init__(self, users: Optional[List[User]] = None):
        self._lock = threading.Lock()
        self._users: Dict[str, User] = {}
        for user in users or []:
            self._users[user.id] = user.model_copy(deep=True)

    def _require(self, user_id: str) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def get(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy(deep=True) if user is not None else None

    def find(
        self,
        is_blocked: Optional[bool] = None,
        role: Optional[Union[Role, str]] = None,
    ) -> List[User]:
        with self._lock:
            users = [u.model_copy(deep=True) for u in self._users.values()]
        if is_blocked is not None:
            users = [u for u in users if u.is_blocked == is_blocked]
        if role is not None:
            users = [u for u in users if u.role == Role(role)]
        return users

    def count(
        self,
        is_blocked: Optional[bool] = None,
        role: Optional[Union[Role, str]] = None,
    ) -> int:
        return len(self.find(is_blocked=is_blocked, role=role))

    def add(self, user: User) -> User:
        with self._lock:
            self._users[user.id] = user.model_copy(deep=True)
        logger.debug("Registered user %s (%s)", user.id, user.role.value)
        return user

    def block(self, user_id: str, note: RiskNote, blocked_at: Optional[datetime] = None) -> User:
        with self._lock:
            user = self._require(user_id)
            user.is_blocked = True
            user.blocked_at = blocked_at or utcnow()
            user.risk_notes.append(note)
            return user.model_copy(deep=True)

    def add_note(self, user_id: str, note: RiskNote) -> User:
        with self._lock:
            user = self._require(user_id)
            user.risk_notes.append(note)
            return user.model_copy(deep=True)

    def clear_block(self, user_id: str) -> User:
        with self._lock:
            user = self._require(user_id)
            user.is_blocked = False
            user.blocked_at = None
            user.risk_notes = []
            return user.model_copy(deep=True)

    def ping(self) -> bool:
        return True

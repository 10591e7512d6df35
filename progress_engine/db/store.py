"""
Storage contract for the progress engine

The engine needs two things from storage:
- A per-user unit of work (`transaction(user_id)`): reads and writes inside it
  are serialized against every other unit of work for the same user and are
  committed all-or-nothing.
- Lock-free reads for dashboards and the leaderboard, which tolerate
  slightly stale data.

Backends:
- PostgresProgressStore: psycopg connection pool, transaction-scoped
  advisory lock per user
- InMemoryProgressStore: asyncio lock per user with staged writes
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import AsyncContextManager, List, Optional, Sequence

from progress_engine.models.progress import (
    AchievementProgress,
    ActionEvent,
    ActivityAggregate,
    PointTransaction,
    ScoreLedgerEntry,
    StreakRecord,
    UserRecord,
)


class UserTransaction(ABC):
    """Unit of work over one user's entities"""

    def __init__(self, user_id: str):
        self.user_id = user_id

    # Users
    @abstractmethod
    async def ensure_user(self, joined_at: datetime) -> UserRecord:
        """Register the user if unknown; returns the stored record"""

    # Action log
    @abstractmethod
    async def find_event(self, idempotency_key: str) -> Optional[ActionEvent]:
        """Look up an appended event by its idempotency key"""

    @abstractmethod
    async def append_event(self, event: ActionEvent) -> None:
        """Append an event (caller has checked the idempotency key)"""

    @abstractmethod
    async def get_event(self, event_id: str) -> Optional[ActionEvent]:
        """Look up one of this user's events by id, voided or not"""

    @abstractmethod
    async def void_event(self, event_id: str) -> None:
        """Mark an event voided; it stays in the log but stops counting"""

    # Score ledger
    @abstractmethod
    async def get_ledger(self) -> ScoreLedgerEntry:
        """Current ledger entry (zero entry if the user has none)"""

    @abstractmethod
    async def save_ledger(self, entry: ScoreLedgerEntry) -> None:
        """Persist the ledger entry"""

    @abstractmethod
    async def add_point_transaction(self, transaction: PointTransaction) -> None:
        """Journal a point credit"""

    # Streaks
    @abstractmethod
    async def get_streak(self, streak_type: str) -> Optional[StreakRecord]:
        """Streak record for a type, None before the first activity"""

    @abstractmethod
    async def save_streak(self, record: StreakRecord) -> None:
        """Persist a streak record"""

    # Achievements
    @abstractmethod
    async def get_achievement_progress(self, achievement_id: str) -> Optional[AchievementProgress]:
        """Progress row for an achievement, None before the first increment"""

    @abstractmethod
    async def save_achievement_progress(self, progress: AchievementProgress) -> None:
        """Persist an achievement progress row"""


class ProgressStore(ABC):
    """Storage backend for the progress engine"""

    async def open(self) -> None:
        """Acquire resources (connection pools etc.)"""

    async def close(self) -> None:
        """Release resources"""

    async def ping(self) -> bool:
        """Check the backend is reachable"""
        return True

    @abstractmethod
    def transaction(self, user_id: str) -> AsyncContextManager[UserTransaction]:
        """Open a serialized, all-or-nothing unit of work for one user"""

    # Lock-free reads

    @abstractmethod
    async def get_ledger(self, user_id: str) -> Optional[ScoreLedgerEntry]:
        ...

    @abstractmethod
    async def list_ledgers(self, user_ids: Optional[Sequence[str]] = None) -> List[ScoreLedgerEntry]:
        """Ledger entries for the given users, or for everyone"""

    @abstractmethod
    async def list_point_transactions(self, user_id: str, limit: int = 50) -> List[PointTransaction]:
        """Most recent first"""

    @abstractmethod
    async def list_streaks(
        self,
        user_id: Optional[str] = None,
        active_since: Optional[date] = None,
    ) -> List[StreakRecord]:
        """
        One user's streaks, or every user's when user_id is None

        active_since keeps only streaks last active on or after that date.
        """

    @abstractmethod
    async def list_achievement_progress(self, user_id: str) -> List[AchievementProgress]:
        ...

    @abstractmethod
    async def list_events(
        self,
        user_id: Optional[str] = None,
        action_type: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[ActionEvent]:
        """Non-voided events, oldest first, optionally filtered"""

    @abstractmethod
    async def aggregate_activity(
        self,
        until: datetime,
        since: Optional[datetime] = None,
        user_id: Optional[str] = None,
    ) -> List[ActivityAggregate]:
        """
        Non-voided events in [since, until] grouped by user, action type,
        UTC calendar month, helpful votes and education topic

        Votes are read from metadata["helpful_votes"] and the topic from
        metadata["category"] of forum posts and replies only; other actions
        group with zero votes and no topic.
        """

    @abstractmethod
    async def list_users(self) -> List[UserRecord]:
        ...

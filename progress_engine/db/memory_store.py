"""
In-memory progress store

Keeps all engine state in process. Used by the test suite and for local runs
with STORAGE_BACKEND=memory. Nothing is persisted across restarts.

Each user has an asyncio.Lock; a transaction stages its writes and applies
them only when the block exits cleanly, so a failed mutation leaves the
committed state untouched. A user's lock is dropped once no transaction
holds or waits on it.
"""

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import AsyncIterator, Dict, List, Optional, Sequence, Set, Tuple

from progress_engine.db.store import ProgressStore, UserTransaction
from progress_engine.models.progress import (
    AchievementProgress,
    ActionEvent,
    ActivityAggregate,
    PointTransaction,
    ScoreLedgerEntry,
    StreakRecord,
    UserRecord,
)

logger = logging.getLogger(__name__)

VOTED_ACTION_TYPES = ("forum_post", "forum_reply")


def _activity_key(event: ActionEvent) -> Tuple[str, str, date, int, bool]:
    """Grouping key matching the SQL aggregate in the Postgres store"""
    votes = 0
    education = False
    if event.action_type in VOTED_ACTION_TYPES:
        votes = int(event.metadata.get("helpful_votes") or 0)
        education = event.metadata.get("category") == "education"
    month = event.occurred_at.date().replace(day=1)
    return (event.user_id, event.action_type, month, votes, education)


class InMemoryUserTransaction(UserTransaction):
    """Staged unit of work over one user's in-memory entities"""

    def __init__(self, store: "InMemoryProgressStore", user_id: str):
        super().__init__(user_id)
        self._store = store
        self._user: Optional[UserRecord] = None
        self._events: List[ActionEvent] = []
        self._voided: Set[str] = set()
        self._ledger: Optional[ScoreLedgerEntry] = None
        self._point_transactions: List[PointTransaction] = []
        self._streaks: Dict[str, StreakRecord] = {}
        self._progress: Dict[str, AchievementProgress] = {}

    async def _io(self) -> None:
        # Yield to the event loop like a real storage round-trip would
        await asyncio.sleep(0)

    async def ensure_user(self, joined_at: datetime) -> UserRecord:
        await self._io()
        existing = self._user or self._store._users.get(self.user_id)
        if existing:
            return existing
        self._user = UserRecord(user_id=self.user_id, joined_at=joined_at)
        return self._user

    async def find_event(self, idempotency_key: str) -> Optional[ActionEvent]:
        await self._io()
        for event in self._events:
            if event.idempotency_key == idempotency_key:
                return event
        return self._store._event_keys.get((self.user_id, idempotency_key))

    async def append_event(self, event: ActionEvent) -> None:
        await self._io()
        self._events.append(event)

    async def get_event(self, event_id: str) -> Optional[ActionEvent]:
        await self._io()
        event = next((e for e in self._events if e.event_id == event_id), None)
        if event is None:
            event = self._store._events.get(event_id)
        if event is None or event.user_id != self.user_id:
            return None
        if event_id in self._voided:
            return event.model_copy(update={"voided": True})
        return event

    async def void_event(self, event_id: str) -> None:
        await self._io()
        self._voided.add(event_id)

    async def get_ledger(self) -> ScoreLedgerEntry:
        await self._io()
        if self._ledger is not None:
            return self._ledger
        return self._store._ledgers.get(
            self.user_id, ScoreLedgerEntry.from_total_points(self.user_id, 0)
        )

    async def save_ledger(self, entry: ScoreLedgerEntry) -> None:
        await self._io()
        self._ledger = entry

    async def add_point_transaction(self, transaction: PointTransaction) -> None:
        await self._io()
        self._point_transactions.append(transaction)

    async def get_streak(self, streak_type: str) -> Optional[StreakRecord]:
        await self._io()
        if streak_type in self._streaks:
            return self._streaks[streak_type]
        return self._store._streaks.get((self.user_id, streak_type))

    async def save_streak(self, record: StreakRecord) -> None:
        await self._io()
        self._streaks[record.streak_type] = record

    async def get_achievement_progress(self, achievement_id: str) -> Optional[AchievementProgress]:
        await self._io()
        if achievement_id in self._progress:
            return self._progress[achievement_id]
        return self._store._progress.get((self.user_id, achievement_id))

    async def save_achievement_progress(self, progress: AchievementProgress) -> None:
        await self._io()
        self._progress[progress.achievement_id] = progress

    def _commit(self) -> None:
        """Apply staged writes to the store"""
        store = self._store
        if self._user is not None:
            store._users[self.user_id] = self._user
        for event in self._events:
            store._events[event.event_id] = event
            store._event_keys[(self.user_id, event.idempotency_key)] = event
        for event_id in self._voided:
            voided = store._events[event_id].model_copy(update={"voided": True})
            store._events[event_id] = voided
            store._event_keys[(self.user_id, voided.idempotency_key)] = voided
        if self._ledger is not None:
            store._ledgers[self.user_id] = self._ledger
        store._point_transactions.extend(self._point_transactions)
        for streak_type, record in self._streaks.items():
            store._streaks[(self.user_id, streak_type)] = record
        for achievement_id, progress in self._progress.items():
            store._progress[(self.user_id, achievement_id)] = progress


class InMemoryProgressStore(ProgressStore):
    """In-process store with per-user locking"""

    def __init__(self):
        self._users: Dict[str, UserRecord] = {}
        self._events: Dict[str, ActionEvent] = {}
        self._event_keys: Dict[Tuple[str, str], ActionEvent] = {}
        self._ledgers: Dict[str, ScoreLedgerEntry] = {}
        self._point_transactions: List[PointTransaction] = []
        self._streaks: Dict[Tuple[str, str], StreakRecord] = {}
        self._progress: Dict[Tuple[str, str], AchievementProgress] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Counter = Counter()
        logger.info("InMemoryProgressStore initialized - progress is NOT persisted across restarts")

    @asynccontextmanager
    async def transaction(self, user_id: str) -> AsyncIterator[InMemoryUserTransaction]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._lock_users[user_id] += 1
        try:
            async with lock:
                tx = InMemoryUserTransaction(self, user_id)
                yield tx
                tx._commit()
        finally:
            self._lock_users[user_id] -= 1
            if self._lock_users[user_id] <= 0:
                del self._lock_users[user_id]
                del self._locks[user_id]

    async def get_ledger(self, user_id: str) -> Optional[ScoreLedgerEntry]:
        return self._ledgers.get(user_id)

    async def list_ledgers(self, user_ids: Optional[Sequence[str]] = None) -> List[ScoreLedgerEntry]:
        if user_ids is None:
            return list(self._ledgers.values())
        return [self._ledgers[user_id] for user_id in user_ids if user_id in self._ledgers]

    async def list_point_transactions(self, user_id: str, limit: int = 50) -> List[PointTransaction]:
        transactions = [t for t in self._point_transactions if t.user_id == user_id]
        transactions.sort(key=lambda t: t.awarded_at, reverse=True)
        return transactions[:limit]

    async def list_streaks(
        self,
        user_id: Optional[str] = None,
        active_since: Optional[date] = None,
    ) -> List[StreakRecord]:
        return [
            record for (owner, _), record in self._streaks.items()
            if (user_id is None or owner == user_id)
            and (
                active_since is None
                or (record.last_active_date is not None and record.last_active_date >= active_since)
            )
        ]

    async def list_achievement_progress(self, user_id: str) -> List[AchievementProgress]:
        return [
            progress for (owner, _), progress in self._progress.items()
            if owner == user_id
        ]

    async def list_events(
        self,
        user_id: Optional[str] = None,
        action_type: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[ActionEvent]:
        events = [
            event for event in self._events.values()
            if not event.voided
            and (user_id is None or event.user_id == user_id)
            and (action_type is None or event.action_type == action_type)
            and (since is None or event.occurred_at >= since)
        ]
        events.sort(key=lambda e: e.occurred_at)
        return events

    async def aggregate_activity(
        self,
        until: datetime,
        since: Optional[datetime] = None,
        user_id: Optional[str] = None,
    ) -> List[ActivityAggregate]:
        counts: Counter = Counter(
            _activity_key(event) for event in self._events.values()
            if not event.voided
            and event.occurred_at <= until
            and (since is None or event.occurred_at >= since)
            and (user_id is None or event.user_id == user_id)
        )
        return [
            ActivityAggregate(
                user_id=owner,
                action_type=action_type,
                month=month,
                helpful_votes=votes,
                education=education,
                count=count,
            )
            for (owner, action_type, month, votes, education), count in counts.items()
        ]

    async def list_users(self) -> List[UserRecord]:
        return list(self._users.values())

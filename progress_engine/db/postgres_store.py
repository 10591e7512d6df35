"""
PostgreSQL progress store

Every unit of work runs on one pooled connection inside BEGIN ... COMMIT and
starts by taking a transaction-scoped advisory lock on the user, so all
mutations of one user's ledger, streaks and achievement progress are
serialized while different users proceed in parallel. The lock is released
by COMMIT/ROLLBACK; no lock outlives a transaction.
"""
import json
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, AsyncIterator, List, Optional, Sequence

import psycopg
from psycopg_pool import PoolTimeout

from progress_engine.db.connection import Database, db as default_db
from progress_engine.db.store import ProgressStore, UserTransaction
from progress_engine.exceptions import wrap_external_exception
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

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

EVENT_COLUMNS = "event_id, user_id, action_type, occurred_at, idempotency_key, metadata, voided"
LEDGER_COLUMNS = "user_id, total_points, level, progress_to_next_level"
POINT_TRANSACTION_COLUMNS = "transaction_id, user_id, amount, source_type, source_id, reason, awarded_at"
STREAK_COLUMNS = "user_id, streak_type, current, longest, last_active_date, target"
PROGRESS_COLUMNS = "user_id, achievement_id, progress, earned, earned_at, claimed, claimed_at"

# Votes and topic only count for forum posts and replies
ACTIVITY_AGGREGATE_SQL = """
    SELECT user_id,
           action_type,
           date_trunc('month', occurred_at AT TIME ZONE 'UTC')::date AS month,
           CASE WHEN action_type IN ('forum_post', 'forum_reply')
                THEN COALESCE((metadata->>'helpful_votes')::int, 0)
                ELSE 0 END AS helpful_votes,
           COALESCE(action_type IN ('forum_post', 'forum_reply')
                    AND metadata->>'category' = 'education', FALSE) AS education,
           count(*) AS count
    FROM action_events
    WHERE {conditions}
    GROUP BY 1, 2, 3, 4, 5
"""


class PostgresUserTransaction(UserTransaction):
    """Unit of work bound to one open cursor"""

    def __init__(self, cur: psycopg.AsyncCursor, user_id: str):
        super().__init__(user_id)
        self.cur = cur

    async def _fetchone(self, query: str, params: Sequence[Any]) -> Optional[dict]:
        await self.cur.execute(query, params)
        return await self.cur.fetchone()

    # ==========================================
    # Users
    # ==========================================

    async def ensure_user(self, joined_at: datetime) -> UserRecord:
        await self.cur.execute(
            """
            INSERT INTO progress_users (user_id, joined_at)
            VALUES (%s, %s)
            ON CONFLICT (user_id) DO NOTHING
            """,
            (self.user_id, joined_at)
        )
        row = await self._fetchone(
            "SELECT user_id, joined_at FROM progress_users WHERE user_id = %s",
            (self.user_id,)
        )
        return UserRecord(**row)

    # ==========================================
    # Action Log
    # ==========================================

    async def find_event(self, idempotency_key: str) -> Optional[ActionEvent]:
        row = await self._fetchone(
            f"""
            SELECT {EVENT_COLUMNS}
            FROM action_events
            WHERE user_id = %s AND idempotency_key = %s
            """,
            (self.user_id, idempotency_key)
        )
        return ActionEvent(**row) if row else None

    async def append_event(self, event: ActionEvent) -> None:
        await self.cur.execute(
            """
            INSERT INTO action_events
                (event_id, user_id, action_type, occurred_at, idempotency_key, metadata, voided)
            VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s)
            """,
            (
                event.event_id,
                event.user_id,
                event.action_type,
                event.occurred_at,
                event.idempotency_key,
                json.dumps(event.metadata, default=str),
                event.voided,
            )
        )

    # ==========================================
    # Score Ledger

    async def get_event(self, event_id: str) -> Optional[ActionEvent]:
        row = await self._fetchone(
            f"""
            SELECT {EVENT_COLUMNS}
            FROM action_events
            WHERE user_id = %s AND event_id = %s
            """,
            (self.user_id, event_id)
        )
        return ActionEvent(**row) if row else None

    async def void_event(self, event_id: str) -> None:
        await self.cur.execute(
            "UPDATE action_events SET voided = TRUE WHERE user_id = %s AND event_id = %s",
            (self.user_id, event_id)
        )
    # ==========================================

    async def get_ledger(self) -> ScoreLedgerEntry:
        row = await self._fetchone(
            f"SELECT {LEDGER_COLUMNS} FROM score_ledger WHERE user_id = %s",
            (self.user_id,)
        )
        if not row:
            return ScoreLedgerEntry.from_total_points(self.user_id, 0)
        return ScoreLedgerEntry(**row)

    async def save_ledger(self, entry: ScoreLedgerEntry) -> None:
        await self.cur.execute(
            """
            INSERT INTO score_ledger (user_id, total_points, level, progress_to_next_level)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (user_id) DO UPDATE
            SET total_points = EXCLUDED.total_points,
                level = EXCLUDED.level,
                progress_to_next_level = EXCLUDED.progress_to_next_level,
                updated_at = CURRENT_TIMESTAMP
            """,
            (entry.user_id, entry.total_points, entry.level, entry.progress_to_next_level)
        )

    async def add_point_transaction(self, transaction: PointTransaction) -> None:
        await self.cur.execute(
            """
            INSERT INTO point_transactions
                (transaction_id, user_id, amount, source_type, source_id, reason, awarded_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                transaction.transaction_id,
                transaction.user_id,
                transaction.amount,
                transaction.source_type,
                transaction.source_id,
                transaction.reason,
                transaction.awarded_at,
            )
        )

    # ==========================================
    # Streaks
    # ==========================================

    async def get_streak(self, streak_type: str) -> Optional[StreakRecord]:
        row = await self._fetchone(
            f"""
            SELECT {STREAK_COLUMNS}
            FROM streak_records
            WHERE user_id = %s AND streak_type = %s
            """,
            (self.user_id, streak_type)
        )
        return StreakRecord(**row) if row else None

    async def save_streak(self, record: StreakRecord) -> None:
        await self.cur.execute(
            """
            INSERT INTO streak_records (user_id, streak_type, current, longest, last_active_date, target)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, streak_type) DO UPDATE
            SET current = EXCLUDED.current,
                longest = EXCLUDED.longest,
                last_active_date = EXCLUDED.last_active_date,
                target = EXCLUDED.target,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                record.user_id,
                record.streak_type,
                record.current,
                record.longest,
                record.last_active_date,
                record.target,
            )
        )

    # ==========================================
    # Achievements
    # ==========================================

    async def get_achievement_progress(self, achievement_id: str) -> Optional[AchievementProgress]:
        row = await self._fetchone(
            f"""
            SELECT {PROGRESS_COLUMNS}
            FROM achievement_progress
            WHERE user_id = %s AND achievement_id = %s
            """,
            (self.user_id, achievement_id)
        )
        return AchievementProgress(**row) if row else None

    async def save_achievement_progress(self, progress: AchievementProgress) -> None:
        await self.cur.execute(
            """
            INSERT INTO achievement_progress
                (user_id, achievement_id, progress, earned, earned_at, claimed, claimed_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, achievement_id) DO UPDATE
            SET progress = EXCLUDED.progress,
                earned = EXCLUDED.earned,
                earned_at = EXCLUDED.earned_at,
                claimed = EXCLUDED.claimed,
                claimed_at = EXCLUDED.claimed_at,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                progress.user_id,
                progress.achievement_id,
                progress.progress,
                progress.earned,
                progress.earned_at,
                progress.claimed,
                progress.claimed_at,
            )
        )


class PostgresProgressStore(ProgressStore):
    """Progress store backed by PostgreSQL"""

    def __init__(self, database: Optional[Database] = None):
        self.db = database or default_db

    async def open(self) -> None:
        await self.db.init_pool()

    async def close(self) -> None:
        await self.db.close_pool()

    async def apply_schema(self) -> None:
        """Create tables and indexes if missing"""
        schema_sql = SCHEMA_PATH.read_text()
        try:
            async with self.db.connection() as conn:
                await conn.execute(schema_sql)
                await conn.commit()
        except (psycopg.Error, PoolTimeout) as e:
            raise wrap_external_exception(e, operation="apply_schema") from e
        logger.info("Progress engine schema applied")

    async def ping(self) -> bool:
        try:
            await self._fetchall("SELECT 1 AS ok", (), operation="ping")
            return True
        except Exception as e:
            logger.error(f"Database ping failed: {e}")
            return False

    @asynccontextmanager
    async def transaction(self, user_id: str) -> AsyncIterator[PostgresUserTransaction]:
        try:
            async with self.db.connection() as conn:
                async with conn.transaction():
                    async with conn.cursor() as cur:
                        await cur.execute(
                            "SELECT pg_advisory_xact_lock(hashtext(%s))",
                            (f"progress:{user_id}",)
                        )
                        yield PostgresUserTransaction(cur, user_id)
        except (psycopg.Error, PoolTimeout) as e:
            raise wrap_external_exception(e, operation="transaction", user_id=user_id) from e

    async def _fetchall(self, query: str, params: Sequence[Any], operation: str) -> List[dict]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    return await cur.fetchall()
        except (psycopg.Error, PoolTimeout) as e:
            raise wrap_external_exception(e, operation=operation) from e

    # ==========================================
    # Lock-free reads
    # ==========================================

    async def get_ledger(self, user_id: str) -> Optional[ScoreLedgerEntry]:
        rows = await self._fetchall(
            f"SELECT {LEDGER_COLUMNS} FROM score_ledger WHERE user_id = %s",
            (user_id,),
            operation="get_ledger"
        )
        return ScoreLedgerEntry(**rows[0]) if rows else None

    async def list_ledgers(self, user_ids: Optional[Sequence[str]] = None) -> List[ScoreLedgerEntry]:
        if user_ids is None:
            rows = await self._fetchall(
                f"SELECT {LEDGER_COLUMNS} FROM score_ledger",
                (),
                operation="list_ledgers"
            )
        else:
            rows = await self._fetchall(
                f"SELECT {LEDGER_COLUMNS} FROM score_ledger WHERE user_id = ANY(%s)",
                (list(user_ids),),
                operation="list_ledgers"
            )
        return [ScoreLedgerEntry(**row) for row in rows]

    async def list_point_transactions(self, user_id: str, limit: int = 50) -> List[PointTransaction]:
        rows = await self._fetchall(
            f"""
            SELECT {POINT_TRANSACTION_COLUMNS}
            FROM point_transactions
            WHERE user_id = %s
            ORDER BY awarded_at DESC
            LIMIT %s
            """,
            (user_id, limit),
            operation="list_point_transactions"
        )
        return [PointTransaction(**row) for row in rows]

    async def list_streaks(
        self,
        user_id: Optional[str] = None,
        active_since: Optional[date] = None,
    ) -> List[StreakRecord]:
        conditions = ["TRUE"]
        params: List[Any] = []
        if user_id is not None:
            conditions.append("user_id = %s")
            params.append(user_id)
        if active_since is not None:
            conditions.append("last_active_date >= %s")
            params.append(active_since)

        rows = await self._fetchall(
            f"SELECT {STREAK_COLUMNS} FROM streak_records WHERE {' AND '.join(conditions)}",
            params,
            operation="list_streaks"
        )
        return [StreakRecord(**row) for row in rows]

    async def list_achievement_progress(self, user_id: str) -> List[AchievementProgress]:
        rows = await self._fetchall(
            f"SELECT {PROGRESS_COLUMNS} FROM achievement_progress WHERE user_id = %s",
            (user_id,),
            operation="list_achievement_progress"
        )
        return [AchievementProgress(**row) for row in rows]

    async def list_events(
        self,
        user_id: Optional[str] = None,
        action_type: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[ActionEvent]:
        conditions = ["voided = FALSE"]
        params: List[Any] = []
        if user_id is not None:
            conditions.append("user_id = %s")
            params.append(user_id)
        if action_type is not None:
            conditions.append("action_type = %s")
            params.append(action_type)
        if since is not None:
            conditions.append("occurred_at >= %s")
            params.append(since)

        rows = await self._fetchall(
            f"""
            SELECT {EVENT_COLUMNS}
            FROM action_events
            WHERE {' AND '.join(conditions)}
            ORDER BY occurred_at, event_id
            """,
            params,
            operation="list_events"
        )
        return [ActionEvent(**row) for row in rows]

    async def aggregate_activity(
        self,
        until: datetime,
        since: Optional[datetime] = None,
        user_id: Optional[str] = None,
    ) -> List[ActivityAggregate]:
        conditions = ["voided = FALSE", "occurred_at <= %s"]
        params: List[Any] = [until]
        if since is not None:
            conditions.append("occurred_at >= %s")
            params.append(since)
        if user_id is not None:
            conditions.append("user_id = %s")
            params.append(user_id)

        rows = await self._fetchall(
            ACTIVITY_AGGREGATE_SQL.format(conditions=" AND ".join(conditions)),
            params,
            operation="aggregate_activity"
        )
        return [ActivityAggregate(**row) for row in rows]

    async def list_users(self) -> List[UserRecord]:
        rows = await self._fetchall(
            "SELECT user_id, joined_at FROM progress_users",
            (),
            operation="list_users"
        )
        return [UserRecord(**row) for row in rows]

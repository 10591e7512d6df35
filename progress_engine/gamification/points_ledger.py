"""
Score Ledger

The authoritative points/level state per user. Every point credit in the
engine (task rewards, streak milestone bonuses, achievement claims) goes
through ScoreLedger.credit_points, and level/progress are only ever derived
by ScoreLedgerEntry.from_total_points.

Leveling:
- Every 200 points is a new level
- level = total_points // 200 + 1
- progress_to_next_level = total_points % 200

Points are never decremented here; corrections are an admin concern.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional
from uuid import uuid4
import logging

from progress_engine.db.store import ProgressStore, UserTransaction
from progress_engine.exceptions import InvalidAmount
from progress_engine.models.progress import PointTransaction, ScoreLedgerEntry
from progress_engine.observability.metrics import points_credited_total

logger = logging.getLogger(__name__)


@asynccontextmanager
async def joined_transaction(
    store: ProgressStore,
    user_id: str,
    tx: Optional[UserTransaction]
) -> AsyncIterator[UserTransaction]:
    """Join the caller's unit of work, or open a new one"""
    if tx is not None:
        yield tx
    else:
        async with store.transaction(user_id) as own_tx:
            yield own_tx


def validate_amount(amount: object, user_id: Optional[str] = None) -> int:
    """Point amounts must be positive integers (bools are not amounts)"""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(amount, user_id=user_id, operation="credit_points")
    return amount


class ScoreLedger:
    """Single entry point for point credits"""

    def __init__(self, store: ProgressStore):
        self.store = store

    async def credit_points(
        self,
        user_id: str,
        amount: int,
        source_type: str = "action",
        source_id: Optional[str] = None,
        reason: str = "",
        tx: Optional[UserTransaction] = None,
    ) -> ScoreLedgerEntry:
        """
        Credit points to a user and re-derive level

        Args:
            user_id: User identifier
            amount: Positive integer number of points
            source_type: What earned the points (action type, 'achievement', 'streak_milestone')
            source_id: Event or achievement id (optional)
            reason: Human-readable description
            tx: Unit of work to join (optional)

        Returns:
            The updated ledger entry

        Raises:
            InvalidAmount: amount is not a positive integer (nothing is written)
        """
        validate_amount(amount, user_id)

        async with joined_transaction(self.store, user_id, tx) as unit:
            current = await unit.get_ledger()
            updated = ScoreLedgerEntry.from_total_points(user_id, current.total_points + amount)
            await unit.save_ledger(updated)
            await unit.add_point_transaction(PointTransaction(
                transaction_id=str(uuid4()),
                user_id=user_id,
                amount=amount,
                source_type=source_type,
                source_id=source_id,
                reason=reason,
                awarded_at=datetime.now(timezone.utc),
            ))

        points_credited_total.labels(source_type=source_type).inc(amount)

        logger.info(
            f"Credited {amount} points to user {user_id} for {source_type}. "
            f"Total: {updated.total_points}, Level: {updated.level}"
        )
        if updated.level > current.level:
            logger.info(f"User {user_id} leveled up from {current.level} to {updated.level}!")

        return updated

    async def get_progress(self, user_id: str) -> ScoreLedgerEntry:
        """Current points and level (zero entry for users with no credits)"""
        entry = await self.store.get_ledger(user_id)
        return entry or ScoreLedgerEntry.from_total_points(user_id, 0)

    async def get_history(self, user_id: str, limit: int = 50) -> List[PointTransaction]:
        """Recent point credits, newest first"""
        return await self.store.list_point_transactions(user_id, limit=limit)

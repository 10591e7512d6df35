"""
Multi-Type Streak Tracking System

Tracks consecutive-day streaks per streak type:
- daily_logging (check-ins and symptom logs)
- journal_entries
- community_posts
- daily_tasks

Rules:
- First activity starts the streak at 1
- Same calendar day: no change
- Next calendar day: streak continues
- Gap of more than one day: streak resets to 1 (longest is kept)
- Activity older than the last recorded day: rejected as stale

Milestones at 7, 14, 30 and 100 days carry bonus points.
"""

from datetime import date, timedelta
from typing import Dict, List, Optional
import logging

from progress_engine.config import DEFAULT_STREAK_TARGET, STREAK_TARGETS
from progress_engine.db.store import ProgressStore, UserTransaction
from progress_engine.exceptions import StaleEvent
from progress_engine.gamification.points_ledger import joined_transaction
from progress_engine.models.progress import StreakRecord, StreakUpdate

logger = logging.getLogger(__name__)

# Consecutive days -> bonus points
MILESTONE_BONUSES: Dict[int, int] = {7: 50, 14: 100, 30: 200, 100: 500}


def target_for(streak_type: str) -> int:
    return STREAK_TARGETS.get(streak_type, DEFAULT_STREAK_TARGET)


def advance_streak(
    record: Optional[StreakRecord],
    user_id: str,
    streak_type: str,
    activity_date: date
) -> StreakUpdate:
    """
    Apply one day of activity to a streak record

    Pure function: no storage access.

    Raises:
        StaleEvent: activity_date is earlier than record.last_active_date
    """
    if record is None:
        record = StreakRecord(
            user_id=user_id,
            streak_type=streak_type,
            target=target_for(streak_type),
        )

    previous_current = record.current
    previous_longest = record.longest
    last_date = record.last_active_date

    if last_date is None:
        updated = record.model_copy(update={
            "current": 1,
            "longest": max(record.longest, 1),
            "last_active_date": activity_date,
        })
        message = "Streak started! Day 1 🎉"

    elif activity_date == last_date:
        # Already counted for today
        return StreakUpdate(
            record=record,
            previous_current=previous_current,
            previous_longest=previous_longest,
            changed=False,
            message=f"Streak continues! Day {record.current} 🔥",
        )

    elif activity_date < last_date:
        raise StaleEvent(
            streak_type=streak_type,
            activity_date=activity_date,
            last_active_date=last_date,
            user_id=user_id,
            operation="record_activity",
        )

    elif activity_date == last_date + timedelta(days=1):
        current = record.current + 1
        updated = record.model_copy(update={
            "current": current,
            "longest": max(record.longest, current),
            "last_active_date": activity_date,
        })
        message = f"Streak continues! Day {current} 🔥"

    else:
        gap_days = (activity_date - last_date).days
        updated = record.model_copy(update={
            "current": 1,
            "last_active_date": activity_date,
        })
        message = f"Streak reset. Previous: {record.current} days. Starting fresh! Day 1 💪"
        logger.info(
            f"User {user_id} streak broken for {streak_type}. "
            f"Was {record.current}, gap was {gap_days} days"
        )

    milestone_reached = updated.current == updated.target
    bonus_points = MILESTONE_BONUSES.get(updated.current, 0)
    if milestone_reached:
        message += f"\n🎯 {updated.target}-day goal reached!"
    if bonus_points:
        message += f"\n🏆 {updated.current}-day milestone reached! +{bonus_points} points"

    return StreakUpdate(
        record=updated,
        previous_current=previous_current,
        previous_longest=previous_longest,
        changed=True,
        milestone_reached=milestone_reached,
        bonus_points=bonus_points,
        message=message,
    )


class StreakTracker:
    """Persists streak updates, one atomic read-modify-write per record"""

    def __init__(self, store: ProgressStore):
        self.store = store

    async def record_activity(
        self,
        user_id: str,
        streak_type: str,
        activity_date: date,
        tx: Optional[UserTransaction] = None,
    ) -> StreakUpdate:
        """
        Record a qualifying activity for a streak type

        Args:
            user_id: User identifier
            streak_type: Type of streak (daily_logging, journal_entries, ...)
            activity_date: Calendar day of the activity
            tx: Unit of work to join (optional)

        Returns:
            StreakUpdate with the resulting record

        Raises:
            StaleEvent: activity is older than the last recorded day (no mutation)
        """
        async with joined_transaction(self.store, user_id, tx) as unit:
            record = await unit.get_streak(streak_type)
            update = advance_streak(record, user_id, streak_type, activity_date)
            if update.changed:
                await unit.save_streak(update.record)

        if update.changed:
            logger.info(
                f"Updated {streak_type} streak for user {user_id}: "
                f"{update.previous_current} → {update.record.current} days"
            )
        return update

    async def get_streaks(self, user_id: str) -> List[StreakRecord]:
        """All streaks for a user, longest current streak first"""
        streaks = await self.store.list_streaks(user_id)
        streaks.sort(key=lambda s: (-s.current, s.streak_type))
        return streaks

"""
ProgressService - Progress Engine Business Logic

Entry point for everything outside the engine (HTTP routes, event
consumers). Wires the action log, streak tracker, achievement registry,
score ledger, reward claims and leaderboard together.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

from progress_engine.db.store import ProgressStore, UserTransaction
from progress_engine.exceptions import StaleEvent
from progress_engine.gamification.achievement_system import AchievementRegistry
from progress_engine.gamification.action_log import ActionLog, check_not_future, new_event
from progress_engine.gamification.action_rules import (
    IMPACT_ACHIEVEMENTS,
    STREAK_ACHIEVEMENTS,
    get_rule,
    points_for_action,
    validate_metadata,
)
from progress_engine.gamification.leaderboard import Leaderboard, weighted_total
from progress_engine.gamification.points_ledger import ScoreLedger
from progress_engine.gamification.reward_claims import RewardClaimCoordinator
from progress_engine.gamification.streak_system import StreakTracker
from progress_engine.models.progress import (
    AchievementDefinition,
    ActionEvent,
    ActionOutcome,
    ClaimResult,
    LeaderboardSnapshot,
    PointTransaction,
    ScoreLedgerEntry,
    StreakRecord,
    TimeWindow,
    UserAchievement,
    UserChallenge,
)
from progress_engine.observability.metrics import actions_processed_total, stale_events_total
from progress_engine.resilience.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class ProgressService:
    """
    Service for progress tracking.

    Responsibilities:
    - Processing point-worthy actions (idempotently, one unit of work each)
    - Streak, achievement and challenge progress
    - Impact-threshold achievements after each action
    - Reward claims
    - Points, history and leaderboard reads
    """

    def __init__(
        self,
        store: ProgressStore,
        definitions: Optional[List[AchievementDefinition]] = None,
        weights: Optional[Dict[str, float]] = None
    ):
        """
        Initialize ProgressService.

        Args:
            store: Storage backend
            definitions: Achievement catalog (loaded from config when None)
            weights: Leaderboard impact weights (from config when None)
        """
        self.store = store
        self.action_log = ActionLog(store)
        self.ledger = ScoreLedger(store)
        self.streaks = StreakTracker(store)
        self.achievements = AchievementRegistry(store, definitions)
        self.claims = RewardClaimCoordinator(store, self.achievements, self.ledger)
        self.leaderboard = Leaderboard(store, weights)
        logger.debug("ProgressService initialized")

    # ==========================================
    # Actions
    # ==========================================

    async def action_occurred(
        self,
        user_id: str,
        action_type: str,
        timestamp: datetime,
        idempotency_key: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ActionOutcome:
        """
        Process one point-worthy action.

        Appends the event, credits its points, advances its streak,
        achievement and challenge progress, all in one unit of work. Replaying
        the same idempotency key is a no-op that reports duplicate=True.
        Impact-threshold achievements are then brought up to the user's
        all-time scores in a second unit of work.

        Args:
            user_id: User identifier
            action_type: One of the known action types
            timestamp: When the action happened (naive values are UTC)
            idempotency_key: Caller-chosen key, unique per user and action
            metadata: Free-form action details

        Returns:
            ActionOutcome

        Raises:
            ValidationError: unknown action type, invalid metadata, or a
                timestamp too far in the future
            StorageUnavailable: storage still failing after retries
        """
        validate_metadata(action_type, metadata)
        occurred_at = check_not_future(timestamp)
        event = new_event(user_id, action_type, occurred_at, idempotency_key, metadata)

        try:
            outcome = await retry_with_backoff(self._process_action, event)
            await retry_with_backoff(self._refresh_impact_achievements, event, outcome)
        except Exception:
            actions_processed_total.labels(action_type=action_type, status="error").inc()
            raise

        status = "duplicate" if outcome.duplicate else "applied"
        actions_processed_total.labels(action_type=action_type, status=status).inc()
        return outcome

    async def _process_action(self, event: ActionEvent) -> ActionOutcome:
        user_id = event.user_id
        rule = get_rule(event.action_type)

        async with self.store.transaction(user_id) as tx:
            await tx.ensure_user(event.occurred_at)

            appended = await self.action_log.append(event, tx=tx)
            if appended.duplicate:
                return ActionOutcome(
                    event_id=appended.event_id,
                    duplicate=True,
                    ledger=await tx.get_ledger(),
                )

            outcome = ActionOutcome(event_id=appended.event_id, ledger=await tx.get_ledger())

            points = points_for_action(event.action_type, event.metadata)
            if points > 0:
                await self.ledger.credit_points(
                    user_id,
                    points,
                    source_type=event.action_type,
                    source_id=event.event_id,
                    reason=f"Action: {event.action_type.replace('_', ' ')}",
                    tx=tx,
                )
                outcome.points_awarded += points

            if rule.streak_type:
                await self._apply_streak(event, rule.streak_type, outcome, tx)

            for achievement_id, delta in rule.achievements.items():
                await self._progress_achievement(user_id, achievement_id, delta, outcome, tx)

            for instance_id in self.achievements.challenges.instances_for(
                event.action_type, event.occurred_at.date()
            ):
                await self._progress_challenge(user_id, instance_id, outcome, tx)

            outcome.ledger = await tx.get_ledger()

        logger.info(
            f"Processed {event.action_type} for user {user_id}: "
            f"+{outcome.points_awarded} points, earned {outcome.newly_earned or 'nothing new'}"
        )
        return outcome

    async def _apply_streak(
        self,
        event: ActionEvent,
        streak_type: str,
        outcome: ActionOutcome,
        tx: UserTransaction
    ) -> None:
        user_id = event.user_id
        try:
            update = await self.streaks.record_activity(
                user_id, streak_type, event.occurred_at.date(), tx=tx
            )
        except StaleEvent:
            # Dropped; the action's other effects still apply
            stale_events_total.labels(streak_type=streak_type).inc()
            outcome.stale = True
            return

        outcome.streak = update.record
        if update.changed:
            outcome.streak_message = update.message

        if update.changed and update.bonus_points:
            await self.ledger.credit_points(
                user_id,
                update.bonus_points,
                source_type="streak_milestone",
                source_id=f"{streak_type}:{update.record.current}",
                reason=f"{update.record.current}-day {streak_type.replace('_', ' ')} streak",
                tx=tx,
            )
            outcome.points_awarded += update.bonus_points

        growth = update.record.longest - update.previous_longest
        if growth > 0:
            for achievement_id in STREAK_ACHIEVEMENTS.get(streak_type, ()):
                await self._progress_achievement(user_id, achievement_id, growth, outcome, tx)

    async def _progress_achievement(
        self,
        user_id: str,
        achievement_id: str,
        delta: int,
        outcome: ActionOutcome,
        tx: UserTransaction
    ) -> None:
        if not self.achievements.has_definition(achievement_id):
            logger.debug(f"Achievement {achievement_id} not in catalog, skipping")
            return

        update = await self.achievements.increment_progress(user_id, achievement_id, delta, tx=tx)
        outcome.achievements_progressed.append(achievement_id)
        if update.newly_earned:
            outcome.newly_earned.append(achievement_id)

    async def _progress_challenge(
        self,
        user_id: str,
        instance_id: str,
        outcome: ActionOutcome,
        tx: UserTransaction
    ) -> None:
        update = await self.achievements.increment_progress(user_id, instance_id, 1, tx=tx)
        outcome.challenges_progressed.append(instance_id)
        if update.newly_earned:
            outcome.challenges_completed.append(instance_id)

    async def _refresh_impact_achievements(self, event: ActionEvent, outcome: ActionOutcome) -> None:
        """Raise impact achievement progress to the user's all-time scores"""
        user_id = event.user_id
        now = max(datetime.now(timezone.utc), event.occurred_at)
        scores = await self.leaderboard.user_category_scores(user_id, now)
        values = scores.model_dump()
        values["total"] = weighted_total(scores, self.leaderboard.weights)

        progressed: List[str] = []
        earned: List[str] = []
        async with self.store.transaction(user_id) as tx:
            for achievement_id, category in IMPACT_ACHIEVEMENTS.items():
                if not self.achievements.has_definition(achievement_id):
                    continue
                definition = self.achievements.get_definition(achievement_id)
                stored = await tx.get_achievement_progress(achievement_id)
                current = stored.progress if stored else 0
                delta = min(values[category], definition.max_progress) - current
                if delta <= 0:
                    continue
                update = await self.achievements.increment_progress(user_id, achievement_id, delta, tx=tx)
                progressed.append(achievement_id)
                if update.newly_earned:
                    earned.append(achievement_id)

        # Only reported once the unit of work has committed
        outcome.achievements_progressed.extend(progressed)
        outcome.newly_earned.extend(earned)

    # ==========================================
    # Claims
    # ==========================================

    async def claim_achievement(self, user_id: str, achievement_id: str) -> ClaimResult:
        """
        Claim an earned achievement's points (at most once).

        Challenge instances ("daily_journal:2024-06-01") are claimed the same way.

        Raises:
            NotEligible: achievement not earned yet
            RecordNotFoundError: unknown achievement id
        """
        return await retry_with_backoff(self.claims.claim, user_id, achievement_id)

    # ==========================================
    # Corrections
    # ==========================================

    async def void_action(self, user_id: str, event_id: str) -> ActionEvent:
        """
        Void a logged action so it stops counting toward impact scores.

        Points, streaks and achievement progress it produced are kept.

        Raises:
            RecordNotFoundError: the user has no such event
        """
        return await retry_with_backoff(self.action_log.void, user_id, event_id)

    # ==========================================
    # Reads
    # ==========================================

    def get_achievement_definitions(self) -> List[AchievementDefinition]:
        return self.achievements.get_definitions()

    async def get_user_progress(self, user_id: str) -> ScoreLedgerEntry:
        return await self.ledger.get_progress(user_id)

    async def get_streaks(self, user_id: str) -> List[StreakRecord]:
        return await self.streaks.get_streaks(user_id)

    async def get_achievements(self, user_id: str) -> List[UserAchievement]:
        return await self.achievements.get_user_achievements(user_id)

    async def get_challenges(self, user_id: str, day: Optional[date] = None) -> List[UserChallenge]:
        day = day or datetime.now(timezone.utc).date()
        return await self.achievements.get_user_challenges(user_id, day)

    async def get_recommendations(self, user_id: str, limit: int = 3) -> List[UserAchievement]:
        return await self.achievements.get_recommendations(user_id, limit)

    async def get_point_history(self, user_id: str, limit: int = 50) -> List[PointTransaction]:
        return await self.ledger.get_history(user_id, limit)

    async def get_leaderboard(
        self,
        time_window: Union[str, TimeWindow] = TimeWindow.ALL_TIME,
        limit: int = 100,
        now: Optional[datetime] = None
    ) -> List[LeaderboardSnapshot]:
        return await self.leaderboard.rank(time_window, limit, now=now)

    async def get_user_standing(
        self,
        user_id: str,
        time_window: Union[str, TimeWindow] = TimeWindow.ALL_TIME,
        now: Optional[datetime] = None
    ) -> LeaderboardSnapshot:
        return await self.leaderboard.get_user_standing(user_id, time_window, now=now)

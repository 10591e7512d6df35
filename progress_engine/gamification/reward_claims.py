"""
Reward Claim Coordinator

Turns "achievement earned" into "points credited" exactly once.

A claim is one unit of work over the achievement progress row and the
score ledger entry:
1. Read progress under the user's lock; not earned -> NotEligible
2. Already claimed -> no-op, already_claimed=True
3. Mark claimed and credit point_value through the score ledger
4. Commit both writes together

A client retrying after an unacknowledged commit sees already_claimed=True,
so points are never credited twice.
"""

from datetime import datetime, timezone
import logging

from progress_engine.db.store import ProgressStore
from progress_engine.exceptions import NotEligible
from progress_engine.gamification.achievement_system import AchievementRegistry
from progress_engine.gamification.points_ledger import ScoreLedger
from progress_engine.models.progress import ClaimResult
from progress_engine.observability.metrics import claims_total

logger = logging.getLogger(__name__)


class RewardClaimCoordinator:
    """At-most-once crediting of achievement rewards"""

    def __init__(self, store: ProgressStore, registry: AchievementRegistry, ledger: ScoreLedger):
        self.store = store
        self.registry = registry
        self.ledger = ledger

    async def claim(self, user_id: str, achievement_id: str) -> ClaimResult:
        """
        Claim the reward for an earned achievement

        Args:
            user_id: User identifier
            achievement_id: Catalog id or challenge instance id

        Returns:
            ClaimResult with points awarded and the resulting ledger entry

        Raises:
            NotEligible: achievement not earned yet (nothing is written)
            RecordNotFoundError: unknown achievement id
        """
        definition = self.registry.get_definition(achievement_id)

        async with self.store.transaction(user_id) as tx:
            progress = await tx.get_achievement_progress(achievement_id)

            if progress is None or not progress.earned:
                claims_total.labels(outcome="not_eligible").inc()
                raise NotEligible(achievement_id, user_id=user_id, operation="claim")

            if progress.claimed:
                claims_total.labels(outcome="already_claimed").inc()
                logger.info(f"User {user_id} already claimed {achievement_id}")
                return ClaimResult(
                    points_awarded=0,
                    already_claimed=True,
                    ledger=await tx.get_ledger(),
                )

            await tx.save_achievement_progress(progress.model_copy(update={
                "claimed": True,
                "claimed_at": datetime.now(timezone.utc),
            }))

            if definition.point_value > 0:
                is_challenge = definition.category == "challenge"
                ledger = await self.ledger.credit_points(
                    user_id,
                    definition.point_value,
                    source_type="challenge" if is_challenge else "achievement",
                    source_id=achievement_id,
                    reason=(
                        f"Challenge completed: {definition.title}" if is_challenge
                        else f"Achievement unlocked: {definition.title}"
                    ),
                    tx=tx,
                )
            else:
                ledger = await tx.get_ledger()

        claims_total.labels(outcome="awarded").inc()
        logger.info(
            f"User {user_id} claimed {achievement_id} for {definition.point_value} points"
        )
        return ClaimResult(
            points_awarded=definition.point_value,
            already_claimed=False,
            ledger=ledger,
        )

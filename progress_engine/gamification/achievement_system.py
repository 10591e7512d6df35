"""
Achievement System

Static catalog of achievements plus per-user progress counters.

Categories:
- Tracking (first entry, consecutive logging)
- Patterns (AI-discovered correlations and insights)
- Community (posting, helping others)
- Milestones (research contributions, long-term devotion)
- Impact (all-time leaderboard category scores crossing a threshold)

Features:
- Progress clamped to [0, max_progress]
- Earned exactly once, never revoked
- Recommendations for achievements close to completion
- Challenge instances (see challenges.py) resolve to definitions too, so
  they share increments and claims with achievements

Crediting an earned achievement's points is the reward claim coordinator's
job, never this module's.
"""

import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from progress_engine.config import ACHIEVEMENTS_FILE
from progress_engine.db.store import ProgressStore, UserTransaction
from progress_engine.exceptions import (
    ConfigurationError,
    RecordNotFoundError,
    ValidationError,
)
from progress_engine.gamification.challenges import ChallengeCatalog, base_id, period_end
from progress_engine.gamification.points_ledger import joined_transaction
from progress_engine.models.progress import (
    AchievementDefinition,
    AchievementProgress,
    ProgressUpdate,
    Rarity,
    UserAchievement,
    UserChallenge,
)
from progress_engine.observability.metrics import achievements_earned_total

logger = logging.getLogger(__name__)


DEFAULT_ACHIEVEMENTS: List[AchievementDefinition] = [
    AchievementDefinition(
        id="first_entry",
        title="First Steps",
        requirement="Log your first symptom entry",
        category="tracking",
        max_progress=1,
        point_value=10,
        rarity=Rarity.COMMON,
    ),
    AchievementDefinition(
        id="first_post",
        title="Finding Your Voice",
        requirement="Share your first community forum post",
        category="community",
        max_progress=1,
        point_value=25,
        rarity=Rarity.COMMON,
    ),
    AchievementDefinition(
        id="week_warrior",
        title="Week Warrior",
        requirement="Log symptoms for 7 consecutive days",
        category="tracking",
        max_progress=7,
        point_value=50,
        rarity=Rarity.RARE,
    ),
    AchievementDefinition(
        id="pattern_detective",
        title="Pattern Detective",
        requirement="AI discovers your first correlation pattern",
        category="patterns",
        max_progress=1,
        point_value=75,
        rarity=Rarity.EPIC,
    ),
    AchievementDefinition(
        id="community_helper",
        title="Community Helper",
        requirement="Help 5 community members with thoughtful responses",
        category="community",
        max_progress=5,
        point_value=30,
        rarity=Rarity.COMMON,
    ),
    AchievementDefinition(
        id="data_champion",
        title="Data Champion",
        requirement="Contribute 30 days of research data",
        category="milestone",
        max_progress=30,
        point_value=200,
        rarity=Rarity.LEGENDARY,
    ),
    AchievementDefinition(
        id="insight_master",
        title="Insight Master",
        requirement="Unlock 10 AI-generated health insights",
        category="patterns",
        max_progress=10,
        point_value=100,
        rarity=Rarity.EPIC,
    ),
    AchievementDefinition(
        id="monthly_devotion",
        title="Monthly Devotion",
        requirement="Log symptoms for 30 consecutive days",
        category="tracking",
        max_progress=30,
        point_value=150,
        rarity=Rarity.EPIC,
    ),

    # Impact thresholds, progress tracks the all-time score
    AchievementDefinition(
        id="research_pioneer",
        title="Research Pioneer",
        requirement="Reach a research impact score of 500",
        category="research",
        max_progress=500,
        point_value=200,
        rarity=Rarity.EPIC,
    ),
    AchievementDefinition(
        id="community_pillar",
        title="Community Pillar",
        requirement="Reach a community support score of 750",
        category="community",
        max_progress=750,
        point_value=250,
        rarity=Rarity.EPIC,
    ),
    AchievementDefinition(
        id="knowledge_guardian",
        title="Knowledge Guardian",
        requirement="Reach a knowledge sharing score of 400",
        category="knowledge",
        max_progress=400,
        point_value=150,
        rarity=Rarity.RARE,
    ),
    AchievementDefinition(
        id="mentor_extraordinaire",
        title="Mentor Extraordinaire",
        requirement="Reach a mentoring score of 600",
        category="mentoring",
        max_progress=600,
        point_value=200,
        rarity=Rarity.EPIC,
    ),
    AchievementDefinition(
        id="consistency_champion",
        title="Consistency Champion",
        requirement="Reach a consistency score of 300",
        category="milestone",
        max_progress=300,
        point_value=100,
        rarity=Rarity.RARE,
    ),
    AchievementDefinition(
        id="impact_titan",
        title="Impact Titan",
        requirement="Reach a total impact score of 5000",
        category="milestone",
        max_progress=5000,
        point_value=500,
        rarity=Rarity.LEGENDARY,
    ),
]


def load_achievement_definitions(path: Optional[Path] = None) -> List[AchievementDefinition]:
    """
    Load the achievement catalog

    Args:
        path: JSON file holding a list of definitions (built-in catalog when None)

    Returns:
        List of AchievementDefinition

    Raises:
        ConfigurationError: File unreadable, malformed, or has duplicate ids
    """
    if path is None:
        return list(DEFAULT_ACHIEVEMENTS)

    try:
        raw = json.loads(Path(path).read_text())
        definitions = [AchievementDefinition(**item) for item in raw]
    except (OSError, ValueError, TypeError, PydanticValidationError) as e:
        raise ConfigurationError(
            f"Invalid achievement catalog {path}: {e}",
            config_key="ACHIEVEMENTS_FILE",
            cause=e
        )

    seen = set()
    for definition in definitions:
        if definition.id in seen:
            raise ConfigurationError(
                f"Duplicate achievement id '{definition.id}' in {path}",
                config_key="ACHIEVEMENTS_FILE"
            )
        seen.add(definition.id)

    logger.info(f"Loaded {len(definitions)} achievement definitions from {path}")
    return definitions


def _apply_delta(
    progress: AchievementProgress,
    definition: AchievementDefinition,
    delta: int
) -> ProgressUpdate:
    """Clamp progress into [0, max_progress] and set earned on first arrival"""
    if progress.earned:
        # Earned is one-way; the counter stays at max
        return ProgressUpdate(progress=progress, newly_earned=False)

    value = max(0, min(definition.max_progress, progress.progress + delta))
    if value >= definition.max_progress:
        updated = progress.model_copy(update={
            "progress": value,
            "earned": True,
            "earned_at": datetime.now(timezone.utc),
        })
        return ProgressUpdate(progress=updated, newly_earned=True)

    return ProgressUpdate(
        progress=progress.model_copy(update={"progress": value}),
        newly_earned=False,
    )


class AchievementRegistry:
    """Achievement catalog and per-user progress"""

    def __init__(
        self,
        store: ProgressStore,
        definitions: Optional[List[AchievementDefinition]] = None,
        challenges: Optional[ChallengeCatalog] = None
    ):
        self.store = store
        self.challenges = challenges if challenges is not None else ChallengeCatalog()
        if definitions is None:
            definitions = load_achievement_definitions(ACHIEVEMENTS_FILE)
        self._definitions: Dict[str, AchievementDefinition] = {d.id: d for d in definitions}

    def get_definitions(self) -> List[AchievementDefinition]:
        return list(self._definitions.values())

    def has_definition(self, achievement_id: str) -> bool:
        return (
            achievement_id in self._definitions
            or self.challenges.parse_instance(achievement_id) is not None
        )

    def get_definition(self, achievement_id: str) -> AchievementDefinition:
        """Catalog achievement or challenge instance"""
        definition = self._definitions.get(achievement_id) or self.challenges.definition_for(achievement_id)
        if definition is None:
            raise RecordNotFoundError(
                f"Unknown achievement '{achievement_id}'",
                record_type="Achievement",
                record_id=achievement_id
            )
        return definition

    async def increment_progress(
        self,
        user_id: str,
        achievement_id: str,
        delta: int,
        tx: Optional[UserTransaction] = None,
    ) -> ProgressUpdate:
        """
        Add delta to a user's progress toward an achievement

        Args:
            user_id: User identifier
            achievement_id: Catalog id or challenge instance id
            delta: Non-zero integer increment
            tx: Unit of work to join (optional)

        Returns:
            ProgressUpdate; newly_earned is True only on the transition to earned

        Raises:
            ValidationError: delta is zero or not an integer
            RecordNotFoundError: unknown achievement id
        """
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise ValidationError(
                "Progress delta must be a non-zero integer",
                field="delta",
                value=delta,
                user_id=user_id,
                operation="increment_progress"
            )
        definition = self.get_definition(achievement_id)

        async with joined_transaction(self.store, user_id, tx) as unit:
            stored = await unit.get_achievement_progress(achievement_id)
            current = stored or AchievementProgress(user_id=user_id, achievement_id=achievement_id)

            update = _apply_delta(current, definition, delta)
            if stored is None or update.progress != current:
                await unit.save_achievement_progress(update.progress)

        if update.newly_earned:
            achievements_earned_total.labels(achievement_id=base_id(achievement_id)).inc()
            logger.info(f"User {user_id} earned achievement: {definition.title}")

        return update

    async def get_user_achievements(self, user_id: str) -> List[UserAchievement]:
        """
        Full catalog joined with the user's progress

        Returns:
            Earned achievements first, then closest to completion
        """
        rows = {p.achievement_id: p for p in await self.store.list_achievement_progress(user_id)}

        achievements = []
        for definition in self._definitions.values():
            row = rows.get(definition.id)
            achievements.append(UserAchievement(
                definition=definition,
                progress=row.progress if row else 0,
                earned=row.earned if row else False,
                earned_at=row.earned_at if row else None,
                claimed=row.claimed if row else False,
                claimed_at=row.claimed_at if row else None,
            ))

        achievements.sort(key=lambda a: (not a.earned, -a.percentage, a.definition.id))
        return achievements

    async def get_user_challenges(self, user_id: str, day: date) -> List[UserChallenge]:
        """Every challenge's instance for the period containing day, with progress"""
        rows = {p.achievement_id: p for p in await self.store.list_achievement_progress(user_id)}

        challenges = []
        for challenge, instance in self.challenges.current_instances(day):
            row = rows.get(instance)
            challenges.append(UserChallenge(
                challenge_id=challenge.id,
                instance_id=instance,
                title=challenge.title,
                description=challenge.description,
                period=challenge.period.value,
                period_key=instance.split(":", 1)[1],
                category=challenge.category,
                target=challenge.target,
                point_value=challenge.reward,
                progress=row.progress if row else 0,
                completed=row.earned if row else False,
                claimed=row.claimed if row else False,
                ends_on=period_end(challenge.period, day),
            ))
        return challenges

    async def get_recommendations(self, user_id: str, limit: int = 3) -> List[UserAchievement]:
        """
        Achievements close to completion (>= 50%)

        Args:
            user_id: User identifier
            limit: Number of recommendations to return
        """
        achievements = await self.get_user_achievements(user_id)
        close_to_completion = [
            a for a in achievements
            if not a.earned and a.percentage >= 50
        ]
        return close_to_completion[:limit]


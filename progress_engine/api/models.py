"""Pydantic models for API request/response validation"""
from typing import Optional, List, Dict, Any, Literal
from pydantic import BaseModel, Field
from datetime import date, datetime

from progress_engine.models.progress import (
    AchievementDefinition,
    ActionEvent,
    LeaderboardSnapshot,
    PointTransaction,
    Rarity,
    ScoreLedgerEntry,
    StreakRecord,
    UserAchievement,
    UserChallenge,
)


class ActionRequest(BaseModel):
    """Request to record a point-worthy action"""
    action_type: str = Field(..., description="Action type (task_completed, forum_post, ...)")
    idempotency_key: str = Field(..., min_length=1, max_length=200, description="Unique per user and action")
    timestamp: Optional[datetime] = Field(
        default=None,
        description="When the action happened (defaults to now, naive values are UTC)"
    )
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form action details")


class ProgressResponse(BaseModel):
    """Response with points and level info"""
    user_id: str
    total_points: int
    level: int
    progress_to_next_level: int
    points_to_next_level: int

    @classmethod
    def from_ledger(cls, entry: ScoreLedgerEntry) -> "ProgressResponse":
        return cls(
            user_id=entry.user_id,
            total_points=entry.total_points,
            level=entry.level,
            progress_to_next_level=entry.progress_to_next_level,
            points_to_next_level=entry.points_to_next_level,
        )


class StreakResponse(BaseModel):
    """Response with streak info"""
    user_id: str
    streaks: List[StreakRecord]


class AchievementView(BaseModel):
    """Achievement definition with one user's progress"""
    id: str
    title: str
    requirement: str
    category: str
    rarity: Rarity
    point_value: int
    max_progress: int
    progress: int
    percentage: int
    earned: bool
    earned_at: Optional[datetime] = None
    claimed: bool
    claimed_at: Optional[datetime] = None

    @classmethod
    def from_user_achievement(cls, achievement: UserAchievement) -> "AchievementView":
        definition = achievement.definition
        return cls(
            id=definition.id,
            title=definition.title,
            requirement=definition.requirement,
            category=definition.category,
            rarity=definition.rarity,
            point_value=definition.point_value,
            max_progress=definition.max_progress,
            progress=achievement.progress,
            percentage=achievement.percentage,
            earned=achievement.earned,
            earned_at=achievement.earned_at,
            claimed=achievement.claimed,
            claimed_at=achievement.claimed_at,
        )


class AchievementResponse(BaseModel):
    """Response with achievement info"""
    user_id: str
    achievements: List[AchievementView]
    recommendations: List[AchievementView]


class AchievementCatalogResponse(BaseModel):
    """Static achievement catalog"""
    achievements: List[AchievementDefinition]


class ClaimResponse(BaseModel):
    """Outcome of claiming an achievement reward"""
    status: Literal["awarded", "already_claimed", "not_eligible"]
    user_id: str
    achievement_id: str
    points_awarded: int = 0
    already_claimed: bool = False
    total_points: int
    level: int


class ChallengeResponse(BaseModel):
    """Current period of every challenge with the user's progress"""
    user_id: str
    day: date
    challenges: List[UserChallenge]


class VoidResponse(BaseModel):
    """A voided action"""
    user_id: str
    event: ActionEvent


class LeaderboardResponse(BaseModel):
    """Ranked leaderboard"""
    time_window: str
    entries: List[LeaderboardSnapshot]


class PointHistoryResponse(BaseModel):
    """Recent point credits, newest first"""
    user_id: str
    transactions: List[PointTransaction]


class HealthCheckResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    storage: str = Field(..., description="Storage connection status")
    timestamp: datetime = Field(..., description="Check timestamp")

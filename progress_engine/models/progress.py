"""Progress engine models: ledger, streaks, achievements, action log, leaderboard"""
from enum import Enum
from datetime import date, datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

# Every 200 points is a new level
LEVEL_SIZE = 200


class Rarity(str, Enum):
    """Achievement rarity"""
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class ImpactCategory(str, Enum):
    """Leaderboard impact categories"""
    RESEARCH = "research"
    SUPPORT = "support"
    KNOWLEDGE = "knowledge"
    MENTORING = "mentoring"
    CONSISTENCY = "consistency"


class Tier(str, Enum):
    """Impact tiers, lowest first"""
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"


class TimeWindow(str, Enum):
    """Leaderboard time windows"""
    WEEK = "week"
    MONTH = "month"
    ALL_TIME = "all_time"


# ==========================================
# Action Log
# ==========================================

class ActionEvent(BaseModel):
    """Point-worthy user action. Immutable once appended."""
    model_config = ConfigDict(frozen=True)

    event_id: str
    user_id: str
    action_type: str
    occurred_at: datetime
    idempotency_key: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    voided: bool = False


class AppendResult(BaseModel):
    """Result of appending to the action log"""
    event_id: str
    duplicate: bool = False


class UserRecord(BaseModel):
    """Engine-side user registration"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    joined_at: datetime


# ==========================================
# Score Ledger
# ==========================================

class ScoreLedgerEntry(BaseModel):
    """Authoritative points/level state for one user"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    total_points: int = Field(0, ge=0)
    level: int = Field(1, ge=1)
    progress_to_next_level: int = Field(0, ge=0, lt=LEVEL_SIZE)

    @model_validator(mode="after")
    def check_level_invariant(self) -> "ScoreLedgerEntry":
        """Level and progress must match the point total"""
        if self.level != self.total_points // LEVEL_SIZE + 1:
            raise ValueError(f"level {self.level} does not match {self.total_points} points")
        if self.progress_to_next_level != self.total_points % LEVEL_SIZE:
            raise ValueError(
                f"progress {self.progress_to_next_level} does not match {self.total_points} points"
            )
        return self

    @classmethod
    def from_total_points(cls, user_id: str, total_points: int) -> "ScoreLedgerEntry":
        """Build a ledger entry, deriving level and progress from the total"""
        return cls(
            user_id=user_id,
            total_points=total_points,
            level=total_points // LEVEL_SIZE + 1,
            progress_to_next_level=total_points % LEVEL_SIZE,
        )

    @property
    def points_to_next_level(self) -> int:
        return LEVEL_SIZE - self.progress_to_next_level


class PointTransaction(BaseModel):
    """Journal line for a point credit"""
    model_config = ConfigDict(frozen=True)

    transaction_id: str
    user_id: str
    amount: int = Field(..., gt=0)
    source_type: str
    source_id: Optional[str] = None
    reason: str = ""
    awarded_at: datetime


# ==========================================
# Streaks
# ==========================================

class StreakRecord(BaseModel):
    """Consecutive-day streak for one user and streak type"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    streak_type: str
    current: int = Field(0, ge=0)
    longest: int = Field(0, ge=0)
    last_active_date: Optional[date] = None
    target: int = Field(7, ge=1)

    @model_validator(mode="after")
    def check_longest(self) -> "StreakRecord":
        """Longest streak can never be shorter than the current one"""
        if self.longest < self.current:
            raise ValueError(f"longest ({self.longest}) < current ({self.current})")
        return self


class StreakUpdate(BaseModel):
    """Outcome of recording an activity against a streak"""
    record: StreakRecord
    previous_current: int = 0
    previous_longest: int = 0
    changed: bool = False
    milestone_reached: bool = False
    bonus_points: int = 0
    message: str = ""


# ==========================================
# Achievements
# ==========================================

class AchievementDefinition(BaseModel):
    """Static achievement catalog entry"""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    requirement: str
    category: str = "milestone"
    max_progress: int = Field(..., ge=1)
    point_value: int = Field(..., ge=0)
    rarity: Rarity = Rarity.COMMON


class AchievementProgress(BaseModel):
    """One user's progress toward one achievement"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    achievement_id: str
    progress: int = Field(0, ge=0)
    earned: bool = False
    earned_at: Optional[datetime] = None
    claimed: bool = False
    claimed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_claim_state(self) -> "AchievementProgress":
        """A claimed achievement must have been earned"""
        if self.claimed and not self.earned:
            raise ValueError("claimed achievement must be earned")
        return self


class ProgressUpdate(BaseModel):
    """Outcome of an achievement progress increment"""
    progress: AchievementProgress
    newly_earned: bool = False


class UserAchievement(BaseModel):
    """Achievement progress joined with its definition"""
    definition: AchievementDefinition
    progress: int
    earned: bool
    earned_at: Optional[datetime] = None
    claimed: bool
    claimed_at: Optional[datetime] = None

    @property
    def percentage(self) -> int:
        return min(100, int(self.progress * 100 / self.definition.max_progress))


class UserChallenge(BaseModel):
    """One period of a challenge with the user's progress"""
    challenge_id: str
    instance_id: str
    title: str
    description: str
    period: str
    period_key: str
    category: str
    target: int
    point_value: int
    progress: int = 0
    completed: bool = False
    claimed: bool = False
    ends_on: Optional[date] = None


class ClaimResult(BaseModel):
    """Outcome of claiming an achievement reward"""
    points_awarded: int
    already_claimed: bool
    ledger: ScoreLedgerEntry


# ==========================================
# Leaderboard
# ==========================================

class ActivityAggregate(BaseModel):
    """
    Count of a user's non-voided events sharing the fields impact scoring
    looks at (action type, calendar month, helpful votes, education topic)
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    action_type: str
    month: date
    helpful_votes: int = 0
    education: bool = False
    count: int = Field(..., ge=1)


class CategoryScores(BaseModel):
    """Impact sub-scores per category"""
    research: int = 0
    support: int = 0
    knowledge: int = 0
    mentoring: int = 0
    consistency: int = 0


class LeaderboardSnapshot(BaseModel):
    """Derived ranking row. Never the source of truth for points."""
    user_id: str
    total_impact_score: int
    category_scores: CategoryScores
    tier: Tier
    rank: int
    joined_date: datetime
    total_points: int = 0
    level: int = 1


# ==========================================
# Service Outcomes
# ==========================================

class ActionOutcome(BaseModel):
    """Everything one processed action changed"""
    event_id: str
    duplicate: bool = False
    points_awarded: int = 0
    ledger: ScoreLedgerEntry
    streak: Optional[StreakRecord] = None
    streak_message: Optional[str] = None
    achievements_progressed: list[str] = Field(default_factory=list)
    newly_earned: list[str] = Field(default_factory=list)
    challenges_progressed: list[str] = Field(default_factory=list)
    challenges_completed: list[str] = Field(default_factory=list)
    stale: bool = False

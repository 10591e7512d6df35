"""
Challenge System

Time-boxed community challenges: log symptoms today, post three times this
week, contribute to three research studies. Each challenge repeats once per
period, and every period is its own instance with id
"<challenge_id>:<period_key>":

- daily: "daily_journal:2024-06-01"
- weekly (ISO week): "weekly_consistency:2024-W22"
- monthly: "community_builder:2024-06"
- special (never resets): "research_hero:open"

Instances are tracked and claimed exactly like achievements: the registry
resolves an instance id to a definition with category "challenge",
max_progress = target and point_value = points + bonus points, so progress
clamping, one-way completion and at-most-once claiming all come from the
achievement system.
"""

import re
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple

from progress_engine.models.progress import AchievementDefinition, Rarity

INSTANCE_SEPARATOR = ":"
SPECIAL_PERIOD_KEY = "open"


class ChallengePeriod(Enum):
    """How often a challenge resets"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    SPECIAL = "special"


@dataclass(frozen=True)
class Challenge:
    """Challenge definition"""
    id: str
    title: str
    description: str
    period: ChallengePeriod
    category: str
    target: int
    points: int
    bonus_points: int
    action_types: Tuple[str, ...]

    @property
    def reward(self) -> int:
        return self.points + self.bonus_points


# ============================================
# Challenge Library
# ============================================

CHALLENGE_LIBRARY: List[Challenge] = [
    # ========== DAILY ==========
    Challenge(
        id="daily_symptom_track",
        title="Daily Symptom Check",
        description="Log your symptoms for today",
        period=ChallengePeriod.DAILY,
        category="health_tracking",
        target=1,
        points=25,
        bonus_points=10,
        action_types=("symptom_logged", "daily_check_in"),
    ),
    Challenge(
        id="daily_journal",
        title="Digital Matchbox Entry",
        description="Write in your health journal",
        period=ChallengePeriod.DAILY,
        category="health_tracking",
        target=1,
        points=20,
        bonus_points=15,
        action_types=("journal_entry",),
    ),
    Challenge(
        id="daily_community",
        title="Community Connection",
        description="Engage with the community forum",
        period=ChallengePeriod.DAILY,
        category="community",
        target=1,
        points=30,
        bonus_points=20,
        action_types=("forum_post", "forum_reply"),
    ),

    # ========== WEEKLY ==========
    Challenge(
        id="weekly_consistency",
        title="Consistency Champion",
        description="Track symptoms 5 times this week",
        period=ChallengePeriod.WEEKLY,
        category="health_tracking",
        target=5,
        points=100,
        bonus_points=50,
        action_types=("symptom_logged",),
    ),
    Challenge(
        id="weekly_insights",
        title="Pattern Detective",
        description="Review AI insights 3 times this week",
        period=ChallengePeriod.WEEKLY,
        category="wellness",
        target=3,
        points=75,
        bonus_points=25,
        action_types=("insight_unlocked",),
    ),
    Challenge(
        id="weekly_community_leader",
        title="Community Leader",
        description="Help others with 3 forum responses this week",
        period=ChallengePeriod.WEEKLY,
        category="community",
        target=3,
        points=150,
        bonus_points=75,
        action_types=("forum_post", "forum_reply"),
    ),

    # ========== MONTHLY ==========
    Challenge(
        id="community_builder",
        title="Community Builder",
        description="Make 20 forum posts this month",
        period=ChallengePeriod.MONTHLY,
        category="community",
        target=20,
        points=150,
        bonus_points=0,
        action_types=("forum_post",),
    ),

    # ========== SPECIAL ==========
    Challenge(
        id="research_hero",
        title="Research Hero",
        description="Contribute to 3 research studies",
        period=ChallengePeriod.SPECIAL,
        category="research",
        target=3,
        points=500,
        bonus_points=250,
        action_types=("survey_completed", "research_participation"),
    ),
]

RARITY_BY_PERIOD: Dict[ChallengePeriod, Rarity] = {
    ChallengePeriod.DAILY: Rarity.COMMON,
    ChallengePeriod.WEEKLY: Rarity.RARE,
    ChallengePeriod.MONTHLY: Rarity.RARE,
    ChallengePeriod.SPECIAL: Rarity.EPIC,
}

_DAILY_KEY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_WEEKLY_KEY = re.compile(r"^(\d{4})-W(\d{2})$")
_MONTHLY_KEY = re.compile(r"^(\d{4})-(\d{2})$")


# ============================================
# Periods
# ============================================

def period_key(period: ChallengePeriod, day: date) -> str:
    """Key of the period containing day"""
    if period == ChallengePeriod.DAILY:
        return day.isoformat()
    if period == ChallengePeriod.WEEKLY:
        year, week, _ = day.isocalendar()
        return f"{year}-W{week:02d}"
    if period == ChallengePeriod.MONTHLY:
        return f"{day.year}-{day.month:02d}"
    return SPECIAL_PERIOD_KEY


def period_start(period: ChallengePeriod, key: str) -> Optional[date]:
    """
    First day of the period a key names

    Returns:
        The start date, or None if the key is malformed for the period
        (special challenges have no start and also return None)
    """
    try:
        if period == ChallengePeriod.DAILY:
            if not _DAILY_KEY.match(key):
                return None
            return date.fromisoformat(key)
        if period == ChallengePeriod.WEEKLY:
            match = _WEEKLY_KEY.match(key)
            if not match:
                return None
            return date.fromisocalendar(int(match.group(1)), int(match.group(2)), 1)
        if period == ChallengePeriod.MONTHLY:
            match = _MONTHLY_KEY.match(key)
            if not match:
                return None
            return date(int(match.group(1)), int(match.group(2)), 1)
    except ValueError:
        return None
    return None


def period_end(period: ChallengePeriod, day: date) -> Optional[date]:
    """Last day of the period containing day (None for special challenges)"""
    if period == ChallengePeriod.DAILY:
        return day
    if period == ChallengePeriod.WEEKLY:
        return day + timedelta(days=7 - day.isoweekday())
    if period == ChallengePeriod.MONTHLY:
        next_month = date(day.year + day.month // 12, day.month % 12 + 1, 1)
        return next_month - timedelta(days=1)
    return None


def instance_id(challenge: Challenge, day: date) -> str:
    return f"{challenge.id}{INSTANCE_SEPARATOR}{period_key(challenge.period, day)}"


def base_id(achievement_id: str) -> str:
    """Challenge id of an instance id; other ids are returned unchanged"""
    return achievement_id.split(INSTANCE_SEPARATOR, 1)[0]


# ============================================
# Catalog
# ============================================

class ChallengeCatalog:
    """Challenge library with instance id resolution"""

    def __init__(self, challenges: Optional[List[Challenge]] = None):
        library = CHALLENGE_LIBRARY if challenges is None else challenges
        self._challenges: Dict[str, Challenge] = {c.id: c for c in library}

    def get_challenges(self) -> List[Challenge]:
        return list(self._challenges.values())

    def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        return self._challenges.get(challenge_id)

    def parse_instance(self, achievement_id: str) -> Optional[Tuple[Challenge, str]]:
        """
        Split an instance id into its challenge and period key

        Returns:
            (challenge, period_key), or None when the id is not a well-formed
            instance of a known challenge
        """
        challenge_id, separator, key = achievement_id.partition(INSTANCE_SEPARATOR)
        if not separator:
            return None
        challenge = self._challenges.get(challenge_id)
        if challenge is None:
            return None

        if challenge.period == ChallengePeriod.SPECIAL:
            valid = key == SPECIAL_PERIOD_KEY
        else:
            start = period_start(challenge.period, key)
            valid = start is not None and period_key(challenge.period, start) == key
        return (challenge, key) if valid else None

    def definition_for(self, achievement_id: str) -> Optional[AchievementDefinition]:
        """Achievement definition of a challenge instance, None if not an instance"""
        parsed = self.parse_instance(achievement_id)
        if parsed is None:
            return None
        challenge, _ = parsed
        return AchievementDefinition(
            id=achievement_id,
            title=challenge.title,
            requirement=challenge.description,
            category="challenge",
            max_progress=challenge.target,
            point_value=challenge.reward,
            rarity=RARITY_BY_PERIOD[challenge.period],
        )

    def instances_for(self, action_type: str, day: date) -> List[str]:
        """Instance ids an action on day counts toward"""
        return [
            instance_id(challenge, day)
            for challenge in self._challenges.values()
            if action_type in challenge.action_types
        ]

    def current_instances(self, day: date) -> List[Tuple[Challenge, str]]:
        """Every challenge with the instance id of its period containing day"""
        return [(challenge, instance_id(challenge, day)) for challenge in self._challenges.values()]

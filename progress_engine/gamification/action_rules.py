"""
Action Rules

Declarative wiring from a point-worthy action to its effects:
- points credited immediately through the score ledger
- leaderboard impact category and value
- the streak it counts toward
- achievement progress increments

Point values:
- Task completed: metadata["points"] (5-20), 10 when absent
- Daily check-in: 5
- Symptom logged: 8
- Journal entry: 10
- Forum post: 10, forum reply: 5, post helped someone: 10
- Peer support: 20, peer connection: 30
- Knowledge article: 75
- Mentoring session: 50
- Research participation: 200, survey completed: 40
- Insight unlocked: no points (drives insight achievements only)

Forum posts and replies carry no flat impact value: their impact depends on
the helpful votes and topic in their metadata (see leaderboard.score_activity).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from progress_engine.exceptions import ValidationError
from progress_engine.models.progress import ImpactCategory


TASK_POINTS_MIN = 5
TASK_POINTS_MAX = 20
MAX_HELPFUL_VOTES = 1_000_000

# Actions scored by helpful votes rather than a flat impact value
VOTED_ACTIONS = ("forum_post", "forum_reply")


@dataclass(frozen=True)
class ActionRule:
    """Effects of one action type"""
    points: int = 0
    category: Optional[ImpactCategory] = None
    impact_value: int = 0
    streak_type: Optional[str] = None
    achievements: Dict[str, int] = field(default_factory=dict)


ACTION_RULES: Dict[str, ActionRule] = {
    "task_completed": ActionRule(
        points=10,
        streak_type="daily_tasks",
    ),
    "daily_check_in": ActionRule(
        points=5,
        category=ImpactCategory.CONSISTENCY,
        impact_value=2,
        streak_type="daily_logging",
    ),
    "symptom_logged": ActionRule(
        points=8,
        category=ImpactCategory.CONSISTENCY,
        impact_value=2,
        streak_type="daily_logging",
        achievements={"first_entry": 1},
    ),
    "journal_entry": ActionRule(
        points=10,
        category=ImpactCategory.CONSISTENCY,
        impact_value=2,
        streak_type="journal_entries",
    ),
    "forum_post": ActionRule(
        points=10,
        streak_type="community_posts",
        achievements={"first_post": 1},
    ),
    "forum_reply": ActionRule(
        points=5,
        streak_type="community_posts",
    ),
    "post_helped": ActionRule(
        points=10,
        category=ImpactCategory.SUPPORT,
        impact_value=10,
        achievements={"community_helper": 1},
    ),
    "peer_support": ActionRule(
        points=20,
        category=ImpactCategory.SUPPORT,
        impact_value=20,
    ),
    "knowledge_article": ActionRule(
        points=75,
        category=ImpactCategory.KNOWLEDGE,
        impact_value=75,
    ),
    "mentoring_session": ActionRule(
        points=50,
        category=ImpactCategory.MENTORING,
        impact_value=50,
    ),
    "peer_connection": ActionRule(
        points=30,
        category=ImpactCategory.MENTORING,
        impact_value=30,
    ),
    "research_participation": ActionRule(
        points=200,
        category=ImpactCategory.RESEARCH,
        impact_value=200,
        achievements={"data_champion": 1},
    ),
    "survey_completed": ActionRule(
        points=40,
        category=ImpactCategory.RESEARCH,
        impact_value=40,
        achievements={"data_champion": 1},
    ),
    "insight_unlocked": ActionRule(
        achievements={"pattern_detective": 1, "insight_master": 1},
    ),
}

# Achievements that advance with a streak's longest run
STREAK_ACHIEVEMENTS: Dict[str, Tuple[str, ...]] = {
    "daily_logging": ("week_warrior", "monthly_devotion"),
}

# Achievements tracking an all-time impact score ("total" is the weighted total)
IMPACT_ACHIEVEMENTS: Dict[str, str] = {
    "research_pioneer": ImpactCategory.RESEARCH.value,
    "community_pillar": ImpactCategory.SUPPORT.value,
    "knowledge_guardian": ImpactCategory.KNOWLEDGE.value,
    "mentor_extraordinaire": ImpactCategory.MENTORING.value,
    "consistency_champion": ImpactCategory.CONSISTENCY.value,
    "impact_titan": "total",
}


def get_rule(action_type: str) -> ActionRule:
    """Look up the rule for an action type"""
    rule = ACTION_RULES.get(action_type)
    if rule is None:
        raise ValidationError(
            f"Unknown action type '{action_type}'",
            field="action_type",
            value=action_type
        )
    return rule


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_metadata(action_type: str, metadata: Optional[Dict[str, Any]]) -> None:
    """
    Check the metadata fields that change points or impact

    Raises:
        ValidationError: task points outside 5-20, helpful votes that are not
            a non-negative integer, or a non-string forum category
    """
    get_rule(action_type)
    if not metadata:
        return

    if action_type == "task_completed" and "points" in metadata:
        points = metadata["points"]
        if not _is_int(points) or not TASK_POINTS_MIN <= points <= TASK_POINTS_MAX:
            raise ValidationError(
                f"Task points must be an integer between {TASK_POINTS_MIN} and {TASK_POINTS_MAX}",
                field="metadata.points",
                value=points
            )

    if action_type in VOTED_ACTIONS:
        votes = metadata.get("helpful_votes", 0)
        if not _is_int(votes) or not 0 <= votes <= MAX_HELPFUL_VOTES:
            raise ValidationError(
                "helpful_votes must be a non-negative integer",
                field="metadata.helpful_votes",
                value=votes
            )
        category = metadata.get("category")
        if category is not None and not isinstance(category, str):
            raise ValidationError(
                "category must be a string",
                field="metadata.category",
                value=category
            )


def points_for_action(action_type: str, metadata: Optional[Dict[str, Any]] = None) -> int:
    """
    Points credited immediately for an action

    Task completions carry their own point value in metadata["points"]
    (tasks on the daily list are worth 5-20 points).
    """
    rule = get_rule(action_type)
    validate_metadata(action_type, metadata)
    if action_type == "task_completed" and metadata and "points" in metadata:
        return metadata["points"]
    return rule.points

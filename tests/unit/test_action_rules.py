"""Unit tests for action rules (progress_engine/gamification/action_rules.py)"""
import pytest

from progress_engine.exceptions import ValidationError
from progress_engine.gamification.action_rules import (
    ACTION_RULES,
    get_rule,
    points_for_action,
    validate_metadata,
)
from progress_engine.models.progress import ImpactCategory


def test_unknown_action_type():
    with pytest.raises(ValidationError) as exc_info:
        get_rule("teleported")

    assert exc_info.value.field == "action_type"


def test_consistency_actions_share_impact_value():
    for action_type in ("daily_check_in", "symptom_logged", "journal_entry"):
        rule = ACTION_RULES[action_type]
        assert rule.category == ImpactCategory.CONSISTENCY
        assert rule.impact_value == 2


def test_forum_actions_have_no_flat_category():
    assert ACTION_RULES["forum_post"].category is None
    assert ACTION_RULES["forum_reply"].category is None
    assert ACTION_RULES["task_completed"].category is None


# ============================================================================
# Task Points
# ============================================================================

def test_task_points_default():
    assert points_for_action("task_completed") == 10


@pytest.mark.parametrize("points", [5, 12, 20])
def test_task_points_in_range(points):
    assert points_for_action("task_completed", {"points": points}) == points


@pytest.mark.parametrize("points", [4, 21, 0, -5, 7.5, "10", True])
def test_task_points_out_of_range(points):
    with pytest.raises(ValidationError) as exc_info:
        points_for_action("task_completed", {"points": points})

    assert exc_info.value.field == "metadata.points"


def test_points_key_ignored_for_other_actions():
    assert points_for_action("journal_entry", {"points": 500}) == 10


# ============================================================================
# Forum Metadata
# ============================================================================

def test_forum_metadata_accepted():
    validate_metadata("forum_post", {"helpful_votes": 6, "category": "education"})
    validate_metadata("forum_reply", {})


@pytest.mark.parametrize("votes", [-1, 1.5, "3", None, 2_000_000])
def test_forum_votes_rejected(votes):
    with pytest.raises(ValidationError) as exc_info:
        validate_metadata("forum_reply", {"helpful_votes": votes})

    assert exc_info.value.field == "metadata.helpful_votes"


def test_forum_category_must_be_string():
    with pytest.raises(ValidationError) as exc_info:
        validate_metadata("forum_post", {"category": 3})

    assert exc_info.value.field == "metadata.category"

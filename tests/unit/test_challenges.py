"""Unit tests for the challenge catalog (progress_engine/gamification/challenges.py)"""
import pytest
from datetime import date

from progress_engine.gamification.challenges import (
    CHALLENGE_LIBRARY,
    ChallengeCatalog,
    ChallengePeriod,
    base_id,
    period_end,
    period_key,
    period_start,
)
from progress_engine.models.progress import Rarity


@pytest.fixture
def catalog():
    return ChallengeCatalog()


# ============================================================================
# Period Tests
# ============================================================================

def test_period_keys():
    day = date(2024, 6, 1)

    assert period_key(ChallengePeriod.DAILY, day) == "2024-06-01"
    assert period_key(ChallengePeriod.WEEKLY, day) == "2024-W22"
    assert period_key(ChallengePeriod.MONTHLY, day) == "2024-06"
    assert period_key(ChallengePeriod.SPECIAL, day) == "open"


def test_weekly_key_uses_iso_year():
    """Dec 30 2024 falls in ISO week 1 of 2025"""
    assert period_key(ChallengePeriod.WEEKLY, date(2024, 12, 30)) == "2025-W01"


def test_period_start():
    assert period_start(ChallengePeriod.WEEKLY, "2024-W22") == date(2024, 5, 27)
    assert period_start(ChallengePeriod.MONTHLY, "2024-06") == date(2024, 6, 1)
    assert period_start(ChallengePeriod.DAILY, "2024-02-30") is None
    assert period_start(ChallengePeriod.MONTHLY, "2024-13") is None
    assert period_start(ChallengePeriod.SPECIAL, "open") is None


def test_period_end():
    assert period_end(ChallengePeriod.DAILY, date(2024, 6, 1)) == date(2024, 6, 1)
    assert period_end(ChallengePeriod.WEEKLY, date(2024, 5, 27)) == date(2024, 6, 2)
    assert period_end(ChallengePeriod.WEEKLY, date(2024, 6, 2)) == date(2024, 6, 2)
    assert period_end(ChallengePeriod.MONTHLY, date(2024, 2, 10)) == date(2024, 2, 29)
    assert period_end(ChallengePeriod.MONTHLY, date(2024, 12, 5)) == date(2024, 12, 31)
    assert period_end(ChallengePeriod.SPECIAL, date(2024, 6, 1)) is None


def test_base_id():
    assert base_id("daily_journal:2024-06-01") == "daily_journal"
    assert base_id("first_post") == "first_post"


# ============================================================================
# Catalog Tests
# ============================================================================

def test_library_ids_unique():
    ids = [c.id for c in CHALLENGE_LIBRARY]
    assert len(ids) == len(set(ids))


def test_parse_instance(catalog):
    challenge, key = catalog.parse_instance("weekly_consistency:2024-W22")

    assert challenge.id == "weekly_consistency"
    assert key == "2024-W22"
    assert catalog.parse_instance("research_hero:open")[1] == "open"


@pytest.mark.parametrize("instance", [
    "daily_journal",
    "daily_journal:",
    "daily_journal:2024-6-1",
    "daily_journal:2024-W22",
    "weekly_consistency:2024-W54",
    "weekly_consistency:2024-06-01",
    "community_builder:2024-6",
    "research_hero:2024-06",
    "no_such_challenge:2024-06-01",
])
def test_parse_instance_rejects_malformed(catalog, instance):
    assert catalog.parse_instance(instance) is None


def test_definition_for(catalog):
    definition = catalog.definition_for("research_hero:open")

    assert definition.id == "research_hero:open"
    assert definition.category == "challenge"
    assert definition.max_progress == 3
    assert definition.point_value == 750
    assert definition.rarity == Rarity.EPIC


def test_definition_for_non_instance(catalog):
    assert catalog.definition_for("first_post") is None


def test_instances_for_action(catalog):
    instances = catalog.instances_for("forum_post", date(2024, 6, 1))

    assert sorted(instances) == [
        "community_builder:2024-06",
        "daily_community:2024-06-01",
        "weekly_community_leader:2024-W22",
    ]


def test_instances_for_untracked_action(catalog):
    assert catalog.instances_for("task_completed", date(2024, 6, 1)) == []


def test_custom_library():
    catalog = ChallengeCatalog([CHALLENGE_LIBRARY[0]])

    assert [c.id for c in catalog.get_challenges()] == ["daily_symptom_track"]
    assert catalog.get_challenge("daily_journal") is None

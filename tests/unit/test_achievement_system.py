"""Unit tests for the achievement registry (progress_engine/gamification/achievement_system.py)"""
import asyncio
import json
import pytest
from datetime import date

from progress_engine.exceptions import ConfigurationError, RecordNotFoundError, ValidationError
from progress_engine.gamification.achievement_system import (
    DEFAULT_ACHIEVEMENTS,
    AchievementRegistry,
    load_achievement_definitions,
)
from progress_engine.models.progress import AchievementDefinition, Rarity


# ============================================================================
# Catalog Tests
# ============================================================================

def test_default_catalog_ids_unique():
    ids = [d.id for d in DEFAULT_ACHIEVEMENTS]
    assert len(ids) == len(set(ids))
    assert "first_post" in ids
    assert "insight_master" in ids


def test_get_definition_unknown_id(registry):
    with pytest.raises(RecordNotFoundError):
        registry.get_definition("does_not_exist")


def test_load_definitions_from_file(tmp_path):
    """A JSON catalog replaces the built-in one"""
    catalog = tmp_path / "achievements.json"
    catalog.write_text(json.dumps([
        {
            "id": "first_steps",
            "title": "First Steps",
            "requirement": "Do anything",
            "max_progress": 1,
            "point_value": 5,
            "rarity": "rare",
        }
    ]))

    definitions = load_achievement_definitions(catalog)

    assert len(definitions) == 1
    assert definitions[0].rarity == Rarity.RARE
    assert definitions[0].category == "milestone"


def test_load_definitions_malformed_file(tmp_path):
    catalog = tmp_path / "achievements.json"
    catalog.write_text("{not json")

    with pytest.raises(ConfigurationError):
        load_achievement_definitions(catalog)


def test_load_definitions_duplicate_ids(tmp_path):
    item = {"id": "a", "title": "A", "requirement": "r", "max_progress": 1, "point_value": 1}
    catalog = tmp_path / "achievements.json"
    catalog.write_text(json.dumps([item, item]))

    with pytest.raises(ConfigurationError):
        load_achievement_definitions(catalog)


# ============================================================================
# Progress Tests
# ============================================================================

@pytest.mark.asyncio
async def test_increment_to_max_earns_once(registry):
    """max=10, progress=9, +1 -> earned; +1 again stays 10 with no new transition"""
    await registry.increment_progress("u1", "insight_master", 9)

    first = await registry.increment_progress("u1", "insight_master", 1)
    second = await registry.increment_progress("u1", "insight_master", 1)

    assert first.progress.progress == 10
    assert first.progress.earned is True
    assert first.progress.earned_at is not None
    assert first.newly_earned is True

    assert second.progress.progress == 10
    assert second.newly_earned is False
    assert second.progress.earned_at == first.progress.earned_at


@pytest.mark.asyncio
async def test_increment_clamps_to_max(registry):
    update = await registry.increment_progress("u1", "community_helper", 50)

    assert update.progress.progress == 5
    assert update.newly_earned is True


@pytest.mark.asyncio
async def test_negative_delta_clamps_to_zero(registry):
    await registry.increment_progress("u1", "data_champion", 3)

    update = await registry.increment_progress("u1", "data_champion", -10)

    assert update.progress.progress == 0
    assert update.progress.earned is False


@pytest.mark.asyncio
async def test_earned_never_reverts(registry):
    """Negative deltas after earning leave the achievement earned"""
    await registry.increment_progress("u1", "first_entry", 1)

    update = await registry.increment_progress("u1", "first_entry", -1)

    assert update.progress.earned is True
    assert update.progress.progress == 1


@pytest.mark.asyncio
async def test_zero_delta_rejected(registry):
    with pytest.raises(ValidationError):
        await registry.increment_progress("u1", "first_entry", 0)


@pytest.mark.asyncio
async def test_increment_unknown_achievement(registry):
    with pytest.raises(RecordNotFoundError):
        await registry.increment_progress("u1", "nope", 1)


@pytest.mark.asyncio
async def test_concurrent_increments_are_additive(registry):
    """Concurrent increments all land regardless of interleaving"""
    await asyncio.gather(*[
        registry.increment_progress("u1", "data_champion", 1)
        for _ in range(12)
    ])

    achievements = await registry.get_user_achievements("u1")
    data_champion = next(a for a in achievements if a.definition.id == "data_champion")
    assert data_champion.progress == 12
    assert data_champion.earned is False


# ============================================================================
# Listing Tests
# ============================================================================

@pytest.mark.asyncio
async def test_user_achievements_new_user(registry):
    """Users with no progress see the whole catalog at zero"""
    achievements = await registry.get_user_achievements("fresh")

    assert len(achievements) == len(DEFAULT_ACHIEVEMENTS)
    assert all(a.progress == 0 and not a.earned for a in achievements)


@pytest.mark.asyncio
async def test_user_achievements_sorted_earned_first(registry):
    await registry.increment_progress("u1", "insight_master", 6)
    await registry.increment_progress("u1", "first_post", 1)

    achievements = await registry.get_user_achievements("u1")

    assert achievements[0].definition.id == "first_post"
    assert achievements[0].earned is True
    assert achievements[1].definition.id == "insight_master"
    assert achievements[1].percentage == 60


@pytest.mark.asyncio
async def test_recommendations_close_to_completion(registry):
    """Only unearned achievements at >= 50% are recommended"""
    await registry.increment_progress("u1", "insight_master", 6)
    await registry.increment_progress("u1", "community_helper", 2)
    await registry.increment_progress("u1", "first_entry", 1)

    recommendations = await registry.get_recommendations("u1")

    assert [a.definition.id for a in recommendations] == ["insight_master"]


@pytest.mark.asyncio
async def test_registry_with_custom_definitions(store):
    definition = AchievementDefinition(
        id="free_badge", title="Free Badge", requirement="Show up", max_progress=2, point_value=0
    )
    registry = AchievementRegistry(store, [definition])

    assert registry.get_definitions() == [definition]
    assert registry.has_definition("free_badge")
    assert not registry.has_definition("first_entry")


# ============================================================================
# Impact Achievement Tests
# ============================================================================

def test_default_catalog_has_impact_achievements():
    by_id = {d.id: d for d in DEFAULT_ACHIEVEMENTS}

    assert by_id["research_pioneer"].max_progress == 500
    assert by_id["community_pillar"].point_value == 250
    assert by_id["impact_titan"].rarity == Rarity.LEGENDARY


# ============================================================================
# Challenge Instance Tests
# ============================================================================

def test_registry_resolves_challenge_instance(registry):
    definition = registry.get_definition("daily_journal:2024-06-01")

    assert definition.category == "challenge"
    assert definition.max_progress == 1
    assert definition.point_value == 35
    assert registry.has_definition("weekly_consistency:2024-W22")


def test_registry_rejects_malformed_instance(registry):
    assert not registry.has_definition("daily_journal:2024-W22")
    with pytest.raises(RecordNotFoundError):
        registry.get_definition("daily_journal:not-a-day")


@pytest.mark.asyncio
async def test_challenge_instances_tracked_per_period(registry):
    """Each day is a separate instance of a daily challenge"""
    update = await registry.increment_progress("u1", "daily_journal:2024-06-01", 1)

    assert update.newly_earned is True

    challenges = await registry.get_user_challenges("u1", date(2024, 6, 2))
    journal = next(c for c in challenges if c.challenge_id == "daily_journal")
    assert journal.instance_id == "daily_journal:2024-06-02"
    assert journal.completed is False


@pytest.mark.asyncio
async def test_get_user_challenges(registry):
    await registry.increment_progress("u1", "weekly_consistency:2024-W22", 2)

    challenges = await registry.get_user_challenges("u1", date(2024, 5, 29))
    weekly = next(c for c in challenges if c.challenge_id == "weekly_consistency")

    assert len(challenges) == 8
    assert weekly.progress == 2
    assert weekly.target == 5
    assert weekly.period == "weekly"
    assert weekly.period_key == "2024-W22"
    assert weekly.ends_on == date(2024, 6, 2)
    assert weekly.point_value == 150


@pytest.mark.asyncio
async def test_challenges_not_listed_as_achievements(registry):
    await registry.increment_progress("u1", "daily_journal:2024-06-01", 1)

    achievements = await registry.get_user_achievements("u1")

    assert all(":" not in a.definition.id for a in achievements)

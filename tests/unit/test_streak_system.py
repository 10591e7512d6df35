"""Unit tests for Streak System (progress_engine/gamification/streak_system.py)"""
import pytest
from datetime import date, timedelta

from progress_engine.exceptions import StaleEvent
from progress_engine.gamification.streak_system import (
    MILESTONE_BONUSES,
    advance_streak,
    target_for,
)
from progress_engine.models.progress import StreakRecord


def make_record(current, longest, last_active_date, target=7, streak_type="journal_entries"):
    return StreakRecord(
        user_id="u1",
        streak_type=streak_type,
        current=current,
        longest=longest,
        last_active_date=last_active_date,
        target=target,
    )


# ============================================================================
# Pure Streak Algorithm Tests
# ============================================================================

def test_advance_streak_first_activity():
    """Test first activity creates streak of 1"""
    update = advance_streak(None, "u1", "journal_entries", date(2024, 6, 1))

    assert update.changed is True
    assert update.record.current == 1
    assert update.record.longest == 1
    assert update.record.last_active_date == date(2024, 6, 1)
    assert update.record.target == target_for("journal_entries")


def test_advance_streak_consecutive_day():
    """Test consecutive day activity increments streak"""
    record = make_record(5, 10, date(2024, 6, 1))

    update = advance_streak(record, "u1", "journal_entries", date(2024, 6, 2))

    assert update.record.current == 6
    assert update.record.longest == 10  # Unchanged


def test_advance_streak_same_day_no_change():
    """Test activity on same day doesn't increment streak again"""
    record = make_record(3, 5, date(2024, 6, 1))

    update = advance_streak(record, "u1", "journal_entries", date(2024, 6, 1))

    assert update.changed is False
    assert update.record == record
    assert update.message


def test_advance_streak_two_day_gap_resets():
    """Skipping one calendar day resets the streak"""
    record = make_record(4, 4, date(2024, 6, 1))

    update = advance_streak(record, "u1", "journal_entries", date(2024, 6, 3))

    assert update.record.current == 1
    assert update.record.longest == 4


def test_advance_streak_three_day_gap_keeps_longest():
    """current=10, last active 3 days ago -> current=1, longest stays 10"""
    today = date(2024, 6, 30)
    record = make_record(10, 10, today - timedelta(days=3))

    update = advance_streak(record, "u1", "journal_entries", today)

    assert update.record.current == 1
    assert update.record.longest == 10
    assert "reset" in update.message.lower()


def test_advance_streak_reaches_target():
    """current=6, target=7, last active yesterday -> current=7, milestone reached"""
    today = date(2024, 6, 30)
    record = make_record(6, 6, today - timedelta(days=1), target=7)

    update = advance_streak(record, "u1", "journal_entries", today)

    assert update.record.current == 7
    assert update.record.longest == 7
    assert update.milestone_reached is True
    assert update.bonus_points == MILESTONE_BONUSES[7]


def test_advance_streak_stale_activity_raises():
    """Activity before the last recorded day is rejected"""
    record = make_record(3, 3, date(2024, 6, 10))

    with pytest.raises(StaleEvent):
        advance_streak(record, "u1", "journal_entries", date(2024, 6, 9))


def test_advance_streak_no_bonus_off_milestone():
    record = make_record(2, 2, date(2024, 6, 1))

    update = advance_streak(record, "u1", "journal_entries", date(2024, 6, 2))

    assert update.bonus_points == 0
    assert update.milestone_reached is False


def test_streak_record_longest_invariant():
    """A record with longest < current cannot exist"""
    with pytest.raises(ValueError):
        make_record(5, 4, date(2024, 6, 1))


# ============================================================================
# Persistence Tests
# ============================================================================

@pytest.mark.asyncio
async def test_record_activity_persists(streaks, store):
    """Recorded streaks are readable afterwards"""
    await streaks.record_activity("u1", "daily_logging", date(2024, 6, 1))
    update = await streaks.record_activity("u1", "daily_logging", date(2024, 6, 2))

    assert update.record.current == 2
    stored = await store.list_streaks("u1")
    assert stored == [update.record]
    assert stored[0].target == 30


@pytest.mark.asyncio
async def test_record_activity_stale_does_not_mutate(streaks, store):
    """StaleEvent leaves the stored record unchanged"""
    await streaks.record_activity("u1", "daily_logging", date(2024, 6, 5))

    with pytest.raises(StaleEvent):
        await streaks.record_activity("u1", "daily_logging", date(2024, 6, 4))

    stored = await store.list_streaks("u1")
    assert stored[0].last_active_date == date(2024, 6, 5)
    assert stored[0].current == 1


@pytest.mark.asyncio
async def test_get_streaks_sorted_by_current(streaks):
    """Streaks come back longest current run first"""
    start = date(2024, 6, 1)
    for offset in range(3):
        await streaks.record_activity("u1", "journal_entries", start + timedelta(days=offset))
    await streaks.record_activity("u1", "community_posts", start)

    result = await streaks.get_streaks("u1")

    assert [s.streak_type for s in result] == ["journal_entries", "community_posts"]
    assert [s.current for s in result] == [3, 1]


@pytest.mark.asyncio
async def test_longest_never_below_current(streaks):
    """longest >= current after every update"""
    start = date(2024, 6, 1)
    days = [0, 1, 2, 5, 6, 7, 8, 20]
    for offset in days:
        update = await streaks.record_activity("u1", "daily_tasks", start + timedelta(days=offset))
        assert update.record.longest >= update.record.current

    assert update.record.longest == 4
    assert update.record.current == 1

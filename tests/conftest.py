"""Global test fixtures and utilities for progress engine tests"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from datetime import datetime, date, timezone

from progress_engine.db.memory_store import InMemoryProgressStore
from progress_engine.gamification.achievement_system import AchievementRegistry, DEFAULT_ACHIEVEMENTS
from progress_engine.gamification.points_ledger import ScoreLedger
from progress_engine.gamification.reward_claims import RewardClaimCoordinator
from progress_engine.gamification.streak_system import StreakTracker
from progress_engine.services.progress_service import ProgressService


# ============================================================================
# Storage Fixtures
# ============================================================================

@pytest.fixture
def store():
    """Fresh in-memory progress store"""
    return InMemoryProgressStore()


@pytest.fixture
def mock_db_cursor():
    """Mock psycopg cursor with standard query results"""
    cursor = AsyncMock()
    cursor.fetchone = AsyncMock(return_value=None)
    cursor.fetchall = AsyncMock(return_value=[])
    cursor.execute = AsyncMock()
    return cursor


@pytest.fixture
def mock_database(mock_db_cursor):
    """
    Mock Database whose connection() yields a connection with the mock cursor

    Works for `async with db.connection() as conn`, `conn.transaction()`
    and `conn.cursor()`.
    """
    mock_conn = MagicMock()
    mock_conn.cursor.return_value.__aenter__.return_value = mock_db_cursor
    mock_conn.cursor.return_value.__aexit__.return_value = False
    mock_conn.transaction.return_value.__aenter__.return_value = None
    mock_conn.transaction.return_value.__aexit__.return_value = False
    mock_conn.execute = AsyncMock()
    mock_conn.commit = AsyncMock()

    database = MagicMock()
    database.connection.return_value.__aenter__.return_value = mock_conn
    database.connection.return_value.__aexit__.return_value = False
    database.init_pool = AsyncMock()
    database.close_pool = AsyncMock()
    database.conn = mock_conn
    return database


# ============================================================================
# Component Fixtures
# ============================================================================

@pytest.fixture
def ledger(store):
    return ScoreLedger(store)


@pytest.fixture
def streaks(store):
    return StreakTracker(store)


@pytest.fixture
def registry(store):
    return AchievementRegistry(store, DEFAULT_ACHIEVEMENTS)


@pytest.fixture
def claims(store, registry, ledger):
    return RewardClaimCoordinator(store, registry, ledger)


@pytest.fixture
def service(store):
    return ProgressService(store, definitions=DEFAULT_ACHIEVEMENTS)


# ============================================================================
# User & Auth Fixtures
# ============================================================================

@pytest.fixture
def test_user_id():
    """Standard test user ID"""
    return "user-123"


@pytest.fixture
def test_api_key():
    """Standard test API key"""
    return "test_api_key_12345"


# ============================================================================
# Time Fixtures
# ============================================================================

@pytest.fixture
def fixed_now():
    """Fixed reference time for leaderboard windows"""
    return datetime(2024, 6, 30, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def today():
    return date(2024, 6, 30)

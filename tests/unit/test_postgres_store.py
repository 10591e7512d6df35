"""Unit tests for the PostgreSQL store (progress_engine/db/postgres_store.py)"""
import pytest
from datetime import date, datetime, timezone

import psycopg

from progress_engine.db.postgres_store import PostgresProgressStore
from progress_engine.exceptions import QueryError, StorageUnavailable
from progress_engine.models.progress import ScoreLedgerEntry, StreakRecord


@pytest.fixture
def pg_store(mock_database):
    return PostgresProgressStore(mock_database)


# ============================================================================
# Transaction Tests
# ============================================================================

@pytest.mark.asyncio
async def test_transaction_takes_user_lock(pg_store, mock_db_cursor):
    """Every unit of work starts with a transaction-scoped advisory lock"""
    async with pg_store.transaction("u1"):
        pass

    query, params = mock_db_cursor.execute.call_args_list[0].args
    assert "pg_advisory_xact_lock" in query
    assert params == ("progress:u1",)


@pytest.mark.asyncio
async def test_transaction_get_ledger_defaults_to_zero(pg_store, mock_db_cursor):
    mock_db_cursor.fetchone.return_value = None

    async with pg_store.transaction("u1") as tx:
        entry = await tx.get_ledger()

    assert entry.total_points == 0
    assert entry.level == 1


@pytest.mark.asyncio
async def test_transaction_reads_streak_row(pg_store, mock_db_cursor):
    mock_db_cursor.fetchone.return_value = {
        "user_id": "u1",
        "streak_type": "daily_logging",
        "current": 4,
        "longest": 9,
        "last_active_date": date(2024, 6, 3),
        "target": 30,
    }

    async with pg_store.transaction("u1") as tx:
        record = await tx.get_streak("daily_logging")

    assert record == StreakRecord(
        user_id="u1",
        streak_type="daily_logging",
        current=4,
        longest=9,
        last_active_date=date(2024, 6, 3),
        target=30,
    )


@pytest.mark.asyncio
async def test_transaction_save_ledger_upserts(pg_store, mock_db_cursor):
    entry = ScoreLedgerEntry.from_total_points("u1", 450)

    async with pg_store.transaction("u1") as tx:
        await tx.save_ledger(entry)

    query, params = mock_db_cursor.execute.call_args.args
    assert "ON CONFLICT (user_id) DO UPDATE" in query
    assert params == ("u1", 450, 3, 50)


@pytest.mark.asyncio
async def test_transaction_storage_outage(pg_store, mock_db_cursor):
    """Driver connection errors surface as StorageUnavailable"""
    mock_db_cursor.execute.side_effect = psycopg.OperationalError("server closed the connection")

    with pytest.raises(StorageUnavailable):
        async with pg_store.transaction("u1"):
            pass


@pytest.mark.asyncio
async def test_transaction_query_failure(pg_store, mock_db_cursor):
    mock_db_cursor.execute.side_effect = psycopg.Error("column does not exist")

    with pytest.raises(QueryError):
        async with pg_store.transaction("u1") as tx:
            await tx.get_ledger()


# ============================================================================
# Read Tests
# ============================================================================

@pytest.mark.asyncio
async def test_get_ledger_missing(pg_store, mock_db_cursor):
    mock_db_cursor.fetchall.return_value = []

    assert await pg_store.get_ledger("ghost") is None


@pytest.mark.asyncio
async def test_get_ledger_row(pg_store, mock_db_cursor):
    mock_db_cursor.fetchall.return_value = [
        {"user_id": "u1", "total_points": 230, "level": 2, "progress_to_next_level": 30}
    ]

    entry = await pg_store.get_ledger("u1")

    assert entry.total_points == 230
    assert entry.points_to_next_level == 170


@pytest.mark.asyncio
async def test_list_events_builds_filters(pg_store, mock_db_cursor):
    since = datetime(2024, 6, 1, tzinfo=timezone.utc)
    mock_db_cursor.fetchall.return_value = [{
        "event_id": "e1",
        "user_id": "u1",
        "action_type": "forum_post",
        "occurred_at": since,
        "idempotency_key": "k1",
        "metadata": {},
        "voided": False,
    }]

    events = await pg_store.list_events(user_id="u1", action_type="forum_post", since=since)

    query, params = mock_db_cursor.execute.call_args.args
    assert "user_id = %s" in query
    assert "action_type = %s" in query
    assert "occurred_at >= %s" in query
    assert params == ["u1", "forum_post", since]
    assert events[0].event_id == "e1"


@pytest.mark.asyncio
async def test_aggregate_activity_groups_in_sql(pg_store, mock_db_cursor):
    until = datetime(2024, 6, 30, tzinfo=timezone.utc)
    since = datetime(2024, 6, 1, tzinfo=timezone.utc)
    mock_db_cursor.fetchall.return_value = [{
        "user_id": "u1",
        "action_type": "forum_post",
        "month": date(2024, 6, 1),
        "helpful_votes": 4,
        "education": False,
        "count": 3,
    }]

    rows = await pg_store.aggregate_activity(until=until, since=since, user_id="u1")

    query, params = mock_db_cursor.execute.call_args.args
    assert "GROUP BY" in query
    assert "voided = FALSE" in query
    assert "occurred_at <= %s AND occurred_at >= %s AND user_id = %s" in query
    assert params == [until, since, "u1"]
    assert rows[0].count == 3
    assert rows[0].helpful_votes == 4


@pytest.mark.asyncio
async def test_list_streaks_active_since(pg_store, mock_db_cursor):
    await pg_store.list_streaks(active_since=date(2024, 6, 29))

    query, params = mock_db_cursor.execute.call_args.args
    assert "last_active_date >= %s" in query
    assert "user_id" not in query.split("WHERE")[1]
    assert params == [date(2024, 6, 29)]


@pytest.mark.asyncio
async def test_list_ledgers_for_users(pg_store, mock_db_cursor):
    await pg_store.list_ledgers(["u1", "u2"])

    query, params = mock_db_cursor.execute.call_args.args
    assert "user_id = ANY(%s)" in query
    assert params == (["u1", "u2"],)


@pytest.mark.asyncio
async def test_transaction_void_event(pg_store, mock_db_cursor):
    async with pg_store.transaction("u1") as tx:
        await tx.void_event("e1")

    query, params = mock_db_cursor.execute.call_args.args
    assert "SET voided = TRUE" in query
    assert params == ("u1", "e1")


@pytest.mark.asyncio
async def test_ping(pg_store, mock_db_cursor):
    mock_db_cursor.fetchall.return_value = [{"ok": 1}]

    assert await pg_store.ping() is True


@pytest.mark.asyncio
async def test_ping_failure(pg_store, mock_db_cursor):
    mock_db_cursor.execute.side_effect = psycopg.OperationalError("connection refused")

    assert await pg_store.ping() is False


@pytest.mark.asyncio
async def test_apply_schema(pg_store, mock_database):
    await pg_store.apply_schema()

    schema_sql = mock_database.conn.execute.call_args.args[0]
    assert "CREATE TABLE IF NOT EXISTS score_ledger" in schema_sql
    mock_database.conn.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_open_and_close(pg_store, mock_database):
    await pg_store.open()
    await pg_store.close()

    mock_database.init_pool.assert_awaited_once()
    mock_database.close_pool.assert_awaited_once()

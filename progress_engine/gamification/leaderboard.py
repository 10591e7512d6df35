"""
Leaderboard Aggregator

Ranks users by a composite impact score. Everything here is derived and
read-only: the score ledger is read only to decorate the returned page with
points and level.

The store does the heavy lifting: events in the window arrive already grouped
by user, action type, month, helpful votes and topic, and only streaks that
are still live are read.

Category scores:
- Research: 200 per study, 40 per survey; +20% when spread over more than
  3 calendar months
- Support: peer support 20, helped someone 10, plus voted forum posts and
  replies (post: 10 + 2 per vote, or 25 + 2 per vote above 5 votes;
  reply: 5 + 1 per vote, or 15 + 1 per vote above 3 votes); +25 for every
  post or reply with 5 or more votes
- Knowledge: articles 75, plus forum posts on education or with 3+ votes
- Mentoring: sessions 50, peer connections 30; +30% past 5 of them
- Consistency: 2 per daily check-in, symptom log or journal entry, plus
  10 per day of the best live streak (at most 30 days)
- total = round(sum(weight * category score))

Tiers:
- Bronze: < 500
- Silver: 500 - 1499
- Gold: 1500 - 2999
- Platinum: 3000 - 4999
- Diamond: 5000+

Ordering: score desc, joined date asc, user id asc. Ranks are 1-based.
"""

from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Union
import logging
import time

from progress_engine.config import IMPACT_WEIGHTS
from progress_engine.db.store import ProgressStore
from progress_engine.exceptions import RecordNotFoundError, ValidationError
from progress_engine.gamification.action_log import to_utc
from progress_engine.gamification.action_rules import ACTION_RULES
from progress_engine.models.progress import (
    ActivityAggregate,
    CategoryScores,
    ImpactCategory,
    LeaderboardSnapshot,
    StreakRecord,
    Tier,
    TimeWindow,
)
from progress_engine.observability.metrics import leaderboard_duration_seconds

logger = logging.getLogger(__name__)

MAX_LIMIT = 500
STREAK_DAY_VALUE = 10
MAX_STREAK_BONUS_DAYS = 30

RESEARCH_MONTHS_FOR_BONUS = 3
RESEARCH_BONUS = 0.2
MENTORING_COUNT_FOR_BONUS = 5
MENTORING_BONUS = 0.3
HIGH_QUALITY_VOTES = 5
HIGH_QUALITY_BONUS = 25
KNOWLEDGE_POST_VOTES = 3

# Lower bound of each tier, highest first
TIER_THRESHOLDS = [
    (5000, Tier.DIAMOND),
    (3000, Tier.PLATINUM),
    (1500, Tier.GOLD),
    (500, Tier.SILVER),
    (0, Tier.BRONZE),
]

WINDOW_DAYS: Dict[TimeWindow, Optional[int]] = {
    TimeWindow.WEEK: 7,
    TimeWindow.MONTH: 30,
    TimeWindow.ALL_TIME: None,
}


def tier_for_score(score: int) -> Tier:
    for threshold, tier in TIER_THRESHOLDS:
        if score >= threshold:
            return tier
    return Tier.BRONZE


def parse_time_window(time_window: Union[str, TimeWindow]) -> TimeWindow:
    try:
        return TimeWindow(time_window)
    except ValueError:
        raise ValidationError(
            f"Unknown time window '{time_window}'",
            field="time_window",
            value=time_window
        )


def weighted_total(scores: CategoryScores, weights: Dict[str, float]) -> int:
    return round(sum(
        weights.get(category.value, 0.0) * getattr(scores, category.value)
        for category in ImpactCategory
    ))


def forum_post_points(helpful_votes: int) -> int:
    return (25 if helpful_votes > 5 else 10) + 2 * helpful_votes


def forum_reply_points(helpful_votes: int) -> int:
    return (15 if helpful_votes > 3 else 5) + helpful_votes


def score_activity(
    aggregates: Iterable[ActivityAggregate],
    best_streak: int = 0
) -> CategoryScores:
    """
    Category scores of one user's grouped activity

    Args:
        aggregates: The user's activity groups in the window
        best_streak: Current length of the user's best live streak
    """
    scores: Dict[str, float] = defaultdict(float)
    research_months = set()
    mentoring_count = 0

    for row in aggregates:
        if row.action_type == "forum_post":
            points = forum_post_points(row.helpful_votes)
            if row.education or row.helpful_votes >= KNOWLEDGE_POST_VOTES:
                scores[ImpactCategory.KNOWLEDGE.value] += points * row.count
        elif row.action_type == "forum_reply":
            points = forum_reply_points(row.helpful_votes)
        else:
            rule = ACTION_RULES.get(row.action_type)
            if rule is None or rule.category is None:
                continue
            scores[rule.category.value] += rule.impact_value * row.count
            if rule.category == ImpactCategory.RESEARCH:
                research_months.add(row.month)
            elif rule.category == ImpactCategory.MENTORING:
                mentoring_count += row.count
            continue

        if row.helpful_votes > 0:
            scores[ImpactCategory.SUPPORT.value] += points * row.count
        if row.helpful_votes >= HIGH_QUALITY_VOTES:
            scores[ImpactCategory.SUPPORT.value] += HIGH_QUALITY_BONUS * row.count

    if len(research_months) > RESEARCH_MONTHS_FOR_BONUS:
        scores[ImpactCategory.RESEARCH.value] *= 1 + RESEARCH_BONUS
    if mentoring_count > MENTORING_COUNT_FOR_BONUS:
        scores[ImpactCategory.MENTORING.value] *= 1 + MENTORING_BONUS
    scores[ImpactCategory.CONSISTENCY.value] += STREAK_DAY_VALUE * min(best_streak, MAX_STREAK_BONUS_DAYS)

    return CategoryScores(**{
        category.value: round(scores[category.value]) for category in ImpactCategory
    })


def best_live_streaks(streaks: Iterable[StreakRecord]) -> Dict[str, int]:
    """Longest current streak per user"""
    best: Dict[str, int] = {}
    for streak in streaks:
        best[streak.user_id] = max(best.get(streak.user_id, 0), streak.current)
    return best


def live_since(now: datetime) -> date:
    # A streak is live if the user was active today or yesterday
    return now.date() - timedelta(days=1)


class Leaderboard:
    """Lock-free ranking over aggregated activity, live streaks and the ledger"""

    def __init__(self, store: ProgressStore, weights: Optional[Dict[str, float]] = None):
        self.store = store
        self.weights = dict(weights if weights is not None else IMPACT_WEIGHTS)

    async def _ranked(self, window: TimeWindow, now: datetime) -> List[LeaderboardSnapshot]:
        """Ranked snapshots for the whole population, without ledger fields"""
        days = WINDOW_DAYS[window]
        since = now - timedelta(days=days) if days is not None else None

        users = await self.store.list_users()
        by_user: Dict[str, List[ActivityAggregate]] = defaultdict(list)
        for row in await self.store.aggregate_activity(until=now, since=since):
            by_user[row.user_id].append(row)
        best_streak = best_live_streaks(
            await self.store.list_streaks(active_since=live_since(now))
        )

        rows = []
        for user in users:
            category_scores = score_activity(
                by_user.get(user.user_id, []), best_streak.get(user.user_id, 0)
            )
            total = weighted_total(category_scores, self.weights)
            rows.append(LeaderboardSnapshot(
                user_id=user.user_id,
                total_impact_score=total,
                category_scores=category_scores,
                tier=tier_for_score(total),
                rank=0,
                joined_date=to_utc(user.joined_at),
            ))

        rows.sort(key=lambda s: (-s.total_impact_score, s.joined_date, s.user_id))
        return [row.model_copy(update={"rank": position}) for position, row in enumerate(rows, start=1)]

    async def _with_ledgers(self, snapshots: List[LeaderboardSnapshot]) -> List[LeaderboardSnapshot]:
        """Decorate snapshots with points and level"""
        if not snapshots:
            return snapshots
        ledgers = {
            entry.user_id: entry
            for entry in await self.store.list_ledgers([s.user_id for s in snapshots])
        }
        decorated = []
        for snapshot in snapshots:
            ledger = ledgers.get(snapshot.user_id)
            if ledger is not None:
                snapshot = snapshot.model_copy(update={
                    "total_points": ledger.total_points,
                    "level": ledger.level,
                })
            decorated.append(snapshot)
        return decorated

    async def rank(
        self,
        time_window: Union[str, TimeWindow] = TimeWindow.ALL_TIME,
        limit: int = 100,
        now: Optional[datetime] = None
    ) -> List[LeaderboardSnapshot]:
        """
        Rank users by impact score

        Args:
            time_window: week, month or all_time
            limit: Number of rows to return (1-500)
            now: Reference time for the window (defaults to current UTC time)

        Returns:
            Top `limit` snapshots, rank 1 first

        Raises:
            ValidationError: unknown time window or limit out of range
        """
        window = parse_time_window(time_window)
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LIMIT:
            raise ValidationError(
                f"Limit must be between 1 and {MAX_LIMIT}",
                field="limit",
                value=limit
            )

        now = to_utc(now) if now else datetime.now(timezone.utc)
        started = time.perf_counter()
        ranked = await self._ranked(window, now)
        page = await self._with_ledgers(ranked[:limit])
        leaderboard_duration_seconds.labels(time_window=window.value).observe(
            time.perf_counter() - started
        )

        logger.debug(f"Ranked {len(ranked)} users for {window.value} leaderboard")
        return page

    async def get_user_standing(
        self,
        user_id: str,
        time_window: Union[str, TimeWindow] = TimeWindow.ALL_TIME,
        now: Optional[datetime] = None
    ) -> LeaderboardSnapshot:
        """
        One user's snapshot, ranked against the whole population

        Raises:
            RecordNotFoundError: user has never recorded an action
        """
        window = parse_time_window(time_window)
        now = to_utc(now) if now else datetime.now(timezone.utc)

        for snapshot in await self._ranked(window, now):
            if snapshot.user_id == user_id:
                return (await self._with_ledgers([snapshot]))[0]

        raise RecordNotFoundError(
            f"User {user_id} has no leaderboard standing",
            record_type="User",
            record_id=user_id
        )

    async def user_category_scores(self, user_id: str, now: Optional[datetime] = None) -> CategoryScores:
        """One user's all-time category scores, read without ranking anyone else"""
        now = to_utc(now) if now else datetime.now(timezone.utc)
        aggregates = await self.store.aggregate_activity(until=now, user_id=user_id)
        streaks = await self.store.list_streaks(user_id=user_id, active_since=live_since(now))
        return score_activity(aggregates, best_live_streaks(streaks).get(user_id, 0))

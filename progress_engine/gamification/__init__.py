"""
Progress engine components

- Action log (idempotent event record)
- Multi-type streak tracking
- Achievement registry and progress
- Score ledger (points and levels)
- Reward claim coordinator
- Impact leaderboard
"""

from progress_engine.gamification.action_log import ActionLog
from progress_engine.gamification.streak_system import StreakTracker, advance_streak
from progress_engine.gamification.achievement_system import AchievementRegistry, load_achievement_definitions
from progress_engine.gamification.points_ledger import ScoreLedger
from progress_engine.gamification.reward_claims import RewardClaimCoordinator
from progress_engine.gamification.leaderboard import Leaderboard, tier_for_score

__all__ = [
    "ActionLog",
    "StreakTracker",
    "advance_streak",
    "AchievementRegistry",
    "load_achievement_definitions",
    "ScoreLedger",
    "RewardClaimCoordinator",
    "Leaderboard",
    "tier_for_score",
]

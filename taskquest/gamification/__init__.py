"""
Gamification system for TaskQuest

This module implements the progression engine with:
- XP and leveling system (xp_system)
- Consecutive-day streak tracking (streak_system)
- Achievement unlocks and level-down revocation (achievement_system)
- Grant/revert orchestration for task completions (progression)

Only the pure XP and streak helpers are re-exported here; the achievement
catalogue and the engine depend on the progress models, which themselves use
the level helpers.
"""

from taskquest.gamification.xp_system import calculate_task_xp, calculate_level_from_xp, level_for_xp
from taskquest.gamification.streak_system import calculate_streak

__all__ = [
    "calculate_task_xp",
    "calculate_level_from_xp",
    "level_for_xp",
    "calculate_streak",
]

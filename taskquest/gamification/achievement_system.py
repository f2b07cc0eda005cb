"""
Achievement System

Decides which achievements a progression change unlocks, and which level
achievements a level drop takes away.

Rules (evaluated in order, independently):
- Level-up: `level-N` for every level crossed, not only the final one
- Streak milestones: `streak-7`, `streak-30`, `streak-100` when crossed
- Daily warrior: 5 completions on the current UTC day
- Weekly streak: a completion on each of the last 7 UTC days

Unlocks are idempotent: an id the user already holds is never re-added or
re-dated. Only level achievements can be revoked; streak, daily and weekly
achievements are permanent once earned.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple
from datetime import datetime
import logging

from taskquest.models.progress import Achievement, AchievementCategory

logger = logging.getLogger(__name__)

STREAK_MILESTONES = (7, 30, 100)
DAILY_WARRIOR_THRESHOLD = 5

LEVEL_PREFIX = "level-"
STREAK_PREFIX = "streak-"
DAILY_WARRIOR = "daily-warrior"
WEEKLY_STREAK = "weekly-streak"


@dataclass(frozen=True)
class ProgressState:
    """The parts of UserProgress the rules compare before and after a change"""
    level: int
    streak: int


@dataclass(frozen=True)
class CompletionContext:
    """Completion facts for the current UTC day"""
    completions_today: int = 0
    weekly_coverage: bool = False


def level_achievement_id(level: int) -> str:
    return f"{LEVEL_PREFIX}{level}"


def streak_achievement_id(milestone: int) -> str:
    return f"{STREAK_PREFIX}{milestone}"


def parse_level_achievement(achievement_id: str) -> Optional[int]:
    """Level number of a `level-N` id, None for any other id"""
    if not achievement_id.startswith(LEVEL_PREFIX):
        return None
    suffix = achievement_id[len(LEVEL_PREFIX):]
    return int(suffix) if suffix.isdigit() else None


def build_achievement(achievement_id: str, unlocked_at: datetime) -> Achievement:
    """
    Build the achievement record for an id

    Args:
        achievement_id: `level-N`, `streak-N`, `daily-warrior` or `weekly-streak`
        unlocked_at: Unlock timestamp

    Raises:
        ValueError: for an unknown id
    """
    level = parse_level_achievement(achievement_id)
    if level is not None:
        return Achievement(
            id=achievement_id,
            title="Level Up!",
            description=f"Reached Level {level}",
            icon="⭐",
            category=AchievementCategory.LEVEL,
            unlocked_at=unlocked_at,
        )

    if achievement_id.startswith(STREAK_PREFIX):
        days = achievement_id[len(STREAK_PREFIX):]
        return Achievement(
            id=achievement_id,
            title="Streak Master",
            description=f"{days} Day Streak!",
            icon="🔥",
            category=AchievementCategory.STREAK,
            unlocked_at=unlocked_at,
        )

    if achievement_id == DAILY_WARRIOR:
        return Achievement(
            id=achievement_id,
            title="Daily Warrior",
            description=f"Completed {DAILY_WARRIOR_THRESHOLD} tasks in a single day",
            icon="⚔️",
            category=AchievementCategory.DAILY,
            unlocked_at=unlocked_at,
        )

    if achievement_id == WEEKLY_STREAK:
        return Achievement(
            id=achievement_id,
            title="Perfect Week",
            description="Completed tasks on 7 days in a row",
            icon="📅",
            category=AchievementCategory.WEEKLY,
            unlocked_at=unlocked_at,
        )

    raise ValueError(f"Unknown achievement id: {achievement_id}")


def evaluate_achievements(
    old: ProgressState,
    new: ProgressState,
    context: CompletionContext,
    existing_ids: Iterable[str],
    now: datetime
) -> List[Achievement]:
    """
    Achievements unlocked by moving from `old` to `new`

    Args:
        old: Level and streak before the change
        new: Level and streak after the change
        context: Completion facts for the current day
        existing_ids: Ids the user already holds
        now: Unlock timestamp for anything emitted

    Returns:
        Newly unlocked achievements in rule order; empty when nothing new
    """
    held: Set[str] = set(existing_ids)
    candidates: List[str] = []

    # Level-up: every crossed level
    if new.level > old.level:
        candidates.extend(level_achievement_id(level) for level in range(old.level + 1, new.level + 1))

    # Streak milestones
    for milestone in STREAK_MILESTONES:
        if old.streak < milestone <= new.streak:
            candidates.append(streak_achievement_id(milestone))

    # Daily task count
    if context.completions_today >= DAILY_WARRIOR_THRESHOLD:
        candidates.append(DAILY_WARRIOR)

    # Weekly day coverage
    if context.weekly_coverage:
        candidates.append(WEEKLY_STREAK)

    unlocked = []
    for achievement_id in candidates:
        if achievement_id in held:
            continue
        held.add(achievement_id)
        unlocked.append(build_achievement(achievement_id, now))

    return unlocked


def revoke_level_achievements(
    achievements: List[Achievement],
    new_level: int
) -> Tuple[List[Achievement], List[str]]:
    """
    Drop level achievements above a (lowered) level

    Args:
        achievements: Current achievement list
        new_level: Level after the XP reversal

    Returns:
        (kept achievements in original order, revoked ids)
    """
    kept = []
    revoked = []
    for achievement in achievements:
        level = parse_level_achievement(achievement.id)
        if level is not None and level > new_level:
            revoked.append(achievement.id)
        else:
            kept.append(achievement)
    return kept, revoked


def format_achievement_unlock_message(achievement: Achievement) -> str:
    """
    Format achievement unlock message for celebration

    Args:
        achievement: A newly unlocked achievement

    Returns:
        Formatted celebration message
    """
    return f"🎉 ACHIEVEMENT UNLOCKED! {achievement.icon} {achievement.title}: {achievement.description}"


def summarize_achievements(achievements: Iterable[Achievement]) -> Dict[str, int]:
    """Count of held achievements per category"""
    counts = {category.value: 0 for category in AchievementCategory}
    for achievement in achievements:
        counts[achievement.category.value] += 1
    return counts

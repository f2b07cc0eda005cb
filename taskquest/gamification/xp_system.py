"""
XP and Leveling System

Pure functions for XP awards and level calculations.

Leveling Curve:
- Fixed width: 100 XP per level, level = floor(xp / 100) + 1

XP Award Rules (task completion):
- priority weight * 10 (low=1, medium=2, high=3)
- +1 XP per full 30 minutes of estimated duration

The category-weighted estimate (duration / 30 * 10 * category multiplier) is
kept for previews only. Grants always use the priority formula, and reversals
always subtract the stored `xp_value` of the task.
"""

from typing import Dict, Union
import logging

from taskquest.models.task import TaskPriority

logger = logging.getLogger(__name__)

XP_PER_LEVEL = 100

PRIORITY_WEIGHTS = {
    TaskPriority.LOW: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.HIGH: 3,
}

CATEGORY_MULTIPLIERS = {
    "work": 1.5,
    "study": 1.3,
    "exercise": 1.4,
    "default": 1.0,
}


def level_for_xp(xp: int) -> int:
    """Level for a total XP value (level 1 at 0 XP)"""
    return max(0, xp) // XP_PER_LEVEL + 1


def progress_within_level(xp: int) -> int:
    """XP earned inside the current level"""
    return max(0, xp) % XP_PER_LEVEL


def xp_to_next_level(xp: int) -> int:
    return XP_PER_LEVEL - progress_within_level(xp)


def calculate_level_from_xp(total_xp: int) -> Dict[str, int]:
    """
    Calculate level and progress from total XP

    Returns:
        {
            'level': int,
            'progress': int,
            'xp_to_next_level': int,
            'xp_for_current_level': int,
            'xp_for_next_level': int,
            'percentage': int
        }
    """
    level = level_for_xp(total_xp)
    progress = progress_within_level(total_xp)

    return {
        "level": level,
        "progress": progress,
        "xp_to_next_level": xp_to_next_level(total_xp),
        "xp_for_current_level": (level - 1) * XP_PER_LEVEL,
        "xp_for_next_level": level * XP_PER_LEVEL,
        "percentage": min(round(progress / XP_PER_LEVEL * 100), 100),
    }


def priority_weight(priority: Union[TaskPriority, str, None]) -> int:
    """Weight for a priority; unknown or missing priorities count as low"""
    try:
        return PRIORITY_WEIGHTS[TaskPriority(priority)]
    except ValueError:
        return PRIORITY_WEIGHTS[TaskPriority.LOW]


def calculate_task_xp(priority: Union[TaskPriority, str, None], duration_minutes: int = 0) -> int:
    """
    XP granted for completing a task

    Example:
        calculate_task_xp("high", 60)  # 3 * 10 + 60 // 30 = 32
    """
    return priority_weight(priority) * 10 + max(0, duration_minutes or 0) // 30


def calculate_category_xp(category: str, duration_minutes: int) -> int:
    """Category-weighted XP estimate for previews; never used for grants"""
    multiplier = CATEGORY_MULTIPLIERS.get(category, CATEGORY_MULTIPLIERS["default"])
    return round((max(0, duration_minutes) / 30) * 10 * multiplier)


def apply_xp_delta(current_xp: int, delta: int) -> int:
    """Add a signed delta to an XP total, clamping at zero"""
    new_xp = current_xp + delta
    if new_xp < 0:
        logger.info(f"XP reversal of {-delta} from {current_xp} clamped at 0")
        return 0
    return new_xp

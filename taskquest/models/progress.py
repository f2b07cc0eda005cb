"""Progression models for gamification"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from taskquest.gamification.xp_system import calculate_level_from_xp, level_for_xp
from taskquest.models.task import ensure_utc, utcnow


class AchievementCategory(str, Enum):
    """Achievement categories"""
    LEVEL = "level"
    STREAK = "streak"
    DAILY = "daily"
    WEEKLY = "weekly"


class Achievement(BaseModel):
    """An unlocked achievement, embedded in UserProgress"""
    id: str
    title: str
    description: str
    icon: str
    category: AchievementCategory
    unlocked_at: datetime

    @field_validator('unlocked_at')
    @classmethod
    def normalize_unlocked_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class UserProgress(BaseModel):
    """
    Per-user progression record.

    `level` is always derived from `xp`; `version` is bumped by the store on
    every successful save and guards against lost updates.
    """
    user_id: str = Field(..., min_length=1)
    xp: int = Field(default=0, ge=0)
    level: int = Field(default=1, ge=1)
    streak: int = Field(default=0, ge=0)
    tasks_completed: int = Field(default=0, ge=0)
    last_activity_date: Optional[datetime] = None
    achievements: list[Achievement] = Field(default_factory=list)
    version: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def validate_progress(self) -> 'UserProgress':
        if self.level != level_for_xp(self.xp):
            raise ValueError(f"Level {self.level} does not match {self.xp} XP")
        ids = [a.id for a in self.achievements]
        if len(ids) != len(set(ids)):
            raise ValueError("Achievement ids must be unique")
        return self

    @property
    def achievement_ids(self) -> set[str]:
        return {a.id for a in self.achievements}


class ProgressionSnapshot(BaseModel):
    """Result of a completion or reversion, or a read of current progress"""
    user_id: str
    xp: int
    level: int
    progress: int
    xp_to_next_level: int
    streak: int
    tasks_completed: int = 0
    achievements: list[Achievement] = Field(default_factory=list)
    new_achievements: list[Achievement] = Field(default_factory=list)
    revoked_achievements: list[str] = Field(default_factory=list)
    xp_delta: int = 0
    last_activity_date: Optional[datetime] = None

    @classmethod
    def from_progress(
        cls,
        progress: UserProgress,
        new_achievements: Optional[list[Achievement]] = None,
        revoked_achievements: Optional[list[str]] = None,
        xp_delta: int = 0,
    ) -> 'ProgressionSnapshot':
        level_info = calculate_level_from_xp(progress.xp)
        return cls(
            user_id=progress.user_id,
            xp=progress.xp,
            level=level_info["level"],
            progress=level_info["progress"],
            xp_to_next_level=level_info["xp_to_next_level"],
            streak=progress.streak,
            tasks_completed=progress.tasks_completed,
            achievements=list(progress.achievements),
            new_achievements=new_achievements or [],
            revoked_achievements=revoked_achievements or [],
            xp_delta=xp_delta,
            last_activity_date=progress.last_activity_date,
        )

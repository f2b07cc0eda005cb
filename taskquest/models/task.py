"""Task models"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TaskPriority(str, Enum):
    """Task priority levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Task(BaseModel):
    """
    A unit of work owned by a user.

    `completed`, `completed_at` and `xp_value` move together: a completed task
    always carries the timestamp and the XP granted for that completion, a
    pending task carries neither.

    `version` is bumped by the store on every save; a save whose version does
    not match the stored row is rejected with ConcurrencyConflict.
    `google_event_id` is written only through `TaskStore.set_event_id`.
    """
    id: str = Field(default_factory=lambda: f"task_{uuid4().hex}")
    user_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    category: str = "default"
    duration_minutes: int = Field(default=60, ge=0)
    priority: TaskPriority = TaskPriority.MEDIUM
    start_time: datetime
    end_time: datetime
    completed: bool = False
    completed_at: Optional[datetime] = None
    xp_value: int = Field(default=0, ge=0)
    google_event_id: Optional[str] = None
    version: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('title')
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Reject whitespace-only titles"""
        v = v.strip()
        if not v:
            raise ValueError("Title cannot be empty")
        return v

    @field_validator('start_time', 'end_time', 'completed_at', 'created_at', 'updated_at')
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @model_validator(mode='after')
    def validate_task(self) -> 'Task':
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        if self.completed != (self.completed_at is not None):
            raise ValueError("completed_at must be set exactly when the task is completed")
        if not self.completed and self.xp_value != 0:
            raise ValueError("A pending task cannot carry granted XP")
        return self


class TaskCreate(BaseModel):
    """Request payload for creating a task"""
    user_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    category: str = "default"
    duration_minutes: Optional[int] = Field(default=None, ge=0)
    priority: TaskPriority = TaskPriority.MEDIUM
    start_time: datetime
    end_time: datetime
    google_event_id: Optional[str] = None


class TaskUpdate(BaseModel):
    """Partial update for a task; `completed` toggles drive progression"""
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, ge=0)
    priority: Optional[TaskPriority] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    completed: Optional[bool] = None

"""Pydantic models for API request/response validation"""
from typing import Optional, List, Dict
from pydantic import BaseModel, Field
from datetime import datetime

from taskquest.models.progress import Achievement, ProgressionSnapshot
from taskquest.models.task import Task
from taskquest.models.user import UserProfile


class TaskResponse(BaseModel):
    """Saved task with the progression change and calendar warnings"""
    task: Task
    progress: Optional[ProgressionSnapshot] = Field(
        default=None,
        description="Present when the update changed the completion state"
    )
    warnings: List[str] = Field(default_factory=list, description="Non-fatal calendar sync problems")


class TaskListResponse(BaseModel):
    """Response with a user's tasks"""
    user_id: str
    tasks: List[Task]


class AchievementResponse(BaseModel):
    """Response with achievement info"""
    user_id: str
    achievements: List[Achievement]
    summary: Dict[str, int] = Field(..., description="Unlocked achievements per category")


class UserResponse(BaseModel):
    """User profile, with progression on lookups"""
    user: UserProfile
    progress: Optional[ProgressionSnapshot] = None
    created: Optional[bool] = Field(default=None, description="Set by sync: whether the profile was new")


class CalendarImportResponse(BaseModel):
    """Tasks created from calendar events"""
    user_id: str
    tasks: List[Task]
    estimated_xp: Dict[str, int] = Field(..., description="Category-weighted XP preview per new task id")
    skipped: int = Field(..., description="Events already linked to a task")
    warnings: List[str] = Field(default_factory=list)


class LeaderboardEntry(BaseModel):
    """One ranked user"""
    rank: int
    user_id: str
    xp: int
    level: int
    streak: int


class LeaderboardResponse(BaseModel):
    """Users ranked by XP"""
    entries: List[LeaderboardEntry]


class HealthCheckResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    storage: str = Field(..., description="Storage backend status")
    timestamp: datetime = Field(..., description="Check timestamp")


class ErrorResponse(BaseModel):
    """Error response model"""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    user_message: Optional[str] = Field(None, description="Message safe to show to end users")
    request_id: Optional[str] = None
    timestamp: datetime

"""User-related Pydantic models"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from taskquest.models.task import utcnow

DEFAULT_USER_NAME = "Anonymous User"


class UserProfile(BaseModel):
    """Account profile; progression lives in UserProgress"""
    user_id: str = Field(..., min_length=1)
    name: str = DEFAULT_USER_NAME
    email: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserSync(BaseModel):
    """Identity-provider user to synchronize (`sub` is the stable user id)"""
    sub: str = Field(..., min_length=1)
    name: Optional[str] = None
    email: Optional[str] = None


class UserUpdate(BaseModel):
    """Profile fields a user may change"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[str] = Field(default=None, min_length=3, max_length=320)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and "@" not in v:
            raise ValueError("Invalid email address")
        return v

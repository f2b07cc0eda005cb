"""
UserService - User Management Business Logic

Handles the account lifecycle: synchronizing identity-provider users into a
profile, reading a profile together with its progression, profile edits and
account deletion.
"""

import logging
from typing import Any, Dict, Union

import pydantic

from taskquest.db.base import ProgressStore, TaskStore, UserStore
from taskquest.exceptions import RecordNotFoundError, ValidationError
from taskquest.gamification.progression import ProgressionEngine
from taskquest.models.user import DEFAULT_USER_NAME, UserProfile, UserSync, UserUpdate
from taskquest.services.task_service import to_validation_error

logger = logging.getLogger(__name__)


class UserService:
    """
    Service for user accounts.

    Responsibilities:
    - Get-or-create profiles for signed-in users, with a progress record
    - Profile lookup with the current progression snapshot
    - Profile edits
    - Account deletion (profile, tasks and progress)
    """

    def __init__(
        self,
        user_store: UserStore,
        task_store: TaskStore,
        progress_store: ProgressStore,
        engine: ProgressionEngine,
    ):
        self.user_store = user_store
        self.task_store = task_store
        self.progress_store = progress_store
        self.engine = engine

    async def sync_user(self, data: Union[UserSync, Dict[str, Any]]) -> Dict[str, Any]:
        """
        Get or create the profile of a signed-in user.

        An existing profile is returned unchanged. A new one takes the
        provider's name (or DEFAULT_USER_NAME) and email, and the user's
        progress record is created at 0 XP.

        Args:
            data: Identity-provider user; `sub` is the user id

        Returns:
            dict: {
                'user': UserProfile,
                'created': bool
            }

        Raises:
            ValidationError: `sub` is missing or empty
        """
        try:
            payload = data if isinstance(data, UserSync) else UserSync.model_validate(data)
        except pydantic.ValidationError as e:
            raise to_validation_error(e) from e

        profile = UserProfile(
            user_id=payload.sub,
            name=payload.name or DEFAULT_USER_NAME,
            email=payload.email,
        )
        user, created = await self.user_store.get_or_create_user(profile)
        await self.progress_store.get_or_create_progress(user.user_id)

        logger.info(f"Synced user {user.user_id} (created={created})")
        return {"user": user, "created": created}

    async def get_user(self, user_id: str) -> Dict[str, Any]:
        """
        Profile plus progression snapshot

        Raises:
            RecordNotFoundError: no profile for `user_id`
        """
        user = await self.user_store.find_user(user_id)
        if user is None:
            raise RecordNotFoundError(f"User {user_id} not found", record_type="User", record_id=user_id)
        progress = await self.engine.get_snapshot(user_id)
        return {"user": user, "progress": progress}

    async def update_user(self, user_id: str, update: Union[UserUpdate, Dict[str, Any]]) -> UserProfile:
        """
        Change profile fields

        Raises:
            ValidationError: no fields given, or invalid values
            RecordNotFoundError: no profile for `user_id`
        """
        try:
            changes = update if isinstance(update, UserUpdate) else UserUpdate.model_validate(update)
        except pydantic.ValidationError as e:
            raise to_validation_error(e, user_id=user_id) from e

        fields = {name: value for name, value in changes.model_dump(exclude_unset=True).items() if value is not None}
        if not fields:
            raise ValidationError("No updates provided", user_id=user_id, operation="update_user")

        user = await self.user_store.update_user(user_id, fields)
        if user is None:
            raise RecordNotFoundError(f"User {user_id} not found", record_type="User", record_id=user_id)

        logger.info(f"Updated user {user_id} fields: {sorted(fields)}")
        return user

    async def delete_user(self, user_id: str) -> bool:
        """
        Delete the profile, every task and the progress record of a user

        Returns:
            True when anything was deleted
        """
        removed_tasks = await self.task_store.delete_user_tasks(user_id)
        removed_progress = await self.progress_store.delete_progress(user_id)
        removed_profile = await self.user_store.delete_user(user_id)
        logger.info(
            f"Deleted user {user_id}: {removed_tasks} tasks, "
            f"progress={removed_progress}, profile={removed_profile}"
        )
        return bool(removed_tasks) or removed_progress or removed_profile

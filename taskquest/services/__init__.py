"""
Service Layer Package

This package contains business logic services that separate concerns between
the presentation layer (HTTP routes) and the data access layer (stores).

- TaskService: Task CRUD, completion toggles, calendar import, leaderboard
- UserService: Profile sync, lookup, edits and account deletion
- CalendarSync: Google Calendar side effects (non-fatal) and event listing
"""

from taskquest.services.container import (
    ServiceContainer,
    build_completion_writer,
    build_stores,
    get_container,
    init_container,
    reset_container,
)
from taskquest.services.calendar_sync import (
    CalendarSync,
    GoogleCalendarSync,
    NullCalendarSync,
    build_calendar_sync,
)
from taskquest.services.task_service import CalendarImportResult, TaskResult, TaskService
from taskquest.services.user_service import UserService

__all__ = [
    # Service Layer Container
    "ServiceContainer",
    "build_completion_writer",
    "build_stores",
    "get_container",
    "init_container",
    "reset_container",
    # Calendar
    "CalendarSync",
    "GoogleCalendarSync",
    "NullCalendarSync",
    "build_calendar_sync",
    # Tasks
    "CalendarImportResult",
    "TaskResult",
    "TaskService",
    # Users
    "UserService",
]

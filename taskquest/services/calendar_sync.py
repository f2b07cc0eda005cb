"""
Calendar sync

Pushes tasks to Google Calendar after they are saved, and reads upcoming
events so they can be imported as tasks. Pushing is a side effect: a failure
is reported as SyncFailure and never changes task completion state or
progression.

Requests go through the calendar circuit breaker so that an outage fails fast
instead of holding every task update for the full HTTP timeout.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import pybreaker

from taskquest import config
from taskquest.exceptions import SyncFailure
from taskquest.models.task import Task, ensure_utc, utcnow
from taskquest.observability.metrics import record_calendar_sync
from taskquest.resilience.circuit_breaker import CALENDAR_BREAKER, call_through_breaker

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"

UNTITLED_EVENT = "Untitled Event"
DEFAULT_EVENT_MINUTES = 60


class CalendarSync(ABC):
    """Calendar side-effect boundary"""

    @abstractmethod
    async def sync_event(self, task: Task) -> Optional[str]:
        """
        Create or update the calendar event of a task

        Returns:
            The event id, or None when sync is disabled

        Raises:
            SyncFailure: the calendar could not be updated
        """

    @abstractmethod
    async def delete_event(self, task: Task) -> None:
        """Remove the calendar event of a task, if it has one"""

    @abstractmethod
    async def list_events(
        self,
        time_min: Optional[datetime] = None,
        max_results: int = 100,
    ) -> List[Dict[str, Any]]:
        """
        Upcoming single events ordered by start time

        Args:
            time_min: Earliest event start (defaults to now)
            max_results: Page size requested from the calendar

        Raises:
            SyncFailure: the calendar could not be read
        """

    async def close(self) -> None:
        """Release any held connections"""


class NullCalendarSync(CalendarSync):
    """Used when calendar sync is disabled"""

    async def sync_event(self, task: Task) -> Optional[str]:
        record_calendar_sync("skipped")
        return task.google_event_id

    async def delete_event(self, task: Task) -> None:
        return None

    async def list_events(
        self,
        time_min: Optional[datetime] = None,
        max_results: int = 100,
    ) -> List[Dict[str, Any]]:
        return []


def build_event_body(task: Task) -> Dict[str, Any]:
    """Minimal Google Calendar event for a task (times in UTC)"""
    return {
        "summary": task.title,
        "description": task.description or "",
        "start": {"dateTime": task.start_time.isoformat(), "timeZone": "UTC"},
        "end": {"dateTime": task.end_time.isoformat(), "timeZone": "UTC"},
    }


def _event_time(boundary: Optional[Dict[str, Any]]) -> Optional[datetime]:
    """`dateTime` of an event boundary; all-day `date` values start at UTC midnight"""
    if not boundary:
        return None
    if boundary.get("dateTime"):
        return ensure_utc(datetime.fromisoformat(boundary["dateTime"].replace("Z", "+00:00")))
    if boundary.get("date"):
        return datetime.fromisoformat(boundary["date"]).replace(tzinfo=timezone.utc)
    return None


def event_to_task(event: Dict[str, Any], user_id: str) -> Task:
    """
    Pending task for a calendar event

    Duration comes from the event's start and end `dateTime`; all-day and
    open-ended events get DEFAULT_EVENT_MINUTES. Events without a summary are
    titled UNTITLED_EVENT.

    Raises:
        ValueError: the event has no usable start time or its times are invalid
    """
    start = _event_time(event.get("start"))
    if start is None:
        raise ValueError(f"Event {event.get('id')} has no start time")

    end = None
    if (event.get("start") or {}).get("dateTime") and (event.get("end") or {}).get("dateTime"):
        end = _event_time(event["end"])
    if end is None:
        end = start + timedelta(minutes=DEFAULT_EVENT_MINUTES)

    return Task(
        user_id=user_id,
        title=(event.get("summary") or UNTITLED_EVENT)[:200],
        description=event.get("description") or "",
        duration_minutes=int((end - start).total_seconds() // 60),
        start_time=start,
        end_time=end,
        google_event_id=event.get("id"),
    )


class GoogleCalendarSync(CalendarSync):
    """
    Google Calendar events API over httpx

    Requests are awaited on an httpx.AsyncClient inside the circuit breaker.
    Pass `client` to inject a preconfigured client (e.g. one with a mock
    transport).
    """

    def __init__(
        self,
        token: str,
        calendar_id: str = "primary",
        timeout: float = 10.0,
        breaker: pybreaker.CircuitBreaker = CALENDAR_BREAKER,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.calendar_id = calendar_id
        self.breaker = breaker
        self._client = client or httpx.AsyncClient(
            base_url=GOOGLE_CALENDAR_API,
            timeout=httpx.Timeout(timeout, connect=5.0),
            headers={"Authorization": f"Bearer {token}"},
        )

    def _events_path(self, event_id: Optional[str] = None) -> str:
        path = f"/calendars/{self.calendar_id}/events"
        return f"{path}/{event_id}" if event_id else path

    async def _send(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Raises on non-2xx so the breaker counts it"""
        response = await self._client.request(method, path, json=body, params=params)
        response.raise_for_status()
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def sync_event(self, task: Task) -> Optional[str]:
        body = build_event_body(task)
        if task.google_event_id:
            method, path = "PUT", self._events_path(task.google_event_id)
        else:
            method, path = "POST", self._events_path()

        try:
            event = await call_through_breaker(self.breaker, self._send, method, path, body)
        except (httpx.HTTPError, pybreaker.CircuitBreakerError, ValueError) as e:
            record_calendar_sync("failure")
            raise SyncFailure(
                f"Calendar sync failed for task {task.id}: {type(e).__name__}: {e}",
                task_id=task.id,
                user_id=task.user_id,
                operation="sync_event",
                status_code=e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None,
                cause=e,
            ) from e

        event_id = event.get("id")
        if not event_id:
            record_calendar_sync("failure")
            raise SyncFailure(
                f"Calendar returned no event id for task {task.id}",
                task_id=task.id,
                user_id=task.user_id,
                operation="sync_event",
            )

        record_calendar_sync("success")
        logger.info(f"Synced task {task.id} to calendar event {event_id} ({method})")
        return event_id

    async def delete_event(self, task: Task) -> None:
        if not task.google_event_id:
            return

        try:
            await call_through_breaker(
                self.breaker, self._send, "DELETE", self._events_path(task.google_event_id)
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (404, 410):
                logger.info(f"Calendar event {task.google_event_id} already gone")
                return
            record_calendar_sync("failure")
            raise SyncFailure(
                f"Calendar event delete failed for task {task.id}: {e.response.status_code}",
                task_id=task.id,
                user_id=task.user_id,
                operation="delete_event",
                status_code=e.response.status_code,
                cause=e,
            ) from e
        except (httpx.HTTPError, pybreaker.CircuitBreakerError) as e:
            record_calendar_sync("failure")
            raise SyncFailure(
                f"Calendar event delete failed for task {task.id}: {type(e).__name__}",
                task_id=task.id,
                user_id=task.user_id,
                operation="delete_event",
                cause=e,
            ) from e

        logger.info(f"Deleted calendar event {task.google_event_id} for task {task.id}")

    async def list_events(
        self,
        time_min: Optional[datetime] = None,
        max_results: int = 100,
    ) -> List[Dict[str, Any]]:
        params = {
            "timeMin": ensure_utc(time_min or utcnow()).isoformat(),
            "maxResults": max_results,
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        try:
            body = await call_through_breaker(
                self.breaker, self._send, "GET", self._events_path(), None, params
            )
        except (httpx.HTTPError, pybreaker.CircuitBreakerError, ValueError) as e:
            record_calendar_sync("failure")
            raise SyncFailure(
                f"Calendar event listing failed: {type(e).__name__}: {e}",
                operation="list_events",
                user_message="We couldn't read your calendar. Please try again later.",
                status_code=e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None,
                cause=e,
            ) from e

        events = body.get("items", [])
        logger.info(f"Fetched {len(events)} calendar events from '{self.calendar_id}'")
        return events

    async def close(self) -> None:
        await self._client.aclose()


def build_calendar_sync() -> CalendarSync:
    """Calendar sync implementation selected by configuration"""
    if not config.GOOGLE_CALENDAR_ENABLED:
        logger.info("Google Calendar sync disabled")
        return NullCalendarSync()

    logger.info(f"Google Calendar sync enabled for calendar '{config.GOOGLE_CALENDAR_ID}'")
    return GoogleCalendarSync(
        token=config.GOOGLE_CALENDAR_TOKEN,
        calendar_id=config.GOOGLE_CALENDAR_ID,
        timeout=config.GOOGLE_CALENDAR_TIMEOUT,
    )

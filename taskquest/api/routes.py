"""API routes for TaskQuest"""
import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from taskquest import config
from taskquest.api.auth import verify_api_key
from taskquest.api.middleware import limiter
from taskquest.api.models import (
    TaskResponse, TaskListResponse,
    AchievementResponse,
    UserResponse, CalendarImportResponse,
    LeaderboardEntry, LeaderboardResponse,
    HealthCheckResponse,
)
from taskquest.models.progress import ProgressionSnapshot
from taskquest.models.task import Task, TaskCreate, TaskUpdate
from taskquest.models.user import UserSync, UserUpdate
from taskquest.services.container import get_container
from taskquest.services.task_service import TaskService
from taskquest.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_task_service() -> TaskService:
    """TaskService from the global container"""
    return get_container().task_service


def get_user_service() -> UserService:
    """UserService from the global container"""
    return get_container().user_service


@router.post("/api/v1/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def create_task(
    request: Request,
    payload: TaskCreate,
    api_key: str = Depends(verify_api_key),
    service: TaskService = Depends(get_task_service)
):
    """Create a pending task (Rate limit: 30/minute)"""
    result = await service.create_task(payload)
    return TaskResponse(task=result.task, warnings=result.warnings)


@router.get("/api/v1/users/{user_id}/tasks", response_model=TaskListResponse)
@limiter.limit("60/minute")
async def list_tasks(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: TaskService = Depends(get_task_service)
):
    """List a user's tasks ordered by start time (Rate limit: 60/minute)"""
    tasks = await service.list_tasks(user_id)
    return TaskListResponse(user_id=user_id, tasks=tasks)


@router.get("/api/v1/tasks/{task_id}", response_model=Task)
@limiter.limit("60/minute")
async def get_task(
    request: Request,
    task_id: str,
    api_key: str = Depends(verify_api_key),
    service: TaskService = Depends(get_task_service)
):
    """Get a task (Rate limit: 60/minute)"""
    return await service.get_task(task_id)


@router.put("/api/v1/tasks/{task_id}", response_model=TaskResponse)
@limiter.limit("30/minute")
async def update_task(
    request: Request,
    task_id: str,
    payload: TaskUpdate,
    api_key: str = Depends(verify_api_key),
    service: TaskService = Depends(get_task_service)
):
    """
    Update a task (Rate limit: 30/minute)

    Toggling `completed` grants or reverts XP; the response carries the
    progression snapshot and any calendar warnings.
    """
    result = await service.update_task(task_id, payload)
    return TaskResponse(task=result.task, progress=result.progress, warnings=result.warnings)


@router.delete("/api/v1/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
async def delete_task(
    request: Request,
    task_id: str,
    api_key: str = Depends(verify_api_key),
    service: TaskService = Depends(get_task_service)
):
    """Delete a task; XP already granted for it is kept (Rate limit: 30/minute)"""
    warnings = await service.delete_task(task_id)
    for warning in warnings:
        logger.warning(f"Task {task_id} deleted with calendar warning: {warning}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/api/v1/users/{user_id}/progress", response_model=ProgressionSnapshot)
@limiter.limit("60/minute")
async def get_progress(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: TaskService = Depends(get_task_service)
):
    """Get XP, level, streak and achievements (Rate limit: 60/minute)"""
    return await service.get_progress(user_id)


@router.get("/api/v1/users/{user_id}/achievements", response_model=AchievementResponse)
@limiter.limit("60/minute")
async def get_achievements(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: TaskService = Depends(get_task_service)
):
    """Get user achievements (Rate limit: 60/minute)"""
    data = await service.get_achievements(user_id)
    return AchievementResponse(**data)


@router.post("/api/v1/users/sync", response_model=UserResponse)
@limiter.limit("30/minute")
async def sync_user(
    request: Request,
    payload: UserSync,
    api_key: str = Depends(verify_api_key),
    service: UserService = Depends(get_user_service)
):
    """Get or create the profile of a signed-in user (Rate limit: 30/minute)"""
    result = await service.sync_user(payload)
    return UserResponse(user=result["user"], created=result["created"])


@router.get("/api/v1/users/{user_id}", response_model=UserResponse)
@limiter.limit("60/minute")
async def get_user(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: UserService = Depends(get_user_service)
):
    """Get a user's profile and progression (Rate limit: 60/minute)"""
    data = await service.get_user(user_id)
    return UserResponse(**data)


@router.patch("/api/v1/users/{user_id}", response_model=UserResponse)
@limiter.limit("10/minute")
async def update_user(
    request: Request,
    user_id: str,
    payload: UserUpdate,
    api_key: str = Depends(verify_api_key),
    service: UserService = Depends(get_user_service)
):
    """Update profile fields; an empty update is rejected (Rate limit: 10/minute)"""
    user = await service.update_user(user_id, payload)
    return UserResponse(user=user)


@router.post("/api/v1/users/{user_id}/calendar/import", response_model=CalendarImportResponse)
@limiter.limit("5/minute")
async def import_calendar_events(
    request: Request,
    user_id: str,
    time_min: Optional[datetime] = Query(default=None, description="Earliest event start (default: now)"),
    api_key: str = Depends(verify_api_key),
    service: TaskService = Depends(get_task_service)
):
    """Create pending tasks for upcoming calendar events (Rate limit: 5/minute)"""
    result = await service.import_calendar_events(user_id, time_min=time_min)
    return CalendarImportResponse(
        user_id=user_id,
        tasks=result.tasks,
        estimated_xp=result.estimated_xp,
        skipped=result.skipped,
        warnings=result.warnings,
    )


@router.delete("/api/v1/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("5/minute")
async def delete_user(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: UserService = Depends(get_user_service)
):
    """Delete a user's profile, tasks and progress (Rate limit: 5/minute)"""
    if not await service.delete_user(user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id} not found"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/api/v1/leaderboard", response_model=LeaderboardResponse)
@limiter.limit("30/minute")
async def get_leaderboard(
    request: Request,
    limit: int = Query(default=10, ge=1, le=100),
    api_key: str = Depends(verify_api_key),
    service: TaskService = Depends(get_task_service)
):
    """Users ranked by XP (Rate limit: 30/minute)"""
    ranked = await service.get_leaderboard(limit)
    return LeaderboardResponse(entries=[
        LeaderboardEntry(rank=rank, user_id=p.user_id, xp=p.xp, level=p.level, streak=p.streak)
        for rank, p in enumerate(ranked, start=1)
    ])


@router.get("/api/health", response_model=HealthCheckResponse)
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Health check endpoint (Rate limit: 60/minute for monitoring systems)"""
    if config.STORAGE_BACKEND != "postgres":
        storage_status = "memory"
    else:
        from taskquest.db.connection import db
        try:
            async with db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT 1")
                    await cur.fetchone()
            storage_status = "connected"
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            storage_status = "disconnected"

    return HealthCheckResponse(
        status="degraded" if storage_status == "disconnected" else "healthy",
        storage=storage_status,
        timestamp=datetime.now(timezone.utc)
    )


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Exposes all application metrics in Prometheus text format.
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

from fastapi import APIRouter, Query, status

from tasktracker.core.errors import NotFoundError
from tasktracker.dependencies import AdminIdentity, CurrentIdentity, TaskServiceDep
from tasktracker.models import (
    ApiResponse,
    Deleted,
    TaskCreate,
    TaskPriority,
    TaskResponse,
    TaskStatus,
    TaskUpdate,
)

router = APIRouter(prefix="/tasks", tags=["tasks"])

TASK_NOT_FOUND = "Task not found"


@router.get("", response_model=ApiResponse[list[TaskResponse]])
async def get_tasks(
    identity: CurrentIdentity,
    service: TaskServiceDep,
    status_filter: TaskStatus | None = Query(default=None, alias="status"),
    priority: TaskPriority | None = None,
):
    """List the caller's tasks. The unfiltered list is served from cache."""
    if status_filter is None and priority is None:
        tasks = await service.list_for_owner(identity.id)
    else:
        tasks = await service.search_for_owner(identity.id, status_filter, priority)
    return {"data": tasks}


@router.post(
    "",
    response_model=ApiResponse[TaskResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_task(
    task_data: TaskCreate, identity: CurrentIdentity, service: TaskServiceDep
):
    """Create a new task owned by the caller"""
    task = await service.create(identity.id, task_data)
    return {"data": task}


# Admin routes are declared before "/{task_id}" so "admin" is never parsed as an id.
@router.get("/admin/all", response_model=ApiResponse[list[TaskResponse]])
async def admin_get_all_tasks(
    admin: AdminIdentity,
    service: TaskServiceDep,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=100),
    owner_id: int | None = None,
):
    return {"data": await service.list_all(skip, limit, owner_id)}


@router.delete("/admin/{task_id}", response_model=ApiResponse[Deleted])
async def admin_delete_task(task_id: int, admin: AdminIdentity, service: TaskServiceDep):
    if not await service.delete_any(task_id):
        raise NotFoundError(TASK_NOT_FOUND)
    return {"data": {"id": task_id}}


@router.get("/{task_id}", response_model=ApiResponse[TaskResponse])
async def get_task(task_id: int, identity: CurrentIdentity, service: TaskServiceDep):
    """Get one of the caller's tasks by ID"""
    task = await service.get_for_owner(task_id, identity.id)
    if not task:
        raise NotFoundError(TASK_NOT_FOUND)
    return {"data": task}


@router.put("/{task_id}", response_model=ApiResponse[TaskResponse])
async def update_task(
    task_id: int,
    task_data: TaskUpdate,
    identity: CurrentIdentity,
    service: TaskServiceDep,
):
    task = await service.update_for_owner(task_id, identity.id, task_data)
    if not task:
        raise NotFoundError(TASK_NOT_FOUND)
    return {"data": task}


@router.delete("/{task_id}", response_model=ApiResponse[Deleted])
async def delete_task(task_id: int, identity: CurrentIdentity, service: TaskServiceDep):
    """Delete one of the caller's tasks"""
    if not await service.delete_for_owner(task_id, identity.id):
        raise NotFoundError(TASK_NOT_FOUND)
    return {"data": {"id": task_id}}

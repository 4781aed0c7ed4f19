from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.core.database import get_db
from taskhub.core.errors import NotFound, envelope
from taskhub.models.task import Task
from taskhub.schemas.task import TaskWrite
from taskhub.services.coordinator import PendingTasksCoordinator, get_coordinator
from taskhub.services.query import fetch_document, parse_list_params, run_query

router = APIRouter(
    prefix="/api/tasks",
    tags=["tasks"],
    responses={404: {"description": "Not found"}},
)


@router.get("")
async def list_tasks(
    where: Optional[str] = None,
    sort: Optional[str] = None,
    select: Optional[str] = None,
    skip: Optional[str] = None,
    limit: Optional[str] = None,
    count: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    plan = parse_list_params(Task, where, sort, select, skip, limit, count)
    return envelope(200, "OK", await run_query(db, plan))


@router.post("")
async def create_task(
    task_in: TaskWrite,
    db: AsyncSession = Depends(get_db),
    coordinator: PendingTasksCoordinator = Depends(get_coordinator),
):
    task = Task(**task_in.column_values())
    db.add(task)
    await db.commit()
    document = task.to_document()

    await coordinator.task_created(db, task)
    return envelope(201, "Task created", document)


@router.get("/{task_id}")
async def get_task(
    task_id: str,
    select: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return envelope(200, "OK", await fetch_document(db, Task, task_id, select))


@router.put("/{task_id}")
async def update_task(
    task_id: str,
    task_in: TaskWrite,
    db: AsyncSession = Depends(get_db),
    coordinator: PendingTasksCoordinator = Depends(get_coordinator),
):
    values = task_in.column_values()

    prior = await db.get(Task, task_id)
    if prior is None:
        raise NotFound("Task not found")
    await coordinator.task_unassigning(db, prior)

    # reload: a failed unassign rolls the session back and expires everything
    task = await db.get(Task, task_id, populate_existing=True)
    if task is None:
        raise NotFound("Task not found")
    for attr, value in values.items():
        setattr(task, attr, value)
    await db.commit()
    document = task.to_document()

    await coordinator.task_updated(db, task)
    return envelope(200, "Task updated", document)


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    db: AsyncSession = Depends(get_db),
    coordinator: PendingTasksCoordinator = Depends(get_coordinator),
):
    task = await db.get(Task, task_id)
    if task is None:
        raise NotFound("Task not found")
    await db.delete(task)
    await db.commit()

    await coordinator.task_deleted(db, task)
    return Response(status_code=204)

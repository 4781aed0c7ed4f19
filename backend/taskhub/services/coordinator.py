"""
Keeps ``User.pendingTasks`` in step with ``Task.assignedUser``.

There is no foreign key between the two tables, so every task write that can
change an assignment calls into ``PendingTasksCoordinator`` after (or, for
the removal half of an update, before) the task row itself is written. The
task row is the primary record: a failure on the user side is logged, the
session is rolled back to a clean state and the user is queued for repair,
but the caller still sees the task write succeed.

Writes to ``pendingTasks`` through the user endpoints are taken literally and
never checked against tasks; only the task side enforces the invariant.
"""

import asyncio
import logging
import weakref
from typing import Optional

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.models.task import Task
from taskhub.models.user import User

logger = logging.getLogger(__name__)


class PendingTasksCoordinator:
    def __init__(self, repairs=None):
        self.repairs = repairs
        # Serializes read-modify-write of one user's list within this process.
        # An entry lives only while some coroutine holds or waits on it.
        self._locks = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def task_created(self, session: AsyncSession, task: Task) -> None:
        if task.assigned_user:
            await self._add(session, task.assigned_user, task.id)

    async def task_unassigning(self, session: AsyncSession, prior: Task) -> Optional[str]:
        """First half of an update: drop the task from its current assignee.

        Runs before the new task fields are written. Returns the prior
        assignee id (or None when the task was unassigned).
        """
        if not prior.assigned_user:
            return None
        await self._remove(session, prior.assigned_user, prior.id)
        return prior.assigned_user

    async def task_updated(self, session: AsyncSession, task: Task) -> None:
        """Second half of an update: add the task to its new assignee, if absent."""
        if task.assigned_user:
            await self._add(session, task.assigned_user, task.id)

    async def task_deleted(self, session: AsyncSession, task: Task) -> None:
        if task.assigned_user:
            await self._remove(session, task.assigned_user, task.id)

    async def reconcile_user(self, session: AsyncSession, user_id: str) -> Optional[list]:
        """Rebuild one user's pendingTasks from the tasks assigned to them.

        Ids still assigned keep their position, stale ids are dropped and
        missing ones are appended in id order. Returns the new list, or None
        if the user does not exist.
        """
        async with self._lock_for(user_id):
            user = await session.get(User, user_id, populate_existing=True)
            if user is None:
                logger.info("Reconcile skipped, user %s does not exist", user_id)
                return None
            result = await session.execute(
                select(Task.id).where(Task.assigned_user == user_id).order_by(Task.id)
            )
            assigned = list(result.scalars().all())
            assigned_set = set(assigned)

            kept = []
            for task_id in user.pending_tasks or []:
                if task_id in assigned_set and task_id not in kept:
                    kept.append(task_id)
            rebuilt = kept + [t for t in assigned if t not in kept]

            if rebuilt != list(user.pending_tasks or []):
                logger.info(
                    "Reconciled pendingTasks user=%s before=%s after=%s",
                    user_id, user.pending_tasks, rebuilt,
                )
                user.pending_tasks = rebuilt
                await session.commit()
            return rebuilt

    async def _add(self, session: AsyncSession, user_id: str, task_id: str) -> None:
        async with self._lock_for(user_id):
            try:
                user = await session.get(User, user_id, populate_existing=True)
                if user is None:
                    logger.debug("Task %s references missing user %s", task_id, user_id)
                    return
                pending = list(user.pending_tasks or [])
                if task_id in pending:
                    return
                user.pending_tasks = pending + [task_id]
                await session.commit()
            except SQLAlchemyError as e:
                await self._secondary_failed(session, "add", user_id, task_id, e)

    async def _remove(self, session: AsyncSession, user_id: str, task_id: str) -> None:
        async with self._lock_for(user_id):
            try:
                user = await session.get(User, user_id, populate_existing=True)
                if user is None:
                    return
                pending = list(user.pending_tasks or [])
                remaining = [t for t in pending if t != task_id]
                if remaining == pending:
                    return
                user.pending_tasks = remaining
                await session.commit()
            except SQLAlchemyError as e:
                await self._secondary_failed(session, "remove", user_id, task_id, e)

    async def _secondary_failed(self, session, action, user_id, task_id, error) -> None:
        logger.warning(
            "Could not %s task %s in pendingTasks of user %s: %s",
            action, task_id, user_id, error,
        )
        await session.rollback()
        if self.repairs is not None:
            await self.repairs.request(user_id)


def get_coordinator(request: Request) -> PendingTasksCoordinator:
    return request.app.state.coordinator

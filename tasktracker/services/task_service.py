import logging
from datetime import datetime, timezone

from sqlalchemy import delete
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from tasktracker.cache.decorators import async_cache_invalidate, async_cached
from tasktracker.cache.layer import CacheLayer
from tasktracker.models import (
    Task,
    TaskCreate,
    TaskPriority,
    TaskResponse,
    TaskStatus,
    TaskUpdate,
)

logger = logging.getLogger(__name__)

TASK_LIST_TTL = 300

# Fields a client may explicitly clear with null on update.
NULLABLE_TASK_FIELDS = {"description", "due_date"}


def task_list_key(owner_id: int, **_) -> str:
    return f"tasks:{owner_id}"


class TaskService:
    """
    Task persistence scoped by owner.

    Owner-scoped lookups treat another user's task exactly like a missing
    one, so callers cannot tell the two apart.
    """

    def __init__(self, db: AsyncSession, cache: CacheLayer):
        self.db = db
        self.cache = cache

    async def _get_owned(self, task_id: int, owner_id: int) -> Task | None:
        query = select(Task).where(Task.id == task_id, Task.owner_id == owner_id)
        result = await self.db.exec(query)
        return result.first()

    @async_cached(task_list_key, l2_ttl=TASK_LIST_TTL)
    async def list_for_owner(self, owner_id: int):
        query = (
            select(Task)
            .where(Task.owner_id == owner_id)
            .order_by(Task.created_at.desc(), Task.id.desc())
        )
        result = await self.db.exec(query)
        return [TaskResponse.model_validate(task) for task in result.all()]

    async def search_for_owner(
        self,
        owner_id: int,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
    ):
        query = select(Task).where(Task.owner_id == owner_id)
        if status is not None:
            query = query.where(Task.status == status)
        if priority is not None:
            query = query.where(Task.priority == priority)
        query = query.order_by(Task.created_at.desc(), Task.id.desc())

        result = await self.db.exec(query)
        return result.all()

    async def get_for_owner(self, task_id: int, owner_id: int):
        return await self._get_owned(task_id, owner_id)

    @async_cache_invalidate(task_list_key)
    async def create(self, owner_id: int, task_data: TaskCreate):
        task = Task.model_validate(task_data, update={"owner_id": owner_id})
        self.db.add(task)
        await self.db.commit()
        await self.db.refresh(task)
        logger.info(f"Task {task.id} created for user {owner_id}")
        return task

    @async_cache_invalidate(task_list_key)
    async def update_for_owner(self, task_id: int, owner_id: int, task_data: TaskUpdate):
        task = await self._get_owned(task_id, owner_id)
        if not task:
            return None
        update_data = {
            field: value
            for field, value in task_data.model_dump(exclude_unset=True).items()
            if value is not None or field in NULLABLE_TASK_FIELDS
        }
        task.sqlmodel_update(update_data)
        task.updated_at = datetime.now(timezone.utc)
        self.db.add(task)
        await self.db.commit()
        await self.db.refresh(task)
        return task

    @async_cache_invalidate(task_list_key)
    async def delete_for_owner(self, task_id: int, owner_id: int):
        task = await self._get_owned(task_id, owner_id)
        if not task:
            return False
        await self.db.delete(task)
        await self.db.commit()
        logger.info(f"Task {task_id} deleted by owner {owner_id}")
        return True

    async def delete_all_for_owner(self, owner_id: int):
        """
        Stage removal of every task of a user, without committing.

        The caller commits together with its own change and then drops the
        owner's cached list.
        """
        await self.db.exec(delete(Task).where(Task.owner_id == owner_id))

    # ------------------------------------------------------------------
    # Admin operations: no ownership scoping
    # ------------------------------------------------------------------

    async def list_all(self, skip: int, limit: int, owner_id: int | None = None):
        query = select(Task)
        if owner_id is not None:
            query = query.where(Task.owner_id == owner_id)
        query = query.offset(skip).limit(limit).order_by(Task.created_at.desc(), Task.id.desc())

        result = await self.db.exec(query)
        return result.all()

    async def delete_any(self, task_id: int):
        task = await self.db.get(Task, task_id)
        if not task:
            return False
        owner_id = task.owner_id
        await self.db.delete(task)
        await self.db.commit()
        await self.cache.delete(task_list_key(owner_id))
        logger.info(f"Task {task_id} of user {owner_id} deleted by admin")
        return True

import logging
from typing import Any, Dict, Optional, Sequence

from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from taskboard.core.exceptions import NotFoundError, ValidationError
from taskboard.models.shared.enums import PRIORITY_RANK, STATUS_RANK, SortOrder
from taskboard.models.task.task import Task
from taskboard.schemas.task.task_schema import TaskFilter, TaskSort

logger = logging.getLogger(__name__)

DEFAULT_SORT_FIELD = "created_at"

# Accepted sortBy values, camelCase as sent by clients and snake_case as used internally
SORT_FIELDS = {
    "createdAt": "created_at",
    "created_at": "created_at",
    "updatedAt": "updated_at",
    "updated_at": "updated_at",
    "dueDate": "due_date",
    "due_date": "due_date",
    "title": "title",
    "status": "status",
    "priority": "priority",
}

UPDATABLE_FIELDS = frozenset({"title", "description", "status", "priority", "due_date"})


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _sort_column(field: str):
    if field == "priority":
        return case(PRIORITY_RANK, value=Task.priority)
    if field == "status":
        return case(STATUS_RANK, value=Task.status)
    return getattr(Task, field)


class TaskRepository:
    """Task persistence scoped to a single AsyncSession"""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _base_query(self):
        return select(Task).options(selectinload(Task.attachments))

    def resolve_sort_field(self, sort_by: Optional[str]) -> str:
        if not sort_by:
            return DEFAULT_SORT_FIELD
        field = SORT_FIELDS.get(sort_by)
        if field is None:
            logger.warning(f"Unsupported sort field {sort_by!r}, falling back to {DEFAULT_SORT_FIELD}")
            return DEFAULT_SORT_FIELD
        return field

    def build_query(self, owner_id: str, filters: TaskFilter, sort: TaskSort):
        query = self._base_query().where(Task.owner == owner_id)

        # Apply filters
        if filters.status:
            query = query.where(Task.status == filters.status)
        if filters.priority:
            query = query.where(Task.priority == filters.priority)
        if filters.search:
            # Case-insensitive match, lowered on both sides
            pattern = f"%{_escape_like(filters.search.lower())}%"
            query = query.where(
                or_(
                    func.lower(Task.title).like(pattern, escape="\\"),
                    func.lower(Task.description).like(pattern, escape="\\"),
                )
            )

        # Ordering, with id as a stable tie-breaker
        column = _sort_column(self.resolve_sort_field(sort.sort_by))
        if sort.order == SortOrder.ASC:
            return query.order_by(column.asc(), Task.id.asc())
        return query.order_by(column.desc(), Task.id.desc())

    async def find(self, owner_id: str, filters: TaskFilter, sort: TaskSort) -> Sequence[Task]:
        result = await self.db.execute(self.build_query(owner_id, filters, sort))
        return result.scalars().all()

    async def find_by_id(self, task_id: int) -> Task:
        result = await self.db.execute(
            self._base_query()
            .where(Task.id == task_id)
            .execution_options(populate_existing=True)
        )
        task = result.scalar_one_or_none()
        if not task:
            raise NotFoundError("Task not found")
        return task

    async def insert(self, task: Task) -> Task:
        self.db.add(task)
        await self._commit()
        return await self.find_by_id(task.id)

    async def update_fields(self, task_id: int, fields: Dict[str, Any]) -> Task:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        task = await self.find_by_id(task_id)
        for field, value in fields.items():
            setattr(task, field, value)

        await self._commit()
        return await self.find_by_id(task_id)

    async def remove_attachment(self, task_id: int, attachment_id: int) -> Task:
        task = await self.find_by_id(task_id)
        attachment = task.get_attachment(attachment_id)
        if attachment is None:
            raise NotFoundError("Attachment not found")

        task.attachments.remove(attachment)
        await self._commit()
        return await self.find_by_id(task_id)

    async def delete(self, task_id: int) -> None:
        task = await self.find_by_id(task_id)
        await self.db.delete(task)
        await self._commit()

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

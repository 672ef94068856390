from dataclasses import dataclass
from datetime import date, datetime
from typing import AsyncIterator, List, Optional
from pydantic import ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from taskboard.models.shared.enums import TaskStatus, TaskPriority, SortOrder
from taskboard.schemas.common.response import CamelModel


def _clean_title(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError("Task title is required")
    return value


class TaskBase(CamelModel):
    title: str = Field(..., max_length=200)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[date] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        return _clean_title(v)

class TaskCreate(TaskBase):
    pass

class TaskUpdate(CamelModel):
    """Whitelisted mutable fields; anything else in the payload is ignored"""
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[date] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        if v is None:
            raise ValueError("Task title is required")
        return _clean_title(v)

    @field_validator("status", "priority")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("Field cannot be null")
        return v

class TaskFilter(CamelModel):
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    search: Optional[str] = None

class TaskSort(CamelModel):
    sort_by: str = "createdAt"
    order: SortOrder = SortOrder.DESC


class AttachmentResponse(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True, frozen=True
    )

    id: int
    stored_name: str
    original_name: str
    storage_path: str
    size: int
    mime_type: Optional[str] = None
    created_at: Optional[datetime] = None

class TaskResponse(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True, frozen=True
    )

    id: int
    owner: str
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    due_date: Optional[date] = None
    attachments: List[AttachmentResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class AttachmentDownload:
    content: AsyncIterator[bytes]
    original_name: str
    mime_type: Optional[str]
    size: int

from typing import Any, List, Optional
from urllib.parse import quote
import logging
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status as http_status
from fastapi.responses import StreamingResponse
from pydantic import ValidationError as PydanticValidationError

from taskboard.api.dependencies import get_current_owner, get_task_service
from taskboard.core.exceptions import ValidationError, format_validation_errors
from taskboard.models.shared.enums import SortOrder, TaskPriority, TaskStatus
from taskboard.schemas.common.response import ApiResponse
from taskboard.schemas.task.task_schema import (
    TaskCreate, TaskFilter, TaskResponse, TaskSort, TaskUpdate
)
from taskboard.services.task.task_service import TaskService

router = APIRouter()
logger = logging.getLogger(__name__)


def _content_disposition(filename: str) -> str:
    fallback = filename.encode("ascii", "ignore").decode().replace('"', "") or "download"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


@router.get("/", response_model=ApiResponse[List[TaskResponse]], response_model_exclude_unset=True)
async def get_tasks(
    owner_id: str = Depends(get_current_owner),
    task_service: TaskService = Depends(get_task_service),
    status: Optional[TaskStatus] = Query(None, description="Filter by status"),
    priority: Optional[TaskPriority] = Query(None, description="Filter by priority"),
    search: Optional[str] = Query(None, description="Case-insensitive match on title or description"),
    sort_by: str = Query("createdAt", alias="sortBy", description="Field to sort by"),
    order: SortOrder = Query(SortOrder.DESC, description="Sort direction"),
) -> Any:
    """Get tasks for current user"""
    try:
        tasks = await task_service.list_tasks(
            owner_id,
            TaskFilter(status=status, priority=priority, search=search or None),
            TaskSort(sort_by=sort_by, order=order),
        )
        return ApiResponse(success=True, count=len(tasks), data=tasks)
    except HTTPException as e:
        logger.error(f"HTTP error getting tasks: {e.detail}")
        raise e
    except Exception as e:
        logger.error(f"Unexpected error getting tasks: {str(e)}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while retrieving tasks"
        )

@router.get("/{task_id}", response_model=ApiResponse[TaskResponse], response_model_exclude_unset=True)
async def get_task(
    *,
    task_id: int,
    owner_id: str = Depends(get_current_owner),
    task_service: TaskService = Depends(get_task_service),
) -> Any:
    """Get task by ID"""
    try:
        task = await task_service.get_task(owner_id, task_id)
        return ApiResponse(success=True, data=task)
    except HTTPException as e:
        logger.error(f"HTTP error getting task {task_id}: {e.detail}")
        raise e
    except Exception as e:
        logger.error(f"Unexpected error getting task {task_id}: {str(e)}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while retrieving task"
        )

@router.post("/", response_model=ApiResponse[TaskResponse], status_code=http_status.HTTP_201_CREATED,
             response_model_exclude_unset=True)
async def create_task(
    title: str = Form(...),
    description: Optional[str] = Form(None),
    status: Optional[TaskStatus] = Form(None),
    priority: Optional[TaskPriority] = Form(None),
    due_date: Optional[str] = Form(None, alias="dueDate"),
    attachments: List[UploadFile] = File(None),
    owner_id: str = Depends(get_current_owner),
    task_service: TaskService = Depends(get_task_service),
) -> Any:
    """Create new task with up to five attachments"""
    try:
        task_fields = {"title": title, "description": description, "due_date": due_date or None}
        if status is not None:
            task_fields["status"] = status
        if priority is not None:
            task_fields["priority"] = priority

        try:
            task_in = TaskCreate(**task_fields)
        except PydanticValidationError as e:
            raise ValidationError("Validation failed", errors=format_validation_errors(e.errors()))

        task = await task_service.create_task(owner_id, task_in, attachments or [])
        return ApiResponse(success=True, data=task)
    except HTTPException as e:
        logger.error(f"HTTP error creating task: {e.detail}")
        raise e
    except Exception as e:
        logger.error(f"Unexpected error creating task: {str(e)}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while creating task"
        )

@router.put("/{task_id}", response_model=ApiResponse[TaskResponse], response_model_exclude_unset=True)
async def update_task(
    *,
    task_id: int,
    task_in: TaskUpdate,
    owner_id: str = Depends(get_current_owner),
    task_service: TaskService = Depends(get_task_service),
) -> Any:
    """Update task"""
    try:
        task = await task_service.update_task(owner_id, task_id, task_in)
        return ApiResponse(success=True, data=task)
    except HTTPException as e:
        logger.error(f"HTTP error updating task {task_id}: {e.detail}")
        raise e
    except Exception as e:
        logger.error(f"Unexpected error updating task {task_id}: {str(e)}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while updating task"
        )

@router.delete("/{task_id}", response_model=ApiResponse[dict], response_model_exclude_unset=True)
async def delete_task(
    *,
    task_id: int,
    owner_id: str = Depends(get_current_owner),
    task_service: TaskService = Depends(get_task_service),
) -> Any:
    """Delete task and its attachment files"""
    try:
        await task_service.delete_task(owner_id, task_id)
        return ApiResponse(success=True, data={}, message="Task deleted successfully")
    except HTTPException as e:
        logger.error(f"HTTP error deleting task {task_id}: {e.detail}")
        raise e
    except Exception as e:
        logger.error(f"Unexpected error deleting task {task_id}: {str(e)}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while deleting task"
        )

@router.get("/{task_id}/attachments/{attachment_id}")
async def download_attachment(
    *,
    task_id: int,
    attachment_id: int,
    owner_id: str = Depends(get_current_owner),
    task_service: TaskService = Depends(get_task_service),
) -> StreamingResponse:
    """Download an attachment under its original filename"""
    try:
        download = await task_service.download_attachment(owner_id, task_id, attachment_id)
        return StreamingResponse(
            download.content,
            media_type=download.mime_type or "application/octet-stream",
            headers={
                "Content-Disposition": _content_disposition(download.original_name),
                "Content-Length": str(download.size),
            },
        )
    except HTTPException as e:
        logger.error(f"HTTP error downloading attachment {attachment_id} of task {task_id}: {e.detail}")
        raise e
    except Exception as e:
        logger.error(f"Unexpected error downloading attachment {attachment_id} of task {task_id}: {str(e)}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while downloading attachment"
        )

@router.delete("/{task_id}/attachments/{attachment_id}", response_model=ApiResponse[TaskResponse],
               response_model_exclude_unset=True)
async def delete_attachment(
    *,
    task_id: int,
    attachment_id: int,
    owner_id: str = Depends(get_current_owner),
    task_service: TaskService = Depends(get_task_service),
) -> Any:
    """Delete a single attachment from a task"""
    try:
        task = await task_service.delete_attachment(owner_id, task_id, attachment_id)
        return ApiResponse(success=True, data=task, message="Attachment deleted successfully")
    except HTTPException as e:
        logger.error(f"HTTP error deleting attachment {attachment_id} of task {task_id}: {e.detail}")
        raise e
    except Exception as e:
        logger.error(f"Unexpected error deleting attachment {attachment_id} of task {task_id}: {str(e)}")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while deleting attachment"
        )

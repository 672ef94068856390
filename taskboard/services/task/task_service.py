import logging
from typing import List, Optional, Sequence, Tuple

from fastapi import UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.core.config import settings
from taskboard.core.exceptions import ForbiddenError, NotFoundError, StorageError, ValidationError
from taskboard.models.task.task import Task
from taskboard.models.task.task_attachment import TaskAttachment
from taskboard.repositories.task_repository import TaskRepository
from taskboard.schemas.task.task_schema import (
    AttachmentDownload, TaskCreate, TaskFilter, TaskResponse, TaskSort, TaskUpdate
)
from taskboard.utils.file_handler import AttachmentStore, StoredFile, UploadValidator

logger = logging.getLogger(__name__)

# (upload, effective mime type)
PendingUpload = Tuple[UploadFile, str]


class TaskService:
    """Task lifecycle and attachment management for a single owner per call.

    Every operation checks that the task exists before checking that it belongs
    to ``owner_id``, so a missing task is always reported as not found.
    """

    def __init__(
        self,
        db: AsyncSession,
        store: AttachmentStore,
        validator: Optional[UploadValidator] = None,
        max_attachments: Optional[int] = None,
    ):
        self.repository = TaskRepository(db)
        self.store = store
        self.validator = validator or UploadValidator()
        self.max_attachments = settings.MAX_ATTACHMENTS if max_attachments is None else max_attachments

    async def list_tasks(
        self,
        owner_id: str,
        filters: Optional[TaskFilter] = None,
        sort: Optional[TaskSort] = None,
    ) -> List[TaskResponse]:
        """Get tasks belonging to owner"""
        tasks = await self.repository.find(owner_id, filters or TaskFilter(), sort or TaskSort())
        return [TaskResponse.model_validate(task) for task in tasks]

    async def get_task(self, owner_id: str, task_id: int) -> TaskResponse:
        task = await self._get_owned_task(owner_id, task_id)
        return TaskResponse.model_validate(task)

    async def create_task(
        self,
        owner_id: str,
        task_data: TaskCreate,
        files: Optional[Sequence[UploadFile]] = None,
    ) -> TaskResponse:
        """Create a task, staging its attachments before the record is committed"""
        if not task_data.title or not task_data.title.strip():
            raise ValidationError("Task title is required")

        uploads = self._validate_uploads(files or [])
        stored = await self._stage_files(uploads)

        db_task = Task(
            owner=owner_id,
            **task_data.model_dump(),
        )
        db_task.attachments = [
            TaskAttachment(
                stored_name=stored_file.stored_name,
                original_name=upload.filename,
                storage_path=stored_file.storage_path,
                size=stored_file.size,
                mime_type=mime_type,
            )
            for (upload, mime_type), stored_file in zip(uploads, stored)
        ]

        try:
            db_task = await self.repository.insert(db_task)
        except Exception:
            logger.error(f"Failed to insert task for owner {owner_id}, removing {len(stored)} staged file(s)")
            await self._discard(stored)
            raise

        logger.info(f"Owner {owner_id} created task {db_task.id} with {len(stored)} attachment(s)")
        return TaskResponse.model_validate(db_task)

    async def update_task(self, owner_id: str, task_id: int, task_data: TaskUpdate) -> TaskResponse:
        """Apply whitelisted field changes"""
        task = await self._get_owned_task(owner_id, task_id)

        fields = task_data.model_dump(exclude_unset=True)
        if not fields:
            return TaskResponse.model_validate(task)

        task = await self.repository.update_fields(task_id, fields)
        logger.info(f"Owner {owner_id} updated task {task_id}: {', '.join(sorted(fields))}")
        return TaskResponse.model_validate(task)

    async def delete_task(self, owner_id: str, task_id: int) -> None:
        """Delete a task; attachment file cleanup is best-effort"""
        task = await self._get_owned_task(owner_id, task_id)

        for attachment in task.attachments:
            try:
                await self.store.delete(attachment.storage_path)
            except StorageError as e:
                logger.warning(
                    f"Could not remove file {attachment.storage_path} of task {task_id}: {e.detail}"
                )

        await self.repository.delete(task_id)
        logger.info(f"Owner {owner_id} deleted task {task_id}")

    async def download_attachment(self, owner_id: str, task_id: int, attachment_id: int) -> AttachmentDownload:
        task = await self._get_owned_task(owner_id, task_id)
        attachment = self._get_attachment(task, attachment_id)

        if not await self.store.exists(attachment.storage_path):
            raise NotFoundError("File not found on server")

        content = await self.store.open_for_read(attachment.storage_path)
        return AttachmentDownload(
            content=content,
            original_name=attachment.original_name,
            mime_type=attachment.mime_type,
            size=attachment.size,
        )

    async def delete_attachment(self, owner_id: str, task_id: int, attachment_id: int) -> TaskResponse:
        task = await self._get_owned_task(owner_id, task_id)
        attachment = self._get_attachment(task, attachment_id)

        if await self.store.exists(attachment.storage_path):
            await self.store.delete(attachment.storage_path)

        task = await self.repository.remove_attachment(task_id, attachment_id)
        logger.info(f"Owner {owner_id} removed attachment {attachment_id} from task {task_id}")
        return TaskResponse.model_validate(task)

    async def _get_owned_task(self, owner_id: str, task_id: int) -> Task:
        task = await self.repository.find_by_id(task_id)
        if not task.is_owned_by(owner_id):
            logger.warning(f"Owner {owner_id} denied access to task {task_id}")
            raise ForbiddenError("Not authorized to access this task")
        return task

    def _get_attachment(self, task: Task, attachment_id: int) -> TaskAttachment:
        attachment = task.get_attachment(attachment_id)
        if attachment is None:
            raise NotFoundError("Attachment not found")
        return attachment

    def _validate_uploads(self, files: Sequence[UploadFile]) -> List[PendingUpload]:
        # Browsers send an empty part when no file was chosen
        files = [file for file in files if file and file.filename]
        if len(files) > self.max_attachments:
            raise ValidationError(f"A task can have at most {self.max_attachments} attachments")

        uploads = []
        for file in files:
            mime_type = self.validator.validate(file.filename, file.content_type, self._upload_size(file))
            uploads.append((file, mime_type))
        return uploads

    @staticmethod
    def _upload_size(file: UploadFile) -> int:
        # Get file size without reading the content
        file.file.seek(0, 2)
        size = file.file.tell()
        file.file.seek(0)
        return size

    async def _stage_files(self, uploads: Sequence[PendingUpload]) -> List[StoredFile]:
        stored: List[StoredFile] = []
        for upload, _ in uploads:
            try:
                await upload.seek(0)
                stored.append(await self.store.put(await upload.read(), upload.filename))
            except Exception:
                logger.error(f"Failed to store {upload.filename!r}, rolling back {len(stored)} staged file(s)")
                await self._discard(stored)
                raise
        return stored

    async def _discard(self, stored: Sequence[StoredFile]) -> None:
        for stored_file in stored:
            try:
                await self.store.delete(stored_file.storage_path)
            except StorageError as e:
                logger.error(f"Could not remove staged file {stored_file.storage_path}: {e.detail}")

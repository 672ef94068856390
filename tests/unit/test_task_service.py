import io
from datetime import date

import pytest
from sqlalchemy.exc import SQLAlchemyError
from starlette.datastructures import Headers, UploadFile

from taskboard.core.exceptions import ForbiddenError, NotFoundError, StorageError, ValidationError
from taskboard.models.shared.enums import SortOrder, TaskPriority, TaskStatus
from taskboard.schemas.task.task_schema import TaskCreate, TaskFilter, TaskSort, TaskUpdate
from taskboard.services.task.task_service import TaskService
from taskboard.utils.file_handler import LocalAttachmentStore, UploadValidator
from tests.conftest import OTHER_OWNER_ID, OWNER_ID


class FailingPutStore(LocalAttachmentStore):
    """Fails on the n-th put call"""

    def __init__(self, root: str, fail_on: int):
        super().__init__(root)
        self.fail_on = fail_on
        self.calls = 0

    async def put(self, content, declared_name):
        self.calls += 1
        if self.calls == self.fail_on:
            raise StorageError("Failed to save file")
        return await super().put(content, declared_name)


class FailingDeleteStore(LocalAttachmentStore):
    async def delete(self, storage_path):
        raise StorageError("Failed to delete file")


class TrackingBytesIO(io.BytesIO):
    """Counts how many bytes were read out of the upload"""

    bytes_read = 0

    def read(self, size=-1):
        chunk = super().read(size)
        self.bytes_read += len(chunk)
        return chunk


async def _collect(download) -> bytes:
    return b"".join([chunk async for chunk in download.content])


async def test_list_tasks_only_returns_owner_tasks(task_service: TaskService):
    mine = await task_service.create_task(OWNER_ID, TaskCreate(title="Mine"))
    await task_service.create_task(OTHER_OWNER_ID, TaskCreate(title="Theirs"))

    tasks = await task_service.list_tasks(OWNER_ID)
    assert [task.id for task in tasks] == [mine.id]

    other_tasks = await task_service.list_tasks(OTHER_OWNER_ID)
    assert mine.id not in [task.id for task in other_tasks]


async def test_get_task_missing_is_not_found(task_service: TaskService):
    with pytest.raises(NotFoundError):
        await task_service.get_task(OWNER_ID, 999)


async def test_get_task_of_other_owner_is_forbidden(task_service: TaskService):
    task = await task_service.create_task(OWNER_ID, TaskCreate(title="Private"))

    with pytest.raises(ForbiddenError):
        await task_service.get_task(OTHER_OWNER_ID, task.id)


async def test_missing_task_checked_before_ownership(task_service: TaskService):
    await task_service.create_task(OWNER_ID, TaskCreate(title="Exists"))

    with pytest.raises(NotFoundError):
        await task_service.update_task(OTHER_OWNER_ID, 999, TaskUpdate(status=TaskStatus.COMPLETED))
    with pytest.raises(NotFoundError):
        await task_service.delete_task(OTHER_OWNER_ID, 999)


async def test_create_then_get_round_trip(task_service: TaskService, make_upload):
    created = await task_service.create_task(
        OWNER_ID,
        TaskCreate(
            title="Write report",
            description="Quarterly numbers",
            status=TaskStatus.IN_PROGRESS,
            priority=TaskPriority.HIGH,
            due_date=date(2026, 11, 1),
        ),
        [make_upload("notes.txt", b"some notes")],
    )

    fetched = await task_service.get_task(OWNER_ID, created.id)
    assert fetched.title == "Write report"
    assert fetched.description == "Quarterly numbers"
    assert fetched.status == TaskStatus.IN_PROGRESS
    assert fetched.priority == TaskPriority.HIGH
    assert fetched.due_date == date(2026, 11, 1)
    assert fetched.owner == OWNER_ID
    assert len(fetched.attachments) == 1

    attachment = fetched.attachments[0]
    assert attachment.original_name == "notes.txt"
    assert attachment.size == len(b"some notes")
    assert attachment.mime_type == "text/plain"
    assert attachment.stored_name != "notes.txt"


async def test_create_defaults(task_service: TaskService):
    task = await task_service.create_task(OWNER_ID, TaskCreate(title="Defaults"))
    assert task.status == TaskStatus.PENDING
    assert task.priority == TaskPriority.MEDIUM
    assert task.attachments == []


async def test_create_rejects_blank_title(task_service: TaskService):
    with pytest.raises(ValidationError):
        await task_service.create_task(OWNER_ID, TaskCreate.model_construct(title="   "))


async def test_create_with_six_files_persists_nothing(task_service: TaskService, make_upload, stored_files):
    files = [make_upload(f"file{i}.txt") for i in range(6)]

    with pytest.raises(ValidationError):
        await task_service.create_task(OWNER_ID, TaskCreate(title="Too many"), files)

    assert stored_files() == []
    assert await task_service.list_tasks(OWNER_ID) == []


async def test_create_with_five_files_is_accepted(task_service: TaskService, make_upload, stored_files):
    files = [make_upload(f"file{i}.txt") for i in range(5)]

    task = await task_service.create_task(OWNER_ID, TaskCreate(title="Five"), files)

    assert len(task.attachments) == 5
    assert len(stored_files()) == 5


async def test_create_ignores_empty_file_parts(task_service: TaskService, make_upload):
    task = await task_service.create_task(
        OWNER_ID, TaskCreate(title="Empty part"), [make_upload("", b"")]
    )
    assert task.attachments == []


async def test_create_rejects_unsupported_type_before_storing(task_service: TaskService, make_upload, stored_files):
    files = [make_upload("ok.txt"), make_upload("run.exe", b"MZ", "application/x-msdownload")]

    with pytest.raises(ValidationError):
        await task_service.create_task(OWNER_ID, TaskCreate(title="Bad file"), files)

    assert stored_files() == []


async def test_create_rejects_oversized_file_without_reading_it(session, store, stored_files):
    service = TaskService(session, store, validator=UploadValidator(max_file_size=1024))
    content = TrackingBytesIO(b"x" * (3 * 1024 * 1024))
    upload = UploadFile(file=content, filename="big.txt", headers=Headers({"content-type": "text/plain"}))

    with pytest.raises(ValidationError):
        await service.create_task(OWNER_ID, TaskCreate(title="Too big"), [upload])

    assert content.bytes_read == 0
    assert stored_files() == []


async def test_create_stores_exact_upload_bytes(task_service: TaskService, make_upload, stored_files):
    task = await task_service.create_task(
        OWNER_ID, TaskCreate(title="Sizes"), [make_upload("a.txt", b"alpha"), make_upload("b.txt", b"be")]
    )

    assert [attachment.size for attachment in task.attachments] == [5, 2]
    assert sorted(path.read_bytes() for path in stored_files()) == [b"alpha", b"be"]


async def test_zero_attachment_limit_is_honoured(session, store, make_upload):
    service = TaskService(session, store, max_attachments=0)

    with pytest.raises(ValidationError):
        await service.create_task(OWNER_ID, TaskCreate(title="No files allowed"), [make_upload("a.txt")])

    assert (await service.create_task(OWNER_ID, TaskCreate(title="Plain"))).attachments == []


async def test_create_rolls_back_staged_files_on_storage_failure(session, upload_dir, make_upload, stored_files):
    service = TaskService(session, FailingPutStore(str(upload_dir), fail_on=2))
    files = [make_upload("a.txt"), make_upload("b.txt"), make_upload("c.txt")]

    with pytest.raises(StorageError):
        await service.create_task(OWNER_ID, TaskCreate(title="Half stored"), files)

    assert stored_files() == []
    assert await service.list_tasks(OWNER_ID) == []


async def test_create_removes_staged_files_when_insert_fails(task_service: TaskService, make_upload, stored_files, monkeypatch):
    async def failing_insert(task):
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(task_service.repository, "insert", failing_insert)

    with pytest.raises(SQLAlchemyError):
        await task_service.create_task(OWNER_ID, TaskCreate(title="No row"), [make_upload("a.txt")])

    assert stored_files() == []


async def test_update_status_leaves_other_fields(task_service: TaskService):
    created = await task_service.create_task(
        OWNER_ID,
        TaskCreate(title="Keep me", description="Same", priority=TaskPriority.LOW, due_date=date(2026, 12, 24)),
    )

    updated = await task_service.update_task(OWNER_ID, created.id, TaskUpdate(status=TaskStatus.COMPLETED))

    assert updated.status == TaskStatus.COMPLETED
    assert updated.title == "Keep me"
    assert updated.description == "Same"
    assert updated.priority == TaskPriority.LOW
    assert updated.due_date == date(2026, 12, 24)


async def test_update_allows_any_status_transition(task_service: TaskService):
    task = await task_service.create_task(OWNER_ID, TaskCreate(title="Cycle", status=TaskStatus.COMPLETED))

    for status in (TaskStatus.PENDING, TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS, TaskStatus.PENDING):
        task = await task_service.update_task(OWNER_ID, task.id, TaskUpdate(status=status))
        assert task.status == status


async def test_update_ignores_non_whitelisted_fields(task_service: TaskService):
    task = await task_service.create_task(OWNER_ID, TaskCreate(title="Original"))

    payload = TaskUpdate.model_validate({"title": "Renamed", "owner": OTHER_OWNER_ID, "attachments": [{"id": 1}]})
    updated = await task_service.update_task(OWNER_ID, task.id, payload)

    assert updated.title == "Renamed"
    assert updated.owner == OWNER_ID
    assert updated.attachments == []


async def test_update_by_other_owner_is_forbidden(task_service: TaskService):
    task = await task_service.create_task(OWNER_ID, TaskCreate(title="Mine"))

    with pytest.raises(ForbiddenError):
        await task_service.update_task(OTHER_OWNER_ID, task.id, TaskUpdate(title="Stolen"))

    assert (await task_service.get_task(OWNER_ID, task.id)).title == "Mine"


async def test_search_matches_title_or_description(task_service: TaskService):
    by_title = await task_service.create_task(OWNER_ID, TaskCreate(title="Foobar"))
    by_description = await task_service.create_task(
        OWNER_ID, TaskCreate(title="Groceries", description="buy FOO and bar")
    )
    await task_service.create_task(OWNER_ID, TaskCreate(title="Unrelated", description="nothing here"))

    tasks = await task_service.list_tasks(OWNER_ID, TaskFilter(search="foo"))

    assert {task.id for task in tasks} == {by_title.id, by_description.id}


async def test_filter_by_status_and_priority(task_service: TaskService):
    match = await task_service.create_task(
        OWNER_ID, TaskCreate(title="Match", status=TaskStatus.COMPLETED, priority=TaskPriority.HIGH)
    )
    await task_service.create_task(OWNER_ID, TaskCreate(title="Wrong status", priority=TaskPriority.HIGH))
    await task_service.create_task(OWNER_ID, TaskCreate(title="Wrong priority", status=TaskStatus.COMPLETED))

    tasks = await task_service.list_tasks(
        OWNER_ID, TaskFilter(status=TaskStatus.COMPLETED, priority=TaskPriority.HIGH)
    )

    assert [task.id for task in tasks] == [match.id]


async def test_default_sort_is_newest_first(task_service: TaskService):
    first = await task_service.create_task(OWNER_ID, TaskCreate(title="First"))
    second = await task_service.create_task(OWNER_ID, TaskCreate(title="Second"))

    tasks = await task_service.list_tasks(OWNER_ID)

    assert [task.id for task in tasks] == [second.id, first.id]


async def test_sort_by_priority_uses_rank(task_service: TaskService):
    for priority in (TaskPriority.HIGH, TaskPriority.LOW, TaskPriority.MEDIUM):
        await task_service.create_task(OWNER_ID, TaskCreate(title=priority.value, priority=priority))

    tasks = await task_service.list_tasks(OWNER_ID, sort=TaskSort(sort_by="priority", order=SortOrder.ASC))

    assert [task.priority for task in tasks] == [TaskPriority.LOW, TaskPriority.MEDIUM, TaskPriority.HIGH]


async def test_unknown_sort_field_falls_back_to_created_at(task_service: TaskService):
    first = await task_service.create_task(OWNER_ID, TaskCreate(title="B"))
    second = await task_service.create_task(OWNER_ID, TaskCreate(title="A"))

    tasks = await task_service.list_tasks(OWNER_ID, sort=TaskSort(sort_by="password", order=SortOrder.DESC))

    assert [task.id for task in tasks] == [second.id, first.id]


async def test_delete_task_with_missing_file_still_succeeds(task_service: TaskService, store, make_upload, stored_files):
    task = await task_service.create_task(
        OWNER_ID, TaskCreate(title="Two files"), [make_upload("a.txt"), make_upload("b.txt")]
    )
    await store.delete(task.attachments[0].storage_path)
    assert len(stored_files()) == 1

    await task_service.delete_task(OWNER_ID, task.id)

    assert stored_files() == []
    with pytest.raises(NotFoundError):
        await task_service.get_task(OWNER_ID, task.id)


async def test_delete_task_survives_storage_failure(session, upload_dir, make_upload):
    service = TaskService(session, FailingDeleteStore(str(upload_dir)))
    task = await service.create_task(OWNER_ID, TaskCreate(title="Stuck file"), [make_upload("a.txt")])

    await service.delete_task(OWNER_ID, task.id)

    with pytest.raises(NotFoundError):
        await service.get_task(OWNER_ID, task.id)


async def test_delete_task_by_other_owner_is_forbidden(task_service: TaskService, make_upload, stored_files):
    task = await task_service.create_task(OWNER_ID, TaskCreate(title="Keep"), [make_upload("a.txt")])

    with pytest.raises(ForbiddenError):
        await task_service.delete_task(OTHER_OWNER_ID, task.id)

    assert len(stored_files()) == 1
    assert (await task_service.get_task(OWNER_ID, task.id)).id == task.id


async def test_download_attachment_streams_content(task_service: TaskService, make_upload):
    task = await task_service.create_task(
        OWNER_ID, TaskCreate(title="Download"), [make_upload("report.pdf", b"%PDF-1.7 body", "application/pdf")]
    )
    attachment = task.attachments[0]

    download = await task_service.download_attachment(OWNER_ID, task.id, attachment.id)

    assert download.original_name == "report.pdf"
    assert download.mime_type == "application/pdf"
    assert await _collect(download) == b"%PDF-1.7 body"


async def test_download_unknown_attachment_is_not_found(task_service: TaskService):
    task = await task_service.create_task(OWNER_ID, TaskCreate(title="No files"))

    with pytest.raises(NotFoundError) as exc_info:
        await task_service.download_attachment(OWNER_ID, task.id, 12345)

    assert exc_info.value.detail == "Attachment not found"


async def test_download_with_missing_file_is_not_found(task_service: TaskService, store, make_upload):
    task = await task_service.create_task(OWNER_ID, TaskCreate(title="Lost file"), [make_upload("a.txt")])
    attachment = task.attachments[0]
    await store.delete(attachment.storage_path)

    with pytest.raises(NotFoundError) as exc_info:
        await task_service.download_attachment(OWNER_ID, task.id, attachment.id)

    assert exc_info.value.detail == "File not found on server"


async def test_download_by_other_owner_is_forbidden(task_service: TaskService, make_upload):
    task = await task_service.create_task(OWNER_ID, TaskCreate(title="Private"), [make_upload("a.txt")])

    with pytest.raises(ForbiddenError):
        await task_service.download_attachment(OTHER_OWNER_ID, task.id, task.attachments[0].id)


async def test_delete_attachment_removes_only_target(task_service: TaskService, make_upload, stored_files):
    task = await task_service.create_task(
        OWNER_ID,
        TaskCreate(title="Three files"),
        [make_upload("a.txt", b"a"), make_upload("b.txt", b"b"), make_upload("c.txt", b"c")],
    )
    first, target, last = task.attachments

    updated = await task_service.delete_attachment(OWNER_ID, task.id, target.id)

    assert [attachment.id for attachment in updated.attachments] == [first.id, last.id]
    assert updated.attachments[0] == first
    assert updated.attachments[1] == last
    assert len(stored_files()) == 2


async def test_delete_attachment_with_missing_file(task_service: TaskService, store, make_upload):
    task = await task_service.create_task(OWNER_ID, TaskCreate(title="Gone"), [make_upload("a.txt")])
    attachment = task.attachments[0]
    await store.delete(attachment.storage_path)

    updated = await task_service.delete_attachment(OWNER_ID, task.id, attachment.id)

    assert updated.attachments == []


async def test_delete_unknown_attachment_is_not_found(task_service: TaskService):
    task = await task_service.create_task(OWNER_ID, TaskCreate(title="Empty"))

    with pytest.raises(NotFoundError):
        await task_service.delete_attachment(OWNER_ID, task.id, 42)


async def test_delete_attachment_by_other_owner_is_forbidden(task_service: TaskService, make_upload, stored_files):
    task = await task_service.create_task(OWNER_ID, TaskCreate(title="Private"), [make_upload("a.txt")])
    attachment = task.attachments[0]

    with pytest.raises(ForbiddenError):
        await task_service.delete_attachment(OTHER_OWNER_ID, task.id, attachment.id)

    assert len(stored_files()) == 1
    assert (await task_service.get_task(OWNER_ID, task.id)).attachments == [attachment]


async def test_ownership_checked_before_attachment_lookup(task_service: TaskService):
    task = await task_service.create_task(OWNER_ID, TaskCreate(title="Private"))

    with pytest.raises(ForbiddenError):
        await task_service.delete_attachment(OTHER_OWNER_ID, task.id, 42)
    with pytest.raises(ForbiddenError):
        await task_service.download_attachment(OTHER_OWNER_ID, task.id, 42)

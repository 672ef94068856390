from taskboard.models.task.task import Task
from taskboard.models.task.task_attachment import TaskAttachment

__all__ = ["Task", "TaskAttachment"]

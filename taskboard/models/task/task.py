from typing import Optional
from sqlalchemy import Column, String, Text, Date, Enum as SQLEnum
from sqlalchemy.orm import relationship
from taskboard.db.base import BaseModel
from taskboard.models.shared.enums import TaskStatus, TaskPriority


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Task(BaseModel):
    __tablename__ = 'tasks'

    owner = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text)

    # Status and priority
    status = Column(
        SQLEnum(TaskStatus, name="task_status", native_enum=False, values_callable=_enum_values),
        default=TaskStatus.PENDING,
        nullable=False,
    )
    priority = Column(
        SQLEnum(TaskPriority, name="task_priority", native_enum=False, values_callable=_enum_values),
        default=TaskPriority.MEDIUM,
        nullable=False,
    )

    due_date = Column(Date)

    # Relationships
    attachments = relationship(
        "TaskAttachment",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskAttachment.id",
    )

    def is_owned_by(self, owner_id: str) -> bool:
        return self.owner == owner_id

    def get_attachment(self, attachment_id: int) -> Optional["TaskAttachment"]:
        for attachment in self.attachments:
            if attachment.id == attachment_id:
                return attachment
        return None

    def __repr__(self) -> str:
        return f"<Task id={self.id} owner={self.owner!r} title={self.title!r}>"

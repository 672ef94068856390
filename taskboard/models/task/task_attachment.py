from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from taskboard.db.base import Base, utcnow

class TaskAttachment(Base):
    __tablename__ = 'task_attachments'

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey('tasks.id', ondelete="CASCADE"), nullable=False, index=True)
    stored_name = Column(String(255), nullable=False, unique=True)
    original_name = Column(String(255), nullable=False)
    storage_path = Column(String(500), nullable=False)
    size = Column(Integer, nullable=False)  # Size in bytes
    mime_type = Column(String(100))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    task = relationship("Task", back_populates="attachments")

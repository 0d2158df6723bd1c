"""
Task model - personal tasks, optionally linked to one or more dispatches
"""
import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from datetime import datetime
from dispatch_api.database import Base


class TaskStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class TaskPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=TaskStatus.OPEN.value, index=True)
    priority = Column(String, nullable=False, default=TaskPriority.MEDIUM.value)

    # Calendar key YYYY-MM-DD, no time component
    due_date = Column(String(10), nullable=True)
    project_id = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE.value

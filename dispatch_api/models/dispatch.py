"""
Dispatch models - one dispatch per user per calendar day, with linked tasks
"""
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, Boolean, UniqueConstraint,
)
from datetime import datetime
from dispatch_api.database import Base


class Dispatch(Base):
    __tablename__ = "dispatches"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_dispatch_user_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Calendar key YYYY-MM-DD
    date = Column(String(10), nullable=False)
    summary = Column(Text, nullable=True)
    finalized = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class DispatchTask(Base):
    """Link row; the composite key makes a (dispatch, task) pair unique."""
    __tablename__ = "dispatch_tasks"

    dispatch_id = Column(
        Integer, ForeignKey("dispatches.id", ondelete="CASCADE"), primary_key=True
    )
    task_id = Column(
        Integer, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True
    )

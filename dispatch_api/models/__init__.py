from dispatch_api.models.user import User
from dispatch_api.models.task import Task, TaskStatus, TaskPriority
from dispatch_api.models.note import Note
from dispatch_api.models.dispatch import Dispatch, DispatchTask

__all__ = [
    "User",
    "Task",
    "TaskStatus",
    "TaskPriority",
    "Note",
    "Dispatch",
    "DispatchTask",
]

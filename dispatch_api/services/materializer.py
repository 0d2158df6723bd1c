"""
Task materializer - turns the user's template note into tasks for a new dispatch
"""
import re
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch_api.config import get_settings
from dispatch_api.models.dispatch import Dispatch, DispatchTask
from dispatch_api.models.note import Note
from dispatch_api.models.task import Task, TaskPriority, TaskStatus
from dispatch_api.services.template_parser import TemplateRule, parse_template
from dispatch_api.utils.dates import parse_date_key, render_date_pattern
from dispatch_api.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)

DATE_PLACEHOLDER_RE = re.compile(r"\{\{date:([^}]+)\}\}")


@dataclass(frozen=True)
class TaskRequest:
    title: str
    due_date: Optional[str] = None


def render_title(title_template: str, target: date) -> str:
    """Fill {{date:PATTERN}} placeholders with the target date"""
    return DATE_PLACEHOLDER_RE.sub(
        lambda m: render_date_pattern(m.group(1), target), title_template
    ).strip()


def plan_tasks(rules: Sequence[TemplateRule], date_key: str) -> List[TaskRequest]:
    """Task requests for every rule whose condition holds on date_key"""
    target = parse_date_key(date_key)
    requests = []
    for rule in rules:
        if not rule.condition.matches(target):
            continue
        title = render_title(rule.title_template, target)
        if not title:
            continue
        if rule.has_due_date_marker:
            due_date = date_key
        else:
            due_date = rule.fixed_due_date
        requests.append(TaskRequest(title=title, due_date=due_date))
    return requests


async def load_template(db: AsyncSession, user_id: int) -> Optional[str]:
    """Content of the user's template note, or None when there is none"""
    result = await db.execute(
        select(Note.content)
        .where(
            Note.user_id == user_id,
            Note.title == settings.TEMPLATE_NOTE_TITLE,
            Note.deleted_at.is_(None),
        )
        .order_by(Note.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def materialize_template_tasks(db: AsyncSession, dispatch: Dispatch) -> List[Task]:
    """
    Create and link the template tasks for a freshly created dispatch.

    Adds rows to the session without committing; the caller commits them
    together with the dispatch.
    """
    content = await load_template(db, dispatch.user_id)
    if not content:
        return []

    requests = plan_tasks(parse_template(content), dispatch.date)
    if not requests:
        return []

    created = []
    for request in requests:
        task = Task(
            user_id=dispatch.user_id,
            title=request.title,
            due_date=request.due_date,
            status=TaskStatus.OPEN.value,
            priority=TaskPriority.MEDIUM.value,
        )
        db.add(task)
        await db.flush()
        db.add(DispatchTask(dispatch_id=dispatch.id, task_id=task.id))
        created.append(task)

    await db.flush()
    logger.info(
        f"Materialized {len(created)} template task(s) for dispatch {dispatch.id} ({dispatch.date})"
    )
    return created

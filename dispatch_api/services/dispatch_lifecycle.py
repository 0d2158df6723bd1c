"""
Dispatch lifecycle - creation, summary edits and finalize/unfinalize.

A dispatch is Open (finalized=False) or Finalized. It is created lazily the
first time its date is accessed, and that first creation is the only time
the template is materialized. Completing an Open dispatch finalizes it and
rolls its unfinished tasks into the next day.
"""
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch_api.config import get_settings
from dispatch_api.models.dispatch import Dispatch, DispatchTask
from dispatch_api.models.task import Task
from dispatch_api.services.errors import (
    AlreadyFinalizedError,
    ConflictError,
    DispatchFinalizedError,
    NotFinalizedError,
    NotFoundError,
    ValidationError,
)
from dispatch_api.services.events import DispatchSummaryUpdated, event_bus
from dispatch_api.services.materializer import materialize_template_tasks
from dispatch_api.services.rollover import roll_over_tasks
from dispatch_api.utils.dates import MAX_DATE_KEY, add_days, month_bounds
from dispatch_api.utils.logger import get_logger
from dispatch_api.utils.validators import (
    validate_calendar_month,
    validate_date_key,
    validate_summary,
)

settings = get_settings()
logger = get_logger(__name__)


@dataclass
class DispatchAccess:
    dispatch: Dispatch
    created: bool
    template_task_count: int = 0


@dataclass
class CompletionResult:
    dispatch: Dispatch
    rolled_over: int
    next_dispatch_id: Optional[int]


@dataclass
class UnfinalizeResult:
    dispatch: Dispatch
    has_next_dispatch: bool
    next_dispatch_date: Optional[str]


@dataclass
class DispatchPage:
    items: List[Dispatch]
    page: int
    limit: int
    total: int
    total_pages: int


def _check_date_key(date_key: str) -> str:
    try:
        return validate_date_key(date_key)
    except ValueError as e:
        raise ValidationError(str(e))


def _next_date_key(date_key: str) -> str:
    try:
        return add_days(date_key, 1)
    except ValueError as e:
        raise ValidationError(str(e))


def _check_summary(summary: Optional[str]) -> Optional[str]:
    try:
        return validate_summary(summary)
    except ValueError as e:
        raise ValidationError(str(e))


# --- Lookups ---

async def find_dispatch_for_date(
    db: AsyncSession, user_id: int, date_key: str
) -> Optional[Dispatch]:
    result = await db.execute(
        select(Dispatch).where(Dispatch.user_id == user_id, Dispatch.date == date_key)
    )
    return result.scalar_one_or_none()


async def get_dispatch(db: AsyncSession, user_id: int, dispatch_id: int) -> Dispatch:
    result = await db.execute(
        select(Dispatch).where(Dispatch.id == dispatch_id, Dispatch.user_id == user_id)
    )
    dispatch = result.scalar_one_or_none()
    if not dispatch:
        raise NotFoundError("Dispatch not found")
    return dispatch


async def list_dispatches(
    db: AsyncSession, user_id: int, date_key: Optional[str] = None
) -> List[Dispatch]:
    query = select(Dispatch).where(Dispatch.user_id == user_id).order_by(Dispatch.date)
    if date_key:
        query = query.where(Dispatch.date == _check_date_key(date_key))
    result = await db.execute(query)
    return list(result.scalars().all())


async def list_dispatches_page(
    db: AsyncSession,
    user_id: int,
    date_key: Optional[str] = None,
    page: Optional[int] = None,
    limit: Optional[int] = None,
) -> DispatchPage:
    """
    One page of the user's dispatches, ordered by date, with the total count.

    page is clamped to >= 1 and limit to 1..PAGE_LIMIT_MAX; a missing limit
    falls back to PAGE_LIMIT_DEFAULT.
    """
    page = max(1, page or 1)
    limit = min(settings.PAGE_LIMIT_MAX, max(1, limit or settings.PAGE_LIMIT_DEFAULT))

    conditions = [Dispatch.user_id == user_id]
    if date_key:
        conditions.append(Dispatch.date == _check_date_key(date_key))

    total = (await db.execute(
        select(func.count()).select_from(Dispatch).where(*conditions)
    )).scalar_one()
    result = await db.execute(
        select(Dispatch)
        .where(*conditions)
        .order_by(Dispatch.date)
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return DispatchPage(
        items=list(result.scalars().all()),
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit),
    )


async def list_linked_tasks(db: AsyncSession, dispatch_id: int) -> List[Task]:
    result = await db.execute(
        select(Task)
        .join(DispatchTask, DispatchTask.task_id == Task.id)
        .where(DispatchTask.dispatch_id == dispatch_id)
        .order_by(Task.id)
    )
    return list(result.scalars().all())


async def list_dispatch_tasks(db: AsyncSession, user_id: int, dispatch_id: int) -> List[Task]:
    dispatch = await get_dispatch(db, user_id, dispatch_id)
    return await list_linked_tasks(db, dispatch.id)


# --- Creation ---

async def get_or_create_dispatch(db: AsyncSession, user_id: int, date_key: str) -> DispatchAccess:
    """
    Return the user's dispatch for date_key, creating it if it does not exist.

    A new dispatch is committed together with its template tasks, so no
    caller ever sees it without them. Concurrent creators race on the
    (user_id, date) unique constraint; the loser rolls back and returns the
    winner's row.
    """
    _check_date_key(date_key)

    existing = await find_dispatch_for_date(db, user_id, date_key)
    if existing:
        return DispatchAccess(dispatch=existing, created=False)

    dispatch = Dispatch(user_id=user_id, date=date_key, finalized=False)
    db.add(dispatch)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        winner = await find_dispatch_for_date(db, user_id, date_key)
        if winner is None:
            raise
        logger.info(f"Lost creation race for dispatch {date_key} (user {user_id}); using {winner.id}")
        return DispatchAccess(dispatch=winner, created=False)

    tasks = await materialize_template_tasks(db, dispatch)
    await db.commit()
    logger.info(f"Created dispatch {dispatch.id} for {date_key} (user {user_id})")
    return DispatchAccess(dispatch=dispatch, created=True, template_task_count=len(tasks))


async def create_dispatch(
    db: AsyncSession, user_id: int, date_key: str, summary: Optional[str] = None
) -> Dispatch:
    """Explicit creation; refuses a date that already has a dispatch"""
    _check_date_key(date_key)
    _check_summary(summary)

    if await find_dispatch_for_date(db, user_id, date_key):
        raise ConflictError("A dispatch already exists for this date")

    access = await get_or_create_dispatch(db, user_id, date_key)
    if not access.created:
        raise ConflictError("A dispatch already exists for this date")

    dispatch = access.dispatch
    if summary is not None:
        dispatch = await _store_summary(db, dispatch, summary)
    return dispatch


# --- Edits ---

async def _store_summary(db: AsyncSession, dispatch: Dispatch, summary: Optional[str]) -> Dispatch:
    dispatch.summary = summary
    dispatch.updated_at = datetime.utcnow()
    await db.commit()

    await event_bus.publish(db, DispatchSummaryUpdated(
        user_id=dispatch.user_id,
        dispatch_id=dispatch.id,
        date=dispatch.date,
        summary=summary,
    ))
    # A failed subscriber may have rolled the session back
    await db.refresh(dispatch)
    return dispatch


async def update_summary(
    db: AsyncSession, user_id: int, dispatch_id: int, summary: Optional[str]
) -> Dispatch:
    """Set the summary of an Open dispatch and notify subscribers"""
    dispatch = await get_dispatch(db, user_id, dispatch_id)
    if dispatch.finalized:
        raise DispatchFinalizedError("Cannot edit a finalized dispatch")
    _check_summary(summary)
    return await _store_summary(db, dispatch, summary)


async def delete_dispatch(db: AsyncSession, user_id: int, dispatch_id: int) -> None:
    """Delete a dispatch and its links; the tasks themselves are kept"""
    dispatch = await get_dispatch(db, user_id, dispatch_id)
    await db.execute(delete(DispatchTask).where(DispatchTask.dispatch_id == dispatch.id))
    await db.delete(dispatch)
    await db.commit()
    logger.info(f"Deleted dispatch {dispatch_id} (user {user_id})")


async def link_task(db: AsyncSession, user_id: int, dispatch_id: int, task_id: int) -> None:
    dispatch = await get_dispatch(db, user_id, dispatch_id)
    if dispatch.finalized:
        raise DispatchFinalizedError()

    result = await db.execute(
        select(Task.id).where(Task.id == task_id, Task.user_id == user_id)
    )
    if result.scalar_one_or_none() is None:
        raise NotFoundError("Task not found")

    result = await db.execute(
        select(DispatchTask).where(
            DispatchTask.dispatch_id == dispatch.id,
            DispatchTask.task_id == task_id,
        )
    )
    if result.scalar_one_or_none():
        raise ConflictError("Task is already linked to this dispatch")

    db.add(DispatchTask(dispatch_id=dispatch.id, task_id=task_id))
    await db.commit()


async def unlink_task(db: AsyncSession, user_id: int, dispatch_id: int, task_id: int) -> None:
    dispatch = await get_dispatch(db, user_id, dispatch_id)
    if dispatch.finalized:
        raise DispatchFinalizedError()

    result = await db.execute(
        select(DispatchTask).where(
            DispatchTask.dispatch_id == dispatch.id,
            DispatchTask.task_id == task_id,
        )
    )
    link = result.scalar_one_or_none()
    if not link:
        raise NotFoundError("Task is not linked to this dispatch")

    await db.delete(link)
    await db.commit()


# --- Transitions ---

async def complete_dispatch(db: AsyncSession, user_id: int, dispatch_id: int) -> CompletionResult:
    """
    Finalize an Open dispatch.

    Linked tasks that are not done are linked to the next day's dispatch,
    which is created (with its template tasks) if needed.
    """
    dispatch = await get_dispatch(db, user_id, dispatch_id)
    if dispatch.finalized:
        raise AlreadyFinalizedError()

    source_id = dispatch.id
    source_date = dispatch.date
    linked = await list_linked_tasks(db, source_id)
    unfinished_ids = [t.id for t in linked if not t.is_done]

    next_dispatch_id = None
    if unfinished_ids:
        rollover = await roll_over_tasks(db, user_id, unfinished_ids, _next_date_key(source_date))
        next_dispatch_id = rollover.dispatch.id

    # Rollover may have committed or rolled back the session; reload the source row
    dispatch = await get_dispatch(db, user_id, source_id)
    dispatch.finalized = True
    dispatch.updated_at = datetime.utcnow()
    await db.commit()
    await db.refresh(dispatch)

    logger.info(
        f"Completed dispatch {source_id} ({source_date}); rolled over {len(unfinished_ids)} task(s)"
    )
    return CompletionResult(
        dispatch=dispatch,
        rolled_over=len(unfinished_ids),
        next_dispatch_id=next_dispatch_id,
    )


async def unfinalize_dispatch(db: AsyncSession, user_id: int, dispatch_id: int) -> UnfinalizeResult:
    """
    Reopen a Finalized dispatch.

    Reports whether the next day already has a dispatch (tasks may have been
    rolled there); this never blocks the transition.
    """
    dispatch = await get_dispatch(db, user_id, dispatch_id)
    if not dispatch.finalized:
        raise NotFinalizedError()

    next_dispatch = None
    if dispatch.date < MAX_DATE_KEY:
        next_dispatch = await find_dispatch_for_date(db, user_id, _next_date_key(dispatch.date))

    dispatch.finalized = False
    dispatch.updated_at = datetime.utcnow()
    await db.commit()
    await db.refresh(dispatch)

    return UnfinalizeResult(
        dispatch=dispatch,
        has_next_dispatch=next_dispatch is not None,
        next_dispatch_date=next_dispatch.date if next_dispatch else None,
    )


# --- Calendar ---

async def calendar_month(db: AsyncSession, user_id: int, year: int, month: int) -> Dict[str, dict]:
    """Per-date finalized flag and linked task count for one month"""
    try:
        validate_calendar_month(year, month)
    except ValueError as e:
        raise ValidationError(str(e))

    start, end = month_bounds(year, month)
    task_count = func.count(DispatchTask.task_id).label("task_count")
    result = await db.execute(
        select(Dispatch.date, Dispatch.finalized, task_count)
        .outerjoin(DispatchTask, DispatchTask.dispatch_id == Dispatch.id)
        .where(
            Dispatch.user_id == user_id,
            Dispatch.date >= start,
            Dispatch.date <= end,
        )
        .group_by(Dispatch.id, Dispatch.date, Dispatch.finalized)
        .order_by(Dispatch.date)
    )
    return {
        row.date: {"finalized": bool(row.finalized), "task_count": int(row.task_count)}
        for row in result.all()
    }

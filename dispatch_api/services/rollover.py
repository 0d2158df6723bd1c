"""
Rollover - carries unfinished tasks of a completed dispatch into another day
"""
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch_api.models.dispatch import Dispatch, DispatchTask
from dispatch_api.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RolloverResult:
    dispatch: Dispatch
    linked: int
    already_linked: int


async def link_tasks(db: AsyncSession, dispatch_id: int, task_ids: Iterable[int]) -> int:
    """
    Link tasks to a dispatch, skipping pairs that already exist.

    Works on the set of ids, so repeats and ordering do not matter. Returns
    the number of new links; nothing is committed here.
    """
    wanted = set(task_ids)
    if not wanted:
        return 0

    result = await db.execute(
        select(DispatchTask.task_id).where(
            DispatchTask.dispatch_id == dispatch_id,
            DispatchTask.task_id.in_(wanted),
        )
    )
    existing = set(result.scalars().all())

    missing = sorted(wanted - existing)
    for task_id in missing:
        db.add(DispatchTask(dispatch_id=dispatch_id, task_id=task_id))
    if missing:
        await db.flush()
    return len(missing)


async def roll_over_tasks(
    db: AsyncSession,
    user_id: int,
    task_ids: Iterable[int],
    target_date: str,
) -> RolloverResult:
    """
    Link tasks to the user's dispatch for target_date, creating it first when
    needed (which applies the template for that day). Task status and the
    links to the source dispatch are left untouched.
    """
    from dispatch_api.services.dispatch_lifecycle import get_or_create_dispatch

    task_ids = set(task_ids)
    access = await get_or_create_dispatch(db, user_id, target_date)
    target = access.dispatch

    linked = await link_tasks(db, target.id, task_ids)
    logger.info(
        f"Rolled {len(task_ids)} task(s) to dispatch {target.id} ({target_date}); "
        f"{linked} new link(s)"
    )
    return RolloverResult(
        dispatch=target,
        linked=linked,
        already_linked=len(task_ids) - linked,
    )

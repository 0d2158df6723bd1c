"""
Dispatch API endpoints - daily dispatches, their linked tasks and day completion
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, List, Optional, Union
from datetime import datetime
from pydantic import BaseModel

from dispatch_api.database import get_db
from dispatch_api.models.user import User
from dispatch_api.api.auth import get_current_user
from dispatch_api.services import dispatch_lifecycle as lifecycle
from dispatch_api.services.errors import DispatchError, DispatchFinalizedError

router = APIRouter()


# --- Pydantic Schemas ---

class DispatchResponse(BaseModel):
    id: int
    user_id: int
    date: str
    summary: Optional[str]
    finalized: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class TaskResponse(BaseModel):
    id: int
    user_id: int
    title: str
    description: Optional[str]
    status: str
    priority: str
    due_date: Optional[str]
    project_id: Optional[int]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class DispatchPageResponse(BaseModel):
    data: List[DispatchResponse]
    pagination: PaginationMeta


class DispatchDayResponse(BaseModel):
    dispatch: DispatchResponse
    created: bool
    template_task_count: int


class CompleteResponse(BaseModel):
    dispatch: DispatchResponse
    rolled_over: int
    next_dispatch_id: Optional[int]


class UnfinalizeResponse(BaseModel):
    dispatch: DispatchResponse
    has_next_dispatch: bool
    next_dispatch_date: Optional[str]


class CalendarDay(BaseModel):
    finalized: bool
    task_count: int


class CalendarResponse(BaseModel):
    dates: Dict[str, CalendarDay]


class DispatchCreate(BaseModel):
    date: str
    summary: Optional[str] = None


class DispatchUpdate(BaseModel):
    summary: Optional[str] = None


class TaskLinkRequest(BaseModel):
    task_id: int


def _http_error(exc: DispatchError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail)


# --- Endpoints ---

@router.get("/", response_model=Union[DispatchPageResponse, List[DispatchResponse]])
async def list_dispatches(
    date: Optional[str] = None,
    page: Optional[int] = None,
    limit: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List the user's dispatches, optionally for a single date.

    Passing page or limit switches to a paginated response with a total count.
    """
    try:
        if page is None and limit is None:
            return await lifecycle.list_dispatches(db, current_user.id, date)
        result = await lifecycle.list_dispatches_page(db, current_user.id, date, page, limit)
    except DispatchError as exc:
        raise _http_error(exc)
    return DispatchPageResponse(
        data=[DispatchResponse.model_validate(d) for d in result.items],
        pagination=PaginationMeta(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )


@router.post("/", response_model=DispatchResponse, status_code=201)
async def create_dispatch(
    data: DispatchCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create the dispatch for a date (409 if it already exists)"""
    user_id = current_user.id
    try:
        return await lifecycle.create_dispatch(db, user_id, data.date, data.summary)
    except DispatchError as exc:
        raise _http_error(exc)


@router.get("/calendar", response_model=CalendarResponse)
async def get_calendar(
    year: int,
    month: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Per-day dispatch state for a month view"""
    try:
        dates = await lifecycle.calendar_month(db, current_user.id, year, month)
    except DispatchError as exc:
        raise _http_error(exc)
    return CalendarResponse(dates=dates)


@router.get("/by-date/{date_key}", response_model=DispatchDayResponse)
async def get_dispatch_for_date(
    date_key: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Open the dispatch for a date, creating it from the template on first access"""
    user_id = current_user.id
    try:
        access = await lifecycle.get_or_create_dispatch(db, user_id, date_key)
    except DispatchError as exc:
        raise _http_error(exc)
    return DispatchDayResponse(
        dispatch=DispatchResponse.model_validate(access.dispatch),
        created=access.created,
        template_task_count=access.template_task_count,
    )


@router.get("/{dispatch_id}", response_model=DispatchResponse)
async def get_dispatch(
    dispatch_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get a single dispatch"""
    try:
        return await lifecycle.get_dispatch(db, current_user.id, dispatch_id)
    except DispatchError as exc:
        raise _http_error(exc)


@router.put("/{dispatch_id}", response_model=DispatchResponse)
async def update_dispatch(
    dispatch_id: int,
    data: DispatchUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Update the summary of an open dispatch"""
    user_id = current_user.id
    try:
        if "summary" not in data.model_fields_set:
            dispatch = await lifecycle.get_dispatch(db, user_id, dispatch_id)
            if dispatch.finalized:
                raise DispatchFinalizedError("Cannot edit a finalized dispatch")
            return dispatch
        return await lifecycle.update_summary(db, user_id, dispatch_id, data.summary)
    except DispatchError as exc:
        raise _http_error(exc)


@router.delete("/{dispatch_id}")
async def delete_dispatch(
    dispatch_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Delete a dispatch; linked tasks are kept"""
    try:
        await lifecycle.delete_dispatch(db, current_user.id, dispatch_id)
    except DispatchError as exc:
        raise _http_error(exc)
    return {"deleted": True}


@router.get("/{dispatch_id}/tasks", response_model=List[TaskResponse])
async def list_dispatch_tasks(
    dispatch_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List tasks linked to a dispatch"""
    try:
        return await lifecycle.list_dispatch_tasks(db, current_user.id, dispatch_id)
    except DispatchError as exc:
        raise _http_error(exc)


@router.post("/{dispatch_id}/tasks", status_code=201)
async def link_task(
    dispatch_id: int,
    data: TaskLinkRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Link one of the user's tasks to a dispatch"""
    try:
        await lifecycle.link_task(db, current_user.id, dispatch_id, data.task_id)
    except DispatchError as exc:
        raise _http_error(exc)
    return {"linked": True}


@router.delete("/{dispatch_id}/tasks/{task_id}")
async def unlink_task(
    dispatch_id: int,
    task_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Remove a task's link to a dispatch; the task itself is kept"""
    try:
        await lifecycle.unlink_task(db, current_user.id, dispatch_id, task_id)
    except DispatchError as exc:
        raise _http_error(exc)
    return {"unlinked": True}


@router.post("/{dispatch_id}/complete", response_model=CompleteResponse)
async def complete_dispatch(
    dispatch_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Finalize the day and roll unfinished tasks to tomorrow's dispatch"""
    user_id = current_user.id
    try:
        result = await lifecycle.complete_dispatch(db, user_id, dispatch_id)
    except DispatchError as exc:
        raise _http_error(exc)
    return CompleteResponse(
        dispatch=DispatchResponse.model_validate(result.dispatch),
        rolled_over=result.rolled_over,
        next_dispatch_id=result.next_dispatch_id,
    )


@router.post("/{dispatch_id}/unfinalize", response_model=UnfinalizeResponse)
async def unfinalize_dispatch(
    dispatch_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Reopen a finalized dispatch for editing"""
    try:
        result = await lifecycle.unfinalize_dispatch(db, current_user.id, dispatch_id)
    except DispatchError as exc:
        raise _http_error(exc)
    return UnfinalizeResponse(
        dispatch=DispatchResponse.model_validate(result.dispatch),
        has_next_dispatch=result.has_next_dispatch,
        next_dispatch_date=result.next_dispatch_date,
    )

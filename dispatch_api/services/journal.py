"""
Journal notes - mirrors each dispatch summary into a 'Daily Dispatch - <date>' note
"""
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch_api.config import get_settings
from dispatch_api.models.note import Note
from dispatch_api.services.events import DispatchSummaryUpdated, EventBus
from dispatch_api.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)


def journal_title(date_key: str) -> str:
    return f"{settings.JOURNAL_TITLE_PREFIX} - {date_key}"


async def upsert_journal_note(db: AsyncSession, event: DispatchSummaryUpdated) -> Note:
    """Create or update the journal note for the event's user and date"""
    title = journal_title(event.date)
    try:
        result = await db.execute(
            select(Note)
            .where(
                Note.user_id == event.user_id,
                Note.title == title,
                Note.deleted_at.is_(None),
            )
            .order_by(Note.id)
            .limit(1)
        )
        note = result.scalar_one_or_none()
        if note:
            note.content = event.summary
            note.date = event.date
            note.updated_at = datetime.utcnow()
        else:
            note = Note(
                user_id=event.user_id,
                title=title,
                content=event.summary,
                date=event.date,
            )
            db.add(note)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.debug(f"Journal note '{title}' upserted for user {event.user_id}")
    return note


async def _on_summary_updated(db: AsyncSession, event: DispatchSummaryUpdated) -> None:
    await upsert_journal_note(db, event)


def register_journal_handlers(bus: EventBus) -> None:
    bus.subscribe(DispatchSummaryUpdated, _on_summary_updated)

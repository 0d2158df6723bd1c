"""
In-process post-commit events.

The dispatch lifecycle publishes events after its own commit; other parts of
the app (the journal) subscribe to them. A failing handler is logged and does
not affect the publisher or the other handlers.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from sqlalchemy.ext.asyncio import AsyncSession

from dispatch_api.utils.logger import get_logger

logger = get_logger(__name__)

Handler = Callable[[AsyncSession, Any], Awaitable[None]]


@dataclass(frozen=True)
class DispatchSummaryUpdated:
    user_id: int
    dispatch_id: int
    date: str
    summary: Optional[str]


class EventBus:
    def __init__(self):
        self._handlers: Dict[Type, List[Handler]] = {}

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def handlers_for(self, event_type: Type) -> List[Handler]:
        return list(self._handlers.get(event_type, []))

    async def publish(self, db: AsyncSession, event: Any) -> int:
        """Run every handler for the event; returns how many succeeded"""
        succeeded = 0
        for handler in self.handlers_for(type(event)):
            try:
                await handler(db, event)
                succeeded += 1
            except Exception:
                logger.exception(
                    f"Handler {getattr(handler, '__name__', handler)} failed for {type(event).__name__}"
                )
        return succeeded


event_bus = EventBus()

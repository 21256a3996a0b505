"""Event emitter for publishing domain events.

The emitter provides:
- Handler registration by event type
- Error isolation (handler failures don't break other handlers)
- Fire-and-forget dispatch tracked until drained
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol, TypeVar, runtime_checkable

from payout_engine.events.types import DomainEvent

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DomainEvent)


@runtime_checkable
class AsyncEventHandler(Protocol):
    """Protocol for asynchronous event handlers."""

    async def __call__(self, event: DomainEvent) -> None:
        """Handle a domain event asynchronously."""
        ...


@dataclass
class HandlerRegistration:
    """Registration of an event handler."""

    handler: Callable[[DomainEvent], Any]
    event_types: set[str]


class AsyncEventEmitter:
    """Asynchronous event emitter.

    Handlers are isolated - if one fails, the failure is logged and the
    remaining handlers still receive the event. Neither ``emit`` nor
    ``dispatch`` raises because of a handler.

    ``dispatch`` hands the event to a background task and returns at once,
    so a slow consumer (an SMS provider timing out) never holds up the
    caller. Pending dispatches are awaited by ``drain`` before shutdown.

    Usage:
        emitter = AsyncEventEmitter()

        async def notify_farmer(event: PayoutCommitted) -> None:
            await sms.send(...)

        emitter.on(PayoutCommitted, notify_farmer)
        emitter.dispatch(event)
        ...
        await emitter.drain()
    """

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []
        self._pending: set[asyncio.Task[list[Exception]]] = set()

    def on(
        self,
        event_type: type[T] | list[type[T]],
        handler: AsyncEventHandler,
    ) -> None:
        """Register async handler for specific event type(s)."""
        self._handlers.append(
            HandlerRegistration(handler=handler, event_types=_type_names(event_type))
        )

    @property
    def pending(self) -> int:
        """Dispatched events whose handlers are still running."""
        return len(self._pending)

    async def emit(self, event: DomainEvent) -> list[Exception]:
        """Emit an event to all matching handlers and wait for them.

        Returns list of any exceptions raised by handlers.
        """
        logger.debug("Emitting %s: %s", event.event_type, event.to_json())

        tasks = [
            asyncio.create_task(self._call_async_handler(reg.handler, event))
            for reg in self._handlers
            if event.event_type in reg.event_types
        ]
        if not tasks:
            return []

        results = await asyncio.gather(*tasks, return_exceptions=True)
        return [r for r in results if isinstance(r, Exception)]

    def dispatch(self, event: DomainEvent) -> asyncio.Task[list[Exception]]:
        """Emit in the background without waiting for handlers."""
        task = asyncio.create_task(self.emit(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait until every dispatched event has been handled."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _call_async_handler(
        self,
        handler: Callable[[DomainEvent], Any],
        event: DomainEvent,
    ) -> None:
        """Call async handler with error logging."""
        try:
            await handler(event)
        except Exception:
            logger.exception(
                "Async handler %s failed for event %s",
                handler,
                event.event_type,
            )
            raise


def _type_names(event_type: type[DomainEvent] | list[type[DomainEvent]]) -> set[str]:
    if isinstance(event_type, list):
        return {t.__name__ for t in event_type}
    return {event_type.__name__}

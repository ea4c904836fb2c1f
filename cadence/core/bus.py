"""
Cadence Event Bus.

Pub/sub plus a middleware chain. Components that change shared state
(the execution queue, session state, job store, scheduler) announce it
here; the event logger and any interested observer subscribe.

Emitting never fails the emitter: subscriber errors are logged and dropped.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from typing import Awaitable, Callable

from cadence.core.events import Event

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Awaitable[None]]
MiddlewareNext = Callable[[Event], Awaitable[Event]]
MiddlewareFunc = Callable[[Event, MiddlewareNext], Awaitable[Event]]


class EventBus:
    """
    Publish/subscribe event bus with middleware pipeline.

    Usage:
        bus = EventBus()
        bus.on("run:complete", on_run_complete)
        bus.on("session:*", on_session_change)
        bus.use(event_logger.middleware)

        await bus.emit(Event(type="run:complete", data={...}))
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = {}
        self._middleware: list[MiddlewareFunc] = []

    # ━━━ Subscription ━━━

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe to an event type. Supports wildcards: 'run:*', '*'."""
        self._subscribers.setdefault(event_type, []).append(handler)

    def off(self, event_type: str, handler: EventHandler) -> None:
        """Unsubscribe a handler. Unknown handlers are ignored."""
        handlers = self._subscribers.get(event_type)
        if not handlers:
            return
        remaining = [h for h in handlers if h is not handler]
        if remaining:
            self._subscribers[event_type] = remaining
        else:
            del self._subscribers[event_type]

    def use(self, middleware: MiddlewareFunc) -> None:
        """
        Append middleware to the pipeline.

        Middleware signature:
            async def mw(event: Event, next: MiddlewareNext) -> Event:
                return await next(event)
        """
        self._middleware.append(middleware)

    # ━━━ Emission ━━━

    async def emit(self, event: Event) -> Event:
        """Run the event through middleware (registration order), then subscribers."""
        return await self._run_chain(0, event)

    def emit_nowait(self, event: Event) -> None:
        """Fire-and-forget emit. Silently skipped when no loop is running."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No event loop for nowait emit: {event.type}")
            return
        loop.create_task(self._emit_safe(event))

    # ━━━ Internals ━━━

    async def _run_chain(self, index: int, event: Event) -> Event:
        if index >= len(self._middleware):
            await self._dispatch(event)
            return event
        middleware = self._middleware[index]

        async def next_handler(ev: Event) -> Event:
            return await self._run_chain(index + 1, ev)

        return await middleware(event, next_handler)

    async def _dispatch(self, event: Event) -> None:
        handlers = self._find_handlers(event.type)
        if not handlers:
            return
        results = await asyncio.gather(
            *(handler(event) for handler in handlers),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error(
                    f"Subscriber error for {event.type}: {result}",
                    exc_info=result,
                )

    def _find_handlers(self, event_type: str) -> list[EventHandler]:
        handlers: list[EventHandler] = []
        for pattern, subs in self._subscribers.items():
            if pattern == event_type or pattern == "*":
                handlers.extend(subs)
            elif "*" in pattern and fnmatch.fnmatch(event_type, pattern):
                handlers.extend(subs)
        return handlers

    async def _emit_safe(self, event: Event) -> None:
        try:
            await self.emit(event)
        except Exception as e:
            logger.error(f"Error in nowait emit for {event.type}: {e}")

    @property
    def subscriber_count(self) -> int:
        """Total number of subscriptions (for debugging)."""
        return sum(len(handlers) for handlers in self._subscribers.values())


async def emit_if(bus: EventBus | None, event: Event) -> None:
    """Emit on *bus* when one is wired; components work without a bus too."""
    if bus is not None:
        await bus.emit(event)

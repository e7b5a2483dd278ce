# story_launcher/core/events.py

"""
Named, payload-less events delivered onto the launcher's core loop.

The tray menu lives on its own thread; emit() is safe to call from there
and from the core loop itself. Handlers always run on the core loop, one
at a time, so they can touch Controller state directly. A handler may be
a plain function or a coroutine function.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional, Set

from .logger import get_logger

logger = get_logger("events")

CHECK_UPDATES = "check-updates"

Handler = Callable[[], Any]


class EventBus:
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._handlers: Dict[str, List[Handler]] = {}
        # The loop only keeps weak references to tasks.
        self._tasks: Set["asyncio.Future[Any]"] = set()

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def subscribe(self, name: str, handler: Handler) -> Callable[[], None]:
        """
        Register handler for name. Returns a callable that unsubscribes it.
        """
        self._handlers.setdefault(name, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(name, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, name: str) -> None:
        if self._loop is None:
            logger.warning("Dropping event %r: event bus is not bound to a loop", name)
            return
        if self._loop.is_closed():
            logger.warning("Dropping event %r: core loop is closed", name)
            return
        self._loop.call_soon_threadsafe(self._dispatch, name)

    def _dispatch(self, name: str) -> None:
        for handler in list(self._handlers.get(name, [])):
            try:
                result = handler()
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._task_done)
            except Exception:
                logger.exception("Handler for %r failed", name)

    def _task_done(self, task: "asyncio.Future[Any]") -> None:
        self._tasks.discard(task)
        _log_task_failure(task)


def _log_task_failure(task: "asyncio.Future[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Event handler task failed: %s", exc)

"""Per-run event dispatch.

Listeners are plain callables or coroutine functions. Plain callables run inline
in frame order; coroutine results are scheduled as tasks so a listener that
awaits (for example a confirm round trip) never stalls the stream.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

from gptscript.events import RunEventType

log = logging.getLogger("gptscript.bus")

Listener = Callable[[Any], None | Awaitable[None]]


class EventBus:
    def __init__(self, name: str = ""):
        self.name = name
        self._listeners: dict[str, list[Listener]] = {}
        self._tasks: set[asyncio.Task] = set()

    def on(self, event_type: RunEventType | str, listener: Listener) -> None:
        key = RunEventType(event_type).value
        self._listeners.setdefault(key, []).append(listener)

    def listener_count(self, event_type: RunEventType | str) -> int:
        return len(self._listeners.get(RunEventType(event_type).value, ()))

    def emit(self, event_type: str, frame: Any) -> None:
        # Snapshot so listeners registering listeners don't see this frame.
        for listener in list(self._listeners.get(event_type, ())):
            try:
                result = listener(frame)
            except Exception:
                log.exception(f"{self.name}: {event_type} listener failed")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error(f"{self.name}: async listener failed: {exc!r}", exc_info=exc)

    async def aclose(self) -> None:
        """Cancel listener tasks still in flight and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            log.debug(f"{self.name}: cancelled {len(tasks)} listener task(s)")
            await asyncio.gather(*tasks, return_exceptions=True)

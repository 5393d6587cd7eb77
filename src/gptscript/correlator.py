"""Pending confirm/prompt requests awaiting a caller decision.

One correlator is shared by every run of a client. An identifier is registered
by the run's stream task before listeners see the frame, and is claimed by
exactly one decision.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from gptscript.errors import CorrelationError

log = logging.getLogger("gptscript.correlator")


class Correlator:
    def __init__(self):
        self._lock = asyncio.Lock()
        self._pending: dict[str, str] = {}  # request id -> owning run id

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def pending_for(self, run_id: str) -> list[str]:
        return [rid for rid, owner in self._pending.items() if owner == run_id]

    def register(self, request_id: str, run_id: str) -> None:
        # Called synchronously from the stream task so it completes before any
        # listener can submit a decision.
        if request_id in self._pending:
            log.debug(f"Request {request_id} already pending")
            return
        self._pending[request_id] = run_id

    async def claim(self, request_id: str) -> str:
        """Remove a pending identifier and return its owning run id."""
        async with self._lock:
            run_id = self._pending.pop(request_id, None)
        if run_id is None:
            raise CorrelationError(request_id)
        return run_id

    async def release(self, request_id: str, run_id: str, is_active: Callable[[], bool]) -> None:
        """Put back an identifier whose decision could not be delivered.

        ``is_active`` is checked under the lock; nothing is restored once the
        owning run has settled or been aborted.
        """
        async with self._lock:
            if request_id in self._pending or not is_active():
                return
            self._pending[request_id] = run_id

    def discard_run(self, run_id: str) -> list[str]:
        dropped = self.pending_for(run_id)
        for request_id in dropped:
            del self._pending[request_id]
        if dropped:
            log.info(f"Discarded {len(dropped)} pending request(s) of run {run_id}")
        return dropped

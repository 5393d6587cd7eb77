"""Ports (interfaces) for the engine session.

Runs depend on this contract rather than on the concrete HTTP transport, so a
run only ever streams, forwards decisions, and never owns the connection.
"""

from __future__ import annotations

from typing import AsyncIterator, Protocol, runtime_checkable


@runtime_checkable
class Engine(Protocol):
    """A session with the script-execution engine."""

    def stream_events(self, path: str, body: dict) -> AsyncIterator[dict]:
        ...

    async def confirm(self, request_id: str, body: dict) -> None:
        ...

    async def prompt_response(self, request_id: str, responses: dict[str, str]) -> None:
        ...

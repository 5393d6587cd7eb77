"""Exceptions raised by the gptscript client.

Engine failures that happen while a run is streaming are never raised; they are
recorded on the run (``Run.err``). Everything here is raised synchronously at
the call site that misused the API or hit a transport failure.
"""

from __future__ import annotations


class GPTScriptError(Exception):
    """Base error for the gptscript client."""


class SubmissionError(GPTScriptError, ValueError):
    """Raised when a run request is malformed before anything is sent."""


class CorrelationError(GPTScriptError):
    """Raised when a decision references an unknown or already-resolved request."""

    def __init__(self, request_id: str, reason: str = "no pending request") -> None:
        super().__init__(f"{reason}: {request_id}")
        self.request_id = request_id


class RunStateError(GPTScriptError):
    """Raised when a run operation is called in the wrong state."""


class RunAbortedError(GPTScriptError):
    """Raised by ``Run.text()`` when the run was cancelled."""

    def __init__(self, message: str = "Run has been aborted") -> None:
        super().__init__(message)


class EngineError(GPTScriptError):
    """Raised when a request/response call to the engine fails."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status

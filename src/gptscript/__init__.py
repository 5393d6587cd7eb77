"""Python client for driving gptscript runs."""

from gptscript.client import Client
from gptscript.config import ClientConfig, RunOptions
from gptscript.errors import (
    CorrelationError,
    EngineError,
    GPTScriptError,
    RunAbortedError,
    RunStateError,
    SubmissionError,
)
from gptscript.events import RunEventType
from gptscript.models import (
    AuthResponse,
    CallFrame,
    ChatState,
    Output,
    PromptFrame,
    PromptResponse,
    RunFrame,
    Text,
    ToolDef,
)
from gptscript.run import Run, RunState

__all__ = [
    "AuthResponse",
    "CallFrame",
    "ChatState",
    "Client",
    "ClientConfig",
    "CorrelationError",
    "EngineError",
    "GPTScriptError",
    "Output",
    "PromptFrame",
    "PromptResponse",
    "Run",
    "RunAbortedError",
    "RunEventType",
    "RunFrame",
    "RunOptions",
    "RunState",
    "RunStateError",
    "SubmissionError",
    "Text",
    "ToolDef",
]

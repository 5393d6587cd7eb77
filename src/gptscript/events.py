"""Engine event normalization helpers."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from gptscript.models import CallFrame, Frame, PromptFrame, RunFrame

log = logging.getLogger("gptscript.events")


class RunEventType(str, Enum):
    EVENT = "event"
    RUN_START = "runStart"
    RUN_FINISH = "runFinish"
    CALL_START = "callStart"
    CALL_CHAT = "callChat"
    CALL_SUB_CALLS = "callSubCalls"
    CALL_PROGRESS = "callProgress"
    CALL_CONFIRM = "callConfirm"
    CALL_CONTINUE = "callContinue"
    CALL_FINISH = "callFinish"
    PROMPT = "prompt"


# Frame types that park the engine until a caller decision arrives.
DECISION_TYPES = {RunEventType.CALL_CONFIRM.value, RunEventType.PROMPT.value}


def coerce_event(payload: dict) -> tuple[str, Any] | None:
    """Turn one decoded SSE payload into ``(kind, value)``.

    Kinds:
        ("frame", RunFrame | CallFrame | PromptFrame)
        ("stdout", str | dict) - terminal success, dict when the turn can continue
        ("stderr", str) - terminal failure
    """

    if "stderr" in payload and payload["stderr"]:
        return ("stderr", str(payload["stderr"]))
    if "stdout" in payload:
        return ("stdout", payload["stdout"])

    frame: Frame | None = None
    run = payload.get("run")
    call = payload.get("call")
    prompt = payload.get("prompt")
    if isinstance(run, dict):
        frame = RunFrame.from_dict(run)
    elif isinstance(call, dict):
        frame = CallFrame.from_dict(call)
    elif isinstance(prompt, dict):
        frame = PromptFrame.from_dict(prompt)

    if frame is None:
        return None
    if not frame.type:
        log.debug(f"Dropping frame without type: {payload}")
        return None
    return ("frame", frame)

"""Log previews of confirm frame inputs.

Confirm frames carry the exact input of the sensitive call (a shell command, a
file path, ...). Previews are only produced when GPTSCRIPT_LOG_CALL_INPUT is
set, and sensitive keys are masked before anything reaches the log.
"""

from __future__ import annotations

import json
import os
import re

_SENSITIVE_KEY = re.compile(r"key|token|secret|password|auth|cookie", re.IGNORECASE)
_PATH_TOOLS = {"sys.read", "sys.write", "sys.append", "sys.remove"}


def call_input_preview(tool: str, raw_input: str) -> str | None:
    """Return a short preview of a call's input, or None when input logging is off."""
    if not raw_input or os.getenv("GPTSCRIPT_LOG_CALL_INPUT", "").lower() not in {"1", "true", "yes"}:
        return None
    limit = int(os.getenv("GPTSCRIPT_LOG_CALL_INPUT_MAX", "2000"))

    try:
        args = json.loads(raw_input)
    except (json.JSONDecodeError, TypeError):
        args = None

    if not isinstance(args, dict):
        preview = raw_input.strip()
    elif tool == "sys.exec" and isinstance(args.get("command"), str) and args["command"].strip():
        preview = args["command"].strip()
    elif tool in _PATH_TOOLS and isinstance(args.get("filename") or args.get("location"), str):
        preview = args.get("filename") or args.get("location")
    else:
        preview = json.dumps(_mask(args), ensure_ascii=True, sort_keys=True, default=str)

    return preview if len(preview) <= limit else preview[:limit] + "..."


def _mask(value: object) -> object:
    if isinstance(value, dict):
        return {k: "[REDACTED]" if _SENSITIVE_KEY.search(str(k)) else _mask(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_mask(v) for v in value]
    return value

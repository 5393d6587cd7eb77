"""Shared gptscript data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ToolDef:
    """A named (or anonymous) unit of instructions for the engine."""

    instructions: str = ""
    name: str = ""
    description: str = ""
    tools: tuple[str, ...] = ()
    arguments: dict[str, Any] | None = None
    chat: bool = False
    global_tools: tuple[str, ...] = ()
    context: tuple[str, ...] = ()
    agents: tuple[str, ...] = ()
    export: tuple[str, ...] = ()
    model_name: str = ""
    temperature: float | None = None
    max_tokens: int | None = None
    json_response: bool = False

    _WIRE_NAMES = {
        "global_tools": "globalTools",
        "model_name": "modelName",
        "max_tokens": "maxTokens",
        "json_response": "jsonResponse",
    }

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for key in self.__dataclass_fields__:
            value = getattr(self, key)
            # Omit unset fields so the engine applies its own defaults.
            if value is None or value == "" or value == () or value is False:
                continue
            if isinstance(value, tuple):
                value = list(value)
            out[self._WIRE_NAMES.get(key, key)] = value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolDef:
        reverse = {wire: key for key, wire in cls._WIRE_NAMES.items()}
        kwargs: dict[str, Any] = {}
        for wire, value in data.items():
            key = reverse.get(wire, wire)
            if key not in cls.__dataclass_fields__ or value is None:
                continue
            if isinstance(value, list):
                value = tuple(value)
            kwargs[key] = value
        return cls(**kwargs)


@dataclass(frozen=True)
class Text:
    """A non-tool text block of a parsed script."""

    content: str
    format: str = "text"


Block = ToolDef | Text


@dataclass(frozen=True)
class ChatState:
    """Opaque conversation resume token.

    The client never looks inside ``token``; it is sent back exactly as the
    engine produced it.
    """

    token: str
    tool_id: str | None = None

    def __str__(self) -> str:
        return self.token


@dataclass
class Output:
    content: str = ""
    sub_calls: dict[str, Any] = field(default_factory=dict)


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class CallFrame:
    """Progress snapshot for one engine-side call.

    ``output`` is cumulative: each frame carries everything produced so far.
    ``input`` describes the pending action when the frame asks for confirmation.
    """

    id: str
    type: str
    output: list[Output] = field(default_factory=list)
    input: str = ""
    tool_name: str = ""
    parent_id: str = ""
    tool_category: str = ""
    display_text: str = ""
    error: str = ""
    usage: Usage = field(default_factory=Usage)
    start: str | None = None
    end: str | None = None
    run_id: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CallFrame:
        outputs = []
        for item in data.get("output") or []:
            if isinstance(item, dict):
                outputs.append(
                    Output(
                        content=str(item.get("content") or ""),
                        sub_calls=item.get("subCalls") or {},
                    )
                )
        usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}
        tool = data.get("tool") if isinstance(data.get("tool"), dict) else {}
        raw_input = data.get("input")
        return cls(
            id=str(data.get("id") or ""),
            type=str(data.get("type") or ""),
            output=outputs,
            input=raw_input if isinstance(raw_input, str) else ("" if raw_input is None else str(raw_input)),
            tool_name=str(data.get("toolName") or tool.get("name") or ""),
            parent_id=str(data.get("parentID") or ""),
            tool_category=str(data.get("toolCategory") or ""),
            display_text=str(data.get("displayText") or ""),
            error=str(data.get("error") or ""),
            usage=Usage(
                prompt_tokens=int(usage.get("promptTokens", 0) or 0),
                completion_tokens=int(usage.get("completionTokens", 0) or 0),
                total_tokens=int(usage.get("totalTokens", 0) or 0),
            ),
            start=data.get("start"),
            end=data.get("end"),
            run_id=str(data.get("runID") or ""),
        )

    @property
    def text(self) -> str:
        return "".join(o.content for o in self.output)


@dataclass
class PromptFrame:
    """A request for free-form user input."""

    id: str
    type: str
    message: str = ""
    fields: list[str] = field(default_factory=list)
    sensitive: bool = False
    time: str | None = None
    run_id: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PromptFrame:
        return cls(
            id=str(data.get("id") or ""),
            type=str(data.get("type") or "prompt"),
            message=str(data.get("message") or ""),
            fields=[str(f) for f in data.get("fields") or []],
            sensitive=bool(data.get("sensitive")),
            time=data.get("time"),
            run_id=str(data.get("runID") or ""),
        )


@dataclass
class RunFrame:
    """Start/finish marker for a whole run."""

    id: str
    type: str
    output: str = ""
    error: str = ""
    start: str | None = None
    end: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunFrame:
        return cls(
            id=str(data.get("id") or ""),
            type=str(data.get("type") or ""),
            output=str(data.get("output") or ""),
            error=str(data.get("error") or ""),
            start=data.get("start"),
            end=data.get("end"),
        )

    @property
    def run_id(self) -> str:
        return self.id


Frame = RunFrame | CallFrame | PromptFrame


@dataclass(frozen=True)
class AuthResponse:
    """Caller decision for a pending confirmation."""

    id: str
    accept: bool
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"id": self.id, "accept": self.accept}
        if self.message:
            body["message"] = self.message
        return body


@dataclass(frozen=True)
class PromptResponse:
    """Caller answer for a pending prompt, keyed by field name."""

    id: str
    responses: dict[str, str] = field(default_factory=dict)

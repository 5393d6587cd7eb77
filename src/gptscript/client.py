"""Entry point for talking to a gptscript engine."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from typing import Any, Awaitable, Callable, Iterable, Sequence

from gptscript.config import ClientConfig, RunOptions
from gptscript.correlator import Correlator
from gptscript.engine import EngineClient
from gptscript.errors import CorrelationError, EngineError, GPTScriptError, SubmissionError
from gptscript.models import AuthResponse, Block, PromptResponse, Text, ToolDef
from gptscript.ports import Engine
from gptscript.run import Run

log = logging.getLogger("gptscript")


class Client:
    """Owns the engine session and creates runs.

    Clients are independent: each has its own HTTP session, correlator and set
    of active runs.
    """

    def __init__(self, config: ClientConfig | None = None, engine: Engine | None = None):
        self.config = config or ClientConfig()
        self.server_url = self.config.resolve_server_url()
        self._transport = EngineClient(self.server_url, timeout_s=self.config.resolve_http_timeout())
        self._engine: Engine = engine or self._transport
        if not isinstance(self._engine, Engine):
            raise TypeError("engine does not satisfy the Engine port")
        self._correlator = Correlator()
        self._runs: dict[str, Run] = {}
        self._closed = False

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active_runs(self) -> list[Run]:
        return list(self._runs.values())

    async def evaluate(
        self, tool: ToolDef | dict | Sequence[ToolDef | dict], options: RunOptions | None = None
    ) -> Run:
        """Run inline tool definitions; the first tool is the entry point."""
        tools = _tool_list(tool)
        return self._start_run("evaluate", {"toolDefs": tools}, options)

    async def run(self, path: str, options: RunOptions | None = None) -> Run:
        """Run a script file."""
        if not isinstance(path, str) or not path.strip():
            raise SubmissionError("a script path is required")
        return self._start_run("run", {"file": path}, options)

    def _start_run(self, request_path: str, request_body: dict[str, Any], options: RunOptions | None) -> Run:
        self._ensure_open()
        run = Run(
            self._engine,
            self._correlator,
            request_path,
            request_body,
            options or RunOptions(),
            global_opts=self.config.global_options(),
            on_start=self._track,
            on_settled=self._untrack,
        )
        run.start()
        return run

    def _track(self, run: Run) -> None:
        if self._closed:
            # A chat turn started after close; stop it right away.
            run.close()
        self._runs[run.id] = run

    def _untrack(self, run: Run) -> None:
        self._runs.pop(run.id, None)

    def _ensure_open(self) -> None:
        if self._closed:
            raise GPTScriptError("client is closed")

    async def confirm(self, decision: AuthResponse) -> None:
        """Accept or deny a pending confirmation."""
        self._ensure_open()
        run_id = await self._correlator.claim(decision.id)
        await self._forward(decision.id, run_id, lambda: self._engine.confirm(decision.id, decision.to_dict()))

    async def prompt_response(self, answer: PromptResponse) -> None:
        """Answer a pending prompt."""
        self._ensure_open()
        run_id = await self._correlator.claim(answer.id)
        await self._forward(
            answer.id, run_id, lambda: self._engine.prompt_response(answer.id, dict(answer.responses))
        )

    async def _forward(self, request_id: str, run_id: str, send: Callable[[], Awaitable[None]]) -> None:
        try:
            await send()
        except EngineError as e:
            if e.status is None:
                # Never reached the engine, so the request is still pending.
                await self._correlator.release(request_id, run_id, lambda: self._is_active(run_id))
                raise
            if e.status < 500:
                raise CorrelationError(request_id, reason="engine rejected decision") from e
            raise

    def _is_active(self, run_id: str) -> bool:
        run = self._runs.get(run_id)
        return run is not None and run.active

    async def _command(self, command: str, body: dict | None = None) -> object:
        self._ensure_open()
        return await self._transport.basic_command(command, body)

    async def list_tools(self) -> str:
        return _as_text(await self._command("list-tools"))

    async def list_models(self) -> list[str]:
        out = _as_text(await self._command("list-models"))
        return [line.strip() for line in out.splitlines() if line.strip()]

    async def version(self) -> str:
        return _as_text(await self._command("version"))

    async def parse(self, path: str) -> list[Block]:
        out = await self._command("parse", {"file": path})
        return _blocks_from_nodes(out)

    async def parse_tool(self, content: str) -> list[Block]:
        out = await self._command("parse", {"content": content})
        return _blocks_from_nodes(out)

    async def stringify(self, blocks: Iterable[Block | dict]) -> str:
        nodes = [_block_to_node(b) for b in blocks]
        return _as_text(await self._command("fmt", {"nodes": nodes}))

    async def close(self) -> None:
        """Abort active runs and release the engine session. Idempotent."""
        if self._closed:
            return
        self._closed = True
        runs = list(self._runs.values())
        for run in runs:
            run.close()
        if runs:
            log.info(f"Closing client with {len(runs)} active run(s)")
            await asyncio.gather(*(run.wait_closed() for run in runs), return_exceptions=True)
        await self._transport.close()


def _tool_list(tool: ToolDef | dict | Sequence[ToolDef | dict]) -> list[dict]:
    if isinstance(tool, (ToolDef, dict)):
        items: list[Any] = [tool]
    elif isinstance(tool, Sequence) and not isinstance(tool, str):
        items = list(tool)
    else:
        raise SubmissionError(f"expected a tool or a list of tools, got {type(tool).__name__}")

    if not items:
        raise SubmissionError("at least one tool is required")

    tools: list[dict] = []
    for item in items:
        if isinstance(item, ToolDef):
            tools.append(item.to_dict())
        elif isinstance(item, dict):
            tools.append(dict(item))
        else:
            raise SubmissionError(f"expected a tool definition, got {type(item).__name__}")
    return tools


def _as_text(out: object) -> str:
    if out is None:
        return ""
    if isinstance(out, str):
        return out
    return json.dumps(out)


def _random_id(prefix: str) -> str:
    return prefix + secrets.token_hex(4)


def _blocks_from_nodes(out: object) -> list[Block]:
    if isinstance(out, str):
        try:
            out = json.loads(out)
        except json.JSONDecodeError as e:
            raise EngineError(f"gptscript parse returned invalid JSON: {e}") from e
    nodes = out.get("nodes") if isinstance(out, dict) else None

    blocks: list[Block] = []
    for node in nodes or []:
        tool_node = node.get("toolNode")
        text_node = node.get("textNode")
        if isinstance(tool_node, dict) and isinstance(tool_node.get("tool"), dict):
            blocks.append(ToolDef.from_dict(tool_node["tool"]))
        if isinstance(text_node, dict):
            raw = str(text_node.get("text") or "")
            # Text nodes look like "!format\ncontent".
            fmt, content = "", raw
            if raw.startswith("!"):
                header, _, content = raw.partition("\n")
                fmt = header[1:].strip()
            blocks.append(Text(content=content.strip(), format=fmt or "text"))
    return blocks


def _block_to_node(block: Block | dict) -> dict:
    if isinstance(block, Text):
        return {"textNode": {"text": f"!{block.format or 'text'}\n{block.content}"}}
    if isinstance(block, ToolDef):
        return {"toolNode": {"tool": {"id": _random_id("tool-"), **block.to_dict()}}}
    if isinstance(block, dict):
        if block.get("type") == "text":
            return {"textNode": {"text": f"!{block.get('format') or 'text'}\n{block.get('content', '')}"}}
        tool = {k: v for k, v in block.items() if k != "type"}
        return {"toolNode": {"tool": tool}}
    raise SubmissionError(f"expected a tool or text block, got {type(block).__name__}")

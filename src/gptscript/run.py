"""A single gptscript execution and its event stream."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable

from gptscript.bus import EventBus, Listener
from gptscript.config import RunOptions
from gptscript.correlator import Correlator
from gptscript.errors import RunAbortedError, RunStateError
from gptscript.events import DECISION_TYPES, RunEventType, coerce_event
from gptscript.models import CallFrame, ChatState, Frame, PromptFrame, RunFrame
from gptscript.ports import Engine
from gptscript.tool_logging import call_input_preview

log = logging.getLogger("gptscript")


class RunState(str, Enum):
    CREATING = "creating"
    RUNNING = "running"
    CONTINUE = "continue"
    FINISHED = "finished"
    ERROR = "error"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self not in (RunState.CREATING, RunState.RUNNING)


_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.CREATING: {RunState.RUNNING, RunState.ERROR, RunState.ABORTED},
    RunState.RUNNING: {RunState.CONTINUE, RunState.FINISHED, RunState.ERROR, RunState.ABORTED},
}


@dataclass
class TurnOutput:
    """Accumulates output during one turn of a run."""

    run_output: str | None = None
    stdout: str | None = None
    saw_finish: bool = False
    calls: dict[str, CallFrame] = field(default_factory=dict)
    parent_call_id: str = ""

    def text(self) -> str:
        if self.run_output:
            return self.run_output
        if self.stdout:
            return self.stdout
        parent = self.calls.get(self.parent_call_id)
        return parent.text if parent else ""


RunHook = Callable[["Run"], None]


class Run:
    """One execution of a tool or tool set.

    Created by ``Client.evaluate``/``Client.run``; the stream starts draining as
    soon as the run is returned. Use ``on`` to observe frames and ``text`` to
    wait for the turn to end.
    """

    def __init__(
        self,
        engine: Engine,
        correlator: Correlator,
        request_path: str,
        request_body: dict[str, Any],
        opts: RunOptions,
        global_opts: dict[str, Any] | None = None,
        on_start: RunHook | None = None,
        on_settled: RunHook | None = None,
    ):
        self.id = uuid.uuid4().hex
        self.opts = opts
        self.engine_run_id = ""
        self.responding_tool_id: str | None = None

        self._engine = engine
        self._correlator = correlator
        self._request_path = request_path
        self._request_body = request_body
        self._global_opts = global_opts or {}
        self._on_start = on_start
        self._on_settled = on_settled

        self._state = RunState.CREATING
        self._err = ""
        self._turn = TurnOutput()
        self._chat_state: ChatState | None = None
        self._bus = EventBus(name=f"run {self.id}")
        self._task: asyncio.Task | None = None
        self._settled = asyncio.Event()
        self._abort_requested = False

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def err(self) -> str:
        return self._err

    @property
    def calls(self) -> dict[str, CallFrame]:
        return self._turn.calls

    @property
    def done(self) -> bool:
        return self._settled.is_set()

    @property
    def active(self) -> bool:
        """True while the turn can still receive decisions."""
        return not self._abort_requested and not self._settled.is_set()

    def parent_call_frame(self) -> CallFrame | None:
        return self._turn.calls.get(self._turn.parent_call_id)

    def current_chat_state(self) -> ChatState | None:
        return self._chat_state

    def on(self, event_type: RunEventType | str, listener: Listener) -> Run:
        self._bus.on(event_type, listener)
        return self

    async def text(self) -> str:
        """Wait for the turn to end and return its output.

        Execution errors don't raise: the output produced so far is returned and
        the message is left on ``err``. Raises ``RunAbortedError`` if the run
        was cancelled.
        """
        if self._task is None:
            raise RunStateError("Run not started")
        await self._settled.wait()
        if self._state is RunState.ABORTED:
            raise RunAbortedError()
        return self._turn.text()

    async def json(self) -> Any:
        return json.loads(await self.text())

    def next_chat(self, input: str = "") -> Run:
        """Start the next turn of this conversation as a new run."""
        if self._state is not RunState.CONTINUE:
            raise RunStateError(f"Run must be in continue state to chat, not {self._state.value}")

        opts = replace(self.opts, input=input, chat_state=self._chat_state)
        child = Run(
            self._engine,
            self._correlator,
            self._request_path,
            self._request_body,
            opts,
            global_opts=self._global_opts,
            on_start=self._on_start,
            on_settled=self._on_settled,
        )
        child.start()
        return child

    def close(self) -> None:
        """Request cancellation. The run becomes aborted once the stream closes.

        After the turn has ended this only closes a stream the engine left open;
        the state is kept.
        """
        if self._state.is_terminal:
            if self._task is not None and not self._task.done():
                self._task.cancel()
            return
        if self._abort_requested:
            return
        self._abort_requested = True
        self._correlator.discard_run(self.id)
        log.info(f"Aborting run {self.id}")
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def start(self) -> None:
        if self._task is not None:
            raise RunStateError("Run already started")
        self._task = asyncio.get_running_loop().create_task(self._drain(), name=f"gptscript-run-{self.id}")
        self._task.add_done_callback(self._on_task_done)
        if self._on_start:
            self._on_start(self)

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
        await self._settled.wait()
        await self._bus.aclose()

    def _build_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {**self._global_opts, **self._request_body, **self.opts.to_request()}
        env = list(self._global_opts.get("env", [])) + list(self.opts.env)
        if env:
            body["env"] = env
        if self.opts.chat_state is not None:
            # Sent back exactly as received.
            body["chatState"] = str(self.opts.chat_state)
        return body

    async def _drain(self) -> None:
        log.info(f"gptscript {self._request_path}: run {self.id} input={self.opts.input[:50]!r}")
        try:
            async with aclosing(self._engine.stream_events(self._request_path, self._build_body())) as stream:
                async for payload in stream:
                    self._handle_payload(payload)
                    if self._state.is_terminal:
                        # The turn is over even if the engine keeps the stream open.
                        break
        except asyncio.CancelledError:
            if not self._abort_requested and not self._state.is_terminal:
                raise
        except Exception as e:
            log.exception(f"Run {self.id} stream error")
            self._fail(str(e))

    def _on_task_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            self._fail(str(task.exception()))
        if task.cancelled() and not self._abort_requested:
            self._fail("Run stream was cancelled")
        self._settle()

    def _handle_payload(self, payload: dict) -> None:
        if self._state is RunState.CREATING:
            self._transition(RunState.RUNNING)

        item = coerce_event(payload)
        if item is None:
            log.debug(f"Run {self.id}: ignoring payload {payload}")
            return

        kind, value = item
        if kind == "stderr":
            self._fail(value)
        elif kind == "stdout":
            self._process_stdout(value)
        else:
            self._handle_frame(value)

    def _handle_frame(self, frame: Frame) -> None:
        if frame.run_id and self.engine_run_id and frame.run_id != self.engine_run_id:
            log.warning(f"Run {self.id}: discarding frame for unknown run {frame.run_id}")
            return

        if isinstance(frame, RunFrame):
            self._handle_run_frame(frame)
        elif isinstance(frame, CallFrame):
            self._handle_call_frame(frame)
        elif isinstance(frame, PromptFrame) and self.active:
            self._correlator.register(frame.id, self.id)
            log.info(f"Run {self.id}: prompt {frame.id} fields={frame.fields}")

        self._bus.emit(RunEventType.EVENT.value, frame)
        self._bus.emit(frame.type, frame)

    def _handle_run_frame(self, frame: RunFrame) -> None:
        if frame.type == RunEventType.RUN_START.value:
            self.engine_run_id = frame.id
        elif frame.type == RunEventType.RUN_FINISH.value:
            if frame.error:
                self._fail(frame.error)
            else:
                self._turn.saw_finish = True
                self._turn.run_output = frame.output

    def _handle_call_frame(self, frame: CallFrame) -> None:
        turn = self._turn
        if not frame.parent_id and not turn.parent_call_id and not frame.tool_category:
            turn.parent_call_id = frame.id
        turn.calls[frame.id] = frame

        if frame.type in DECISION_TYPES and self.active:
            self._correlator.register(frame.id, self.id)
            preview = call_input_preview(frame.tool_name, frame.input)
            desc = f"[confirm:{frame.tool_name} {preview}]" if preview else f"[confirm:{frame.tool_name}]"
            log.info(f"Run {self.id}: {desc} id={frame.id}")

    def _process_stdout(self, data: str | dict) -> None:
        if isinstance(data, dict) and ("state" in data or "done" in data):
            content = data.get("content")
            if content is not None:
                self._turn.stdout = str(content)
            if data.get("done"):
                self._chat_state = None
                self._transition(RunState.FINISHED)
                return
            state = data.get("state")
            token = state if isinstance(state, str) else json.dumps(state)
            self.responding_tool_id = data.get("toolID") or None
            self._chat_state = ChatState(token=token, tool_id=self.responding_tool_id)
            self._transition(RunState.CONTINUE)
            return

        self._turn.stdout = data if isinstance(data, str) else json.dumps(data)
        self._transition(RunState.FINISHED)

    def _fail(self, message: str) -> None:
        if self._state.is_terminal:
            if self._state is RunState.ERROR and not self._err:
                self._err = message
            return
        self._err = message or "unknown error"
        self._transition(RunState.ERROR)

    def _transition(self, new_state: RunState) -> None:
        if new_state not in _TRANSITIONS.get(self._state, set()):
            log.debug(f"Run {self.id}: ignoring transition {self._state.value} -> {new_state.value}")
            return
        self._state = new_state

    def _settle(self) -> None:
        if self._settled.is_set():
            return
        if self._abort_requested and not self._state.is_terminal:
            self._transition(RunState.ABORTED)
        elif not self._state.is_terminal:
            if self._turn.saw_finish:
                self._transition(RunState.FINISHED)
            else:
                self._fail("Run ended without a result")
        self._correlator.discard_run(self.id)
        self._settled.set()
        log.info(f"Run {self.id} settled: {self._state.value}" + (f" err={self._err}" if self._err else ""))
        if self._on_settled:
            self._on_settled(self)

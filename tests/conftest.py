from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Awaitable, Callable

import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer


def pytest_configure() -> None:
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if src.exists():
        sys.path.insert(0, str(src))


class SSEStream:
    def __init__(self, resp: web.StreamResponse):
        self._resp = resp

    async def send(self, payload: dict) -> None:
        await self._resp.write(f"data: {json.dumps(payload)}\n\n".encode())

    async def done(self) -> None:
        await self._resp.write(b"data: [DONE]\n\n")


Script = Callable[[SSEStream, dict], Awaitable[None]]


class FakeEngine:
    """A minimal gptscript SDK server speaking the SSE run protocol."""

    def __init__(self):
        self.url = ""
        self.requests: list[tuple[str, dict]] = []
        self.decisions: list[tuple[str, dict]] = []
        self.disconnected = asyncio.Event()
        self.script: Script = president_script
        self._waiting: dict[str, asyncio.Future] = {}

    def expect_decision(self, request_id: str) -> asyncio.Future:
        fut = asyncio.get_running_loop().create_future()
        self._waiting[request_id] = fut
        return fut

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/evaluate", self._handle_run)
        app.router.add_post("/run", self._handle_run)
        app.router.add_post("/confirm/{id}", self._handle_decision)
        app.router.add_post("/prompt-response/{id}", self._handle_decision)
        app.router.add_post("/version", self._handle_version)
        app.router.add_post("/list-models", self._handle_list_models)
        app.router.add_post("/list-tools", self._handle_list_tools)
        app.router.add_post("/parse", self._handle_parse)
        app.router.add_post("/fmt", self._handle_fmt)
        return app

    async def _handle_run(self, request: web.Request) -> web.StreamResponse:
        body = await request.json()
        self.requests.append((request.path, body))
        if body.get("input") == "http-error":
            return web.Response(status=500, text="engine exploded")
        resp = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await resp.prepare(request)
        try:
            await self.script(SSEStream(resp), body)
            await resp.write_eof()
        except ConnectionResetError:
            self.disconnected.set()
        except asyncio.CancelledError:
            self.disconnected.set()
            raise
        return resp

    async def _handle_decision(self, request: web.Request) -> web.Response:
        request_id = request.match_info["id"]
        body = await request.json()
        fut = self._waiting.pop(request_id, None)
        if fut is None or fut.done():
            return web.Response(status=404, text=f"unknown request {request_id}")
        self.decisions.append((request_id, body))
        fut.set_result(body)
        return web.json_response({})

    async def _handle_version(self, request: web.Request) -> web.Response:
        return web.json_response({"stdout": "gptscript version v0.9.5"})

    async def _handle_list_models(self, request: web.Request) -> web.Response:
        return web.json_response({"stdout": "gpt-4o\ngpt-4o-mini\n"})

    async def _handle_list_tools(self, request: web.Request) -> web.Response:
        return web.json_response({"stdout": "sys.exec\nsys.prompt\n"})

    async def _handle_parse(self, request: web.Request) -> web.Response:
        body = await request.json()
        if body.get("file") == "missing.gpt":
            return web.json_response({"stderr": "file not found: missing.gpt"})
        content = body.get("content") or "who was the president in 1928?"
        nodes = []
        for part in content.split("\n---\n"):
            if part.startswith("!"):
                nodes.append({"textNode": {"text": part}})
            else:
                nodes.append({"toolNode": {"tool": {"id": "t1", "instructions": part.strip()}}})
        return web.json_response({"stdout": json.dumps({"nodes": nodes})})

    async def _handle_fmt(self, request: web.Request) -> web.Response:
        body = await request.json()
        lines = []
        for node in body["nodes"]:
            tool = node.get("toolNode", {}).get("tool")
            if tool:
                if tool.get("tools"):
                    lines.append("Tools: " + ", ".join(tool["tools"]))
                lines.append(tool.get("instructions", ""))
            text = node.get("textNode", {}).get("text")
            if text:
                lines.append("---\n" + text)
        return web.json_response({"stdout": "\n".join(lines)})


async def president_script(stream: SSEStream, body: dict) -> None:
    await stream.send({"run": {"id": "run-1", "type": "runStart"}})
    await stream.send({"call": {"id": "call-1", "runID": "run-1", "type": "callStart"}})
    for text in ("Calvin", "Calvin Coolidge", "Calvin Coolidge was president."):
        await stream.send(
            {"call": {"id": "call-1", "runID": "run-1", "type": "callProgress", "output": [{"content": text}]}}
        )
    await stream.send(
        {
            "call": {
                "id": "call-1",
                "runID": "run-1",
                "type": "callFinish",
                "output": [{"content": "Calvin Coolidge was president."}],
            }
        }
    )
    await stream.send({"run": {"id": "run-1", "type": "runFinish", "output": "Calvin Coolidge was president."}})
    await stream.send({"stdout": "Calvin Coolidge was president."})
    await stream.done()


@pytest_asyncio.fixture
async def engine():
    fake = FakeEngine()
    server = TestServer(fake.app())
    await server.start_server()
    fake.url = str(server.make_url("")).rstrip("/")
    yield fake
    await server.close()


@pytest_asyncio.fixture
async def client(engine):
    from gptscript import Client, ClientConfig

    c = Client(ClientConfig(server_url=engine.url))
    yield c
    await c.close()

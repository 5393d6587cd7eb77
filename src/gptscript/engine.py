"""HTTP client for the gptscript SDK server."""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

import aiohttp

from gptscript.errors import EngineError

log = logging.getLogger("gptscript.engine")


class EngineClient:
    """HTTP + SSE transport for the gptscript engine."""

    def __init__(self, server_url: str, timeout_s: float | None = None):
        self.server_url = server_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session: aiohttp.ClientSession | None = None
        self._closed = False

    def _make_url(self, path: str) -> str:
        return f"{self.server_url}/{path.lstrip('/')}"

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._closed:
            raise EngineError("client is closed")
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        self._closed = True
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request_json(self, method: str, path: str, **kwargs) -> object | None:
        url = self._make_url(path)
        try:
            async with self.session.request(method, url, timeout=self._timeout, **kwargs) as resp:
                if resp.status == 204:
                    return None
                text = await resp.text()
                if resp.status >= 400:
                    detail = text.strip() or resp.reason
                    raise EngineError(f"gptscript HTTP {resp.status}: {detail}", status=resp.status)
                if not text:
                    return None
                try:
                    return json.loads(text)
                except json.JSONDecodeError:
                    return text
        except aiohttp.ClientError as e:
            raise EngineError(f"gptscript request to {url} failed: {e}") from e

    async def basic_command(self, command: str, body: dict | None = None) -> object:
        """Run a request/response command and return its stdout."""
        response = await self.request_json("POST", f"/{command}", json=body or {})
        if not isinstance(response, dict):
            return response
        stderr = response.get("stderr")
        if stderr:
            raise EngineError(f"gptscript {command} failed: {stderr}")
        return response.get("stdout")

    async def confirm(self, request_id: str, body: dict) -> None:
        await self.request_json("POST", f"/confirm/{request_id}", json=body)
        log.info(f"Confirmed request {request_id}")

    async def prompt_response(self, request_id: str, responses: dict[str, str]) -> None:
        await self.request_json("POST", f"/prompt-response/{request_id}", json=responses)
        log.info(f"Answered prompt {request_id}")

    async def stream_events(self, path: str, body: dict) -> AsyncIterator[dict]:
        """POST a run request and yield decoded SSE payloads until the stream ends.

        Closing the generator closes the HTTP response, which the engine treats
        as cancellation of the run.
        """
        url = self._make_url(path)
        headers = {"Accept": "text/event-stream"}
        # Runs may be long-lived; only connection setup is bounded.
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self._timeout.total)
        async with self.session.post(url, json=body, headers=headers, timeout=timeout) as resp:
            if resp.status >= 400:
                detail = (await resp.text()).strip() or resp.reason
                raise EngineError(f"gptscript SSE HTTP {resp.status}: {detail}", status=resp.status)
            async for event in self.read_sse_stream(resp):
                yield event

    async def read_sse_stream(self, resp: aiohttp.ClientResponse) -> AsyncIterator[dict]:
        data_lines: list[str] = []
        async for raw in resp.content:
            line = raw.decode("utf-8", errors="replace").strip("\r\n")
            if not line:
                if not data_lines:
                    continue
                payload = "\n".join(data_lines)
                data_lines = []
                if payload.strip() == "[DONE]":
                    return
                try:
                    event = json.loads(payload)
                except json.JSONDecodeError:
                    log.debug(f"Dropping non-JSON SSE payload: {payload[:200]}")
                    continue
                if isinstance(event, dict):
                    yield event
                continue
            if line.startswith(":"):
                continue
            if line.startswith("data:"):
                data_lines.append(line[len("data:") :].lstrip())
        # Flush a final event not followed by a blank line.
        if data_lines:
            payload = "\n".join(data_lines)
            if payload.strip() != "[DONE]":
                try:
                    event = json.loads(payload)
                except json.JSONDecodeError:
                    return
                if isinstance(event, dict):
                    yield event

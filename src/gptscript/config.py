"""Client and run configuration.

Configuration lives at the API boundary so callers never depend on the
request body layout the engine expects.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any

from gptscript.models import ChatState


@dataclass(frozen=True)
class ClientConfig:
    # Optional overrides (otherwise env defaults apply)
    server_url: str | None = None
    api_key: str | None = None
    base_url: str | None = None
    default_model: str | None = None
    http_timeout_s: float | None = None
    env: tuple[str, ...] = ()

    def resolve_server_url(self) -> str:
        if self.server_url:
            return self.server_url.rstrip("/")

        base_url = os.getenv("GPTSCRIPT_URL")
        if base_url:
            if "://" not in base_url:
                base_url = f"http://{base_url}"
            return base_url.rstrip("/")

        host = os.getenv("GPTSCRIPT_HOST", "127.0.0.1")
        port = os.getenv("GPTSCRIPT_PORT", "9090")
        return f"http://{host}:{port}"

    def resolve_http_timeout(self) -> float | None:
        if self.http_timeout_s is not None:
            return self.http_timeout_s
        raw = os.getenv("GPTSCRIPT_HTTP_TIMEOUT")
        return float(raw) if raw else None

    def global_options(self) -> dict[str, Any]:
        """Options sent with every run submission."""
        opts: dict[str, Any] = {}
        api_key = self.api_key or os.getenv("OPENAI_API_KEY")
        base_url = self.base_url or os.getenv("OPENAI_BASE_URL")
        default_model = self.default_model or os.getenv("GPTSCRIPT_DEFAULT_MODEL")
        if api_key:
            opts["apiKey"] = api_key
        if base_url:
            opts["baseURL"] = base_url
        if default_model:
            opts["defaultModel"] = default_model
        if self.env:
            opts["env"] = list(self.env)
        return opts


@dataclass(frozen=True)
class RunOptions:
    disable_cache: bool = False
    confirm: bool = False
    input: str = ""
    chat_state: ChatState | str | None = None
    sub_tool: str = ""

    quiet: bool = False
    chdir: str = ""
    workspace: str = ""
    env: tuple[str, ...] = field(default_factory=tuple)

    def with_input(self, text: str) -> RunOptions:
        return replace(self, input=text)

    def to_request(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "disableCache": self.disable_cache,
            "confirm": self.confirm,
            "input": self.input,
        }
        if self.sub_tool:
            body["subTool"] = self.sub_tool
        if self.quiet:
            body["quiet"] = True
        if self.chdir:
            body["chdir"] = self.chdir
        if self.workspace:
            body["workspace"] = self.workspace
        if self.env:
            body["env"] = list(self.env)
        return body

from __future__ import annotations

import pytest

from gptscript import AuthResponse, Client, EngineError, GPTScriptError, PromptResponse, Text, ToolDef
from gptscript.engine import EngineClient


@pytest.mark.asyncio
async def test_version(client: Client) -> None:
    assert "gptscript version" in await client.version()


@pytest.mark.asyncio
async def test_list_models_and_tools(client: Client) -> None:
    assert await client.list_models() == ["gpt-4o", "gpt-4o-mini"]
    assert "sys.exec" in await client.list_tools()


@pytest.mark.asyncio
async def test_parse_file(client: Client) -> None:
    blocks = await client.parse("fixtures/test.gpt")

    assert len(blocks) == 1
    assert isinstance(blocks[0], ToolDef)
    assert blocks[0].instructions == "who was the president in 1928?"


@pytest.mark.asyncio
async def test_parse_tool_with_text_node(client: Client) -> None:
    tool = "How much wood would a woodchuck chuck?\n---\n!markdown\nThis is a text node"
    blocks = await client.parse_tool(tool)

    assert len(blocks) == 2
    assert blocks[0].instructions == "How much wood would a woodchuck chuck?"
    assert blocks[1] == Text(content="This is a text node", format="markdown")


@pytest.mark.asyncio
async def test_parse_error(client: Client) -> None:
    with pytest.raises(EngineError, match="file not found"):
        await client.parse("missing.gpt")


@pytest.mark.asyncio
async def test_stringify(client: Client) -> None:
    tool = ToolDef(tools=("sys.write", "sys.read"), instructions="This is a test")
    out = await client.stringify([tool, Text(content="notes", format="markdown")])

    assert "Tools: sys.write, sys.read" in out
    assert "This is a test" in out
    assert "!markdown\nnotes" in out


@pytest.mark.asyncio
async def test_unreachable_engine() -> None:
    from gptscript import ClientConfig

    async with Client(ClientConfig(server_url="http://127.0.0.1:1", http_timeout_s=1)) as client:
        with pytest.raises(EngineError):
            await client.version()


@pytest.mark.asyncio
async def test_calls_after_close_do_not_reopen_session(client: Client) -> None:
    assert "gptscript version" in await client.version()
    await client.close()

    with pytest.raises(GPTScriptError, match="closed"):
        await client.version()
    with pytest.raises(GPTScriptError, match="closed"):
        await client.parse_tool("hello")
    with pytest.raises(GPTScriptError, match="closed"):
        await client.confirm(AuthResponse(id="c", accept=True))
    with pytest.raises(GPTScriptError, match="closed"):
        await client.prompt_response(PromptResponse(id="p", responses={}))
    assert client._transport.closed
    assert client._transport._session is None


@pytest.mark.asyncio
async def test_closed_transport_refuses_requests(engine) -> None:
    transport = EngineClient(engine.url)
    assert await transport.basic_command("version")
    await transport.close()

    with pytest.raises(EngineError, match="closed"):
        await transport.basic_command("version")
    assert transport._session is None

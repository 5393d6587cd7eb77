from __future__ import annotations

import asyncio

import pytest

from gptscript import Client, RunAbortedError, RunEventType, RunOptions, RunState, ToolDef

SLOW = ToolDef(instructions="count slowly to a thousand")


async def endless_script(stream, body) -> None:
    await stream.send({"run": {"id": "slow", "type": "runStart"}})
    text = ""
    # Stop after a while so a broken client can't hang the server.
    for i in range(500):
        text += f"{i} "
        await stream.send({"call": {"id": "c", "runID": "slow", "type": "callProgress", "output": [{"content": text}]}})
        await asyncio.sleep(0.01)


@pytest.fixture(autouse=True)
def _slow_engine(engine) -> None:
    engine.script = endless_script


@pytest.mark.asyncio
async def test_abort_on_first_progress(client: Client, engine) -> None:
    run = await client.run("fixtures/test.gpt", RunOptions(disable_cache=True))
    run.on(RunEventType.CALL_PROGRESS, lambda frame: run.close())

    with pytest.raises(RunAbortedError, match="aborted"):
        await asyncio.wait_for(run.text(), 5)
    assert run.state is RunState.ABORTED
    assert run.err == ""
    await asyncio.wait_for(engine.disconnected.wait(), 5)


@pytest.mark.asyncio
async def test_close_releases_waiting_text(client: Client) -> None:
    run = await client.evaluate(SLOW)
    waiter = asyncio.create_task(run.text())

    await asyncio.sleep(0.05)
    assert run.state is RunState.RUNNING
    run.close()

    with pytest.raises(RunAbortedError):
        await asyncio.wait_for(waiter, 5)
    assert run.state is RunState.ABORTED


@pytest.mark.asyncio
async def test_close_is_idempotent(client: Client) -> None:
    run = await client.evaluate(SLOW)
    run.close()
    run.close()

    with pytest.raises(RunAbortedError):
        await asyncio.wait_for(run.text(), 5)
    run.close()
    assert run.state is RunState.ABORTED
    assert run.err == ""


@pytest.mark.asyncio
async def test_close_after_finish_is_noop(client: Client, engine) -> None:
    from conftest import president_script

    engine.script = president_script
    run = await client.evaluate(SLOW)
    out = await asyncio.wait_for(run.text(), 5)

    run.close()
    assert run.state is RunState.FINISHED
    assert await run.text() == out


@pytest.mark.asyncio
async def test_client_close_aborts_active_runs(engine) -> None:
    from gptscript import ClientConfig

    client = Client(ClientConfig(server_url=engine.url))
    first = await client.evaluate(SLOW)
    second = await client.evaluate(SLOW)
    await asyncio.sleep(0.05)
    assert len(client.active_runs) == 2

    await asyncio.wait_for(client.close(), 5)
    await client.close()

    assert first.state is RunState.ABORTED
    assert second.state is RunState.ABORTED
    assert client.active_runs == []
    with pytest.raises(RunAbortedError):
        await first.text()

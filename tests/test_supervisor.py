import asyncio
import json
import logging
import os
import sys

import pytest

from prbot.mcp.errors import SpawnError, TransportError
from prbot.mcp.supervisor import ProcessSupervisor

FAKE_SERVER = os.path.join(os.path.dirname(__file__), "fixtures", "fake_tool_server.py")
SERVER_COMMAND = [sys.executable, "-u", FAKE_SERVER]


def request(call_id, method, params=None):
    body = {"jsonrpc": "2.0", "id": call_id, "method": method, "params": params or {}}
    return (json.dumps(body) + "\n").encode()


async def wait_for_lines(lines, count, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while len(lines) < count:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"expected {count} lines, got {lines}")
        await asyncio.sleep(0.01)


def test_spawn_failure_raises_spawn_error():
    async def scenario():
        supervisor = ProcessSupervisor(["/nonexistent/tool-server-binary"])
        with pytest.raises(SpawnError) as info:
            await supervisor.start()
        await supervisor.stop()
        return info.value

    error = asyncio.run(scenario())
    assert error.command == ["/nonexistent/tool-server-binary"]
    assert isinstance(error.cause, OSError)


def test_lines_reach_subscriber_and_stop_is_idempotent():
    async def scenario():
        lines = []
        supervisor = ProcessSupervisor(SERVER_COMMAND, on_line=lines.append)
        await supervisor.start()
        assert supervisor.running
        await supervisor.write(request(1, "noisy"))
        await supervisor.write(request(2, "echo", {"a": 1}))
        await wait_for_lines(lines, 3)
        await supervisor.stop()
        await supervisor.stop()
        return lines, supervisor

    lines, supervisor = asyncio.run(scenario())
    assert lines[0] == "warning: rate limit low"
    assert json.loads(lines[1])["id"] == 1
    assert json.loads(lines[2]) == {"jsonrpc": "2.0", "id": 2, "result": {"a": 1}}
    assert not supervisor.running
    assert supervisor.returncode is not None


def test_stderr_is_logged_not_parsed(caplog):
    async def scenario():
        lines = []
        supervisor = ProcessSupervisor(SERVER_COMMAND, on_line=lines.append)
        await supervisor.start()
        await supervisor.write(request(1, "stderr"))
        await wait_for_lines(lines, 1)
        await asyncio.sleep(0.1)
        await supervisor.stop()
        return lines

    with caplog.at_level(logging.WARNING, logger="prbot.mcp.supervisor"):
        lines = asyncio.run(scenario())
    assert len(lines) == 1
    messages = [r.getMessage() for r in caplog.records]
    assert any("rate limit remaining: 4" in m for m in messages)


def test_environment_overrides_reach_child():
    async def scenario():
        lines = []
        supervisor = ProcessSupervisor(
            SERVER_COMMAND,
            env={"GITHUB_PERSONAL_ACCESS_TOKEN": "secret-token"},
            on_line=lines.append,
        )
        await supervisor.start()
        await supervisor.write(request(1, "env", {"name": "GITHUB_PERSONAL_ACCESS_TOKEN"}))
        await wait_for_lines(lines, 1)
        await supervisor.stop()
        return lines

    assert json.loads(asyncio.run(scenario())[0])["result"] == "secret-token"


def test_token_value_is_not_logged(caplog):
    async def scenario():
        supervisor = ProcessSupervisor(
            SERVER_COMMAND, env={"GITHUB_PERSONAL_ACCESS_TOKEN": "secret-token"}
        )
        await supervisor.start()
        await supervisor.stop()

    with caplog.at_level(logging.DEBUG):
        asyncio.run(scenario())
    assert "secret-token" not in caplog.text


def test_child_exit_reports_once_and_write_fails():
    async def scenario():
        exits = []
        supervisor = ProcessSupervisor(
            SERVER_COMMAND, on_exit=lambda code, error: exits.append((code, error))
        )
        await supervisor.start()
        await supervisor.write(request(1, "crash"))
        for _ in range(500):
            if exits:
                break
            await asyncio.sleep(0.01)
        await supervisor.process.wait()
        with pytest.raises(TransportError):
            await supervisor.write(request(2, "echo"))
        await supervisor.stop()
        return exits, supervisor.returncode

    exits, returncode = asyncio.run(scenario())
    assert len(exits) == 1
    assert exits[0][1] is None
    assert returncode == 3


def test_stop_before_start_is_a_noop():
    async def scenario():
        supervisor = ProcessSupervisor(SERVER_COMMAND)
        await supervisor.stop()
        return supervisor.running

    assert asyncio.run(scenario()) is False


def test_empty_command_is_rejected():
    with pytest.raises(ValueError):
        ProcessSupervisor([])

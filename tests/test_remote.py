import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import asyncssh
import pytest

from cloud_burster.errors import OperationCancelled
from cloud_burster.utils.context import RunContext
from cloud_burster.utils.remote import RemoteExecutor


@dataclass
class _RunResult:
    exit_status: Optional[int]
    stdout: Any = ""
    stderr: Any = ""


class _FakeConn:
    def __init__(self, result: _RunResult):
        self._result = result
        self.ran: List[Dict[str, Any]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def run(self, command: str, input: Optional[str] = None, check: bool = False):
        self.ran.append({"command": command, "input": input})
        return self._result


@pytest.fixture
def fake_asyncssh(monkeypatch):
    # Per-test state
    state = {"conns": {}, "connects": [], "keys": []}

    async def fake_connect(host: str, **kwargs):
        state["connects"].append({"host": host, **kwargs})
        conn = state["conns"].get(host)
        if conn is None:
            raise OSError(f"connection refused by {host}")
        return conn

    def fake_import_private_key(data):
        state["keys"].append(data)
        return "client-key"

    monkeypatch.setattr(asyncssh, "connect", fake_connect)
    monkeypatch.setattr(asyncssh, "import_private_key", fake_import_private_key)
    return state


def test_run_script_pipes_the_script_into_bash(fake_asyncssh):
    conn = _FakeConn(_RunResult(exit_status=0, stdout=b"done\n", stderr=b""))
    fake_asyncssh["conns"]["203.0.113.7"] = conn

    ex = RemoteExecutor("a2V5", ssh_user="root")
    res = ex.run_script("203.0.113.7", "echo $1\n", port=40022, args=["compute"])

    assert res.success is True
    assert res.return_code == 0
    assert res.stdout == "done\n"
    assert res.host == "203.0.113.7:40022"
    assert conn.ran == [{"command": "bash -s -- compute", "input": "echo $1\n"}]

    connect = fake_asyncssh["connects"][0]
    assert connect["port"] == 40022
    assert connect["username"] == "root"
    assert connect["client_keys"] == ["client-key"]
    assert connect["known_hosts"] is None
    assert fake_asyncssh["keys"] == [b"key"]


def test_run_script_quotes_arguments(fake_asyncssh):
    conn = _FakeConn(_RunResult(exit_status=0))
    fake_asyncssh["conns"]["1.2.3.4"] = conn

    RemoteExecutor("a2V5").run_script("1.2.3.4", "true", args=["two words"])
    assert conn.ran[0]["command"] == "bash -s -- 'two words'"


def test_run_script_failure_exit_codes(fake_asyncssh):
    fake_asyncssh["conns"]["1.2.3.4"] = _FakeConn(_RunResult(exit_status=2, stderr="boom"))
    fake_asyncssh["conns"]["5.6.7.8"] = _FakeConn(_RunResult(exit_status=None))
    ex = RemoteExecutor("a2V5")

    res = ex.run_script("1.2.3.4", "exit 2")
    assert res.success is False
    assert res.return_code == 2
    assert res.stderr == "boom"

    res = ex.run_script("5.6.7.8", "kill -9 $$")
    assert res.success is False
    assert res.return_code == -1


def test_unreachable_host_raises_connection_error(fake_asyncssh):
    with pytest.raises(ConnectionError, match="9.9.9.9:22"):
        RemoteExecutor("a2V5").run_script("9.9.9.9", "true")


class _HangingConn(_FakeConn):
    def __init__(self):
        super().__init__(_RunResult(exit_status=0))
        self.closed = False

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True
        return False

    async def run(self, command: str, input: Optional[str] = None, check: bool = False):
        await asyncio.sleep(30)
        return self._result


def test_cancelling_the_context_stops_a_running_script(fake_asyncssh):
    conn = _HangingConn()
    fake_asyncssh["conns"]["1.2.3.4"] = conn
    ctx = RunContext.background()
    threading.Timer(0.1, ctx.cancel).start()

    start = time.monotonic()
    with pytest.raises(OperationCancelled):
        RemoteExecutor("a2V5").run_script("1.2.3.4", "sleep infinity", ctx=ctx)

    assert time.monotonic() - start < 5
    assert conn.closed


def test_run_script_times_out(fake_asyncssh):
    fake_asyncssh["conns"]["1.2.3.4"] = _HangingConn()

    with pytest.raises(asyncio.TimeoutError):
        RemoteExecutor("a2V5").run_script("1.2.3.4", "sleep infinity", timeout=0.2)


def test_cancelled_context_skips_the_connection(fake_asyncssh):
    ctx = RunContext.background()
    ctx.cancel()

    with pytest.raises(OperationCancelled):
        RemoteExecutor("a2V5").run_script("1.2.3.4", "true", ctx=ctx)
    assert fake_asyncssh["connects"] == []

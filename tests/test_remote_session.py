from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import asyncssh
import pytest

from cluster_bootstrap.utils.remote import RemoteCommandError, SSHSession


@dataclass
class _RunResult:
    exit_status: Optional[int]
    stdout: Any = ""
    stderr: Any = ""


class _FakeListener:
    def __init__(self, port: int):
        self._port = port

    def get_port(self) -> int:
        return self._port


class _FakeConn:
    def __init__(self, run_results: Dict[str, _RunResult]):
        self._run_results = run_results
        self.ran: List[str] = []
        self.forwards: List[tuple] = []
        self.closed = False

    async def run(self, command: str, check: bool = False):
        self.ran.append(command)
        return self._run_results.get(command, _RunResult(exit_status=0, stdout="", stderr=""))

    async def forward_local_port_to_path(self, listen_host: str, listen_port: int, dest_path: str):
        self.forwards.append((listen_host, listen_port, dest_path))
        return _FakeListener(40123)

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


@pytest.fixture
def fake_asyncssh(monkeypatch):
    state = {
        "connects": [],
        "conn": _FakeConn(run_results={}),
        "fail": None,
    }

    async def fake_connect(host: str, **kwargs):
        state["connects"].append((host, kwargs))
        if state["fail"] is not None:
            raise state["fail"]
        return state["conn"]

    monkeypatch.setattr(asyncssh, "connect", fake_connect)
    return state


def test_connect_passes_user_port_and_expanded_key(fake_asyncssh, monkeypatch):
    monkeypatch.setenv("HOME", "/home/tester")

    session = SSHSession.connect("ubuntu", "203.0.113.10", 2222, key_path="~/.ssh/k")
    try:
        host, kwargs = fake_asyncssh["connects"][0]
        assert host == "203.0.113.10"
        assert kwargs["username"] == "ubuntu"
        assert kwargs["port"] == 2222
        assert kwargs["client_keys"] == ["/home/tester/.ssh/k"]
        assert kwargs["known_hosts"] is None
        assert session.destination == "ubuntu@203.0.113.10:2222"
    finally:
        session.close()


def test_connect_without_key_uses_agent_and_default_keys(fake_asyncssh):
    session = SSHSession.connect("root", "203.0.113.10")
    session.close()

    _, kwargs = fake_asyncssh["connects"][0]
    assert kwargs["client_keys"] is None
    assert kwargs["port"] == 22


def test_connect_failure_propagates(fake_asyncssh):
    fake_asyncssh["fail"] = asyncssh.PermissionDenied("denied")
    with pytest.raises(asyncssh.PermissionDenied):
        SSHSession.connect("root", "203.0.113.10")


def test_run_returns_text_output(fake_asyncssh):
    fake_asyncssh["conn"] = _FakeConn(run_results={"uname": _RunResult(exit_status=0, stdout=b"Linux\n")})

    with SSHSession.connect("root", "203.0.113.10") as session:
        res = session.run("uname")

    assert res.success is True
    assert res.return_code == 0
    assert res.stdout == "Linux\n"
    assert res.host == "203.0.113.10"


def test_run_non_zero_exit_raises_when_checked(fake_asyncssh):
    fake_asyncssh["conn"] = _FakeConn(run_results={"bad": _RunResult(exit_status=2, stderr="no such file")})

    with SSHSession.connect("root", "203.0.113.10") as session:
        with pytest.raises(RemoteCommandError, match="no such file") as exc_info:
            session.run("bad")
        assert exc_info.value.result.return_code == 2

        res = session.run("bad", check=False)
        assert res.success is False


def test_run_missing_exit_status_is_failure(fake_asyncssh):
    fake_asyncssh["conn"] = _FakeConn(run_results={"x": _RunResult(exit_status=None)})

    with SSHSession.connect("root", "203.0.113.10") as session:
        res = session.run("x", check=False)
    assert res.return_code == -1
    assert res.success is False


def test_forward_local_port_to_path(fake_asyncssh):
    with SSHSession.connect("root", "203.0.113.10") as session:
        port = session.forward_local_port_to_path("/run/cluster-agent/agent.sock")

    assert port == 40123
    assert fake_asyncssh["conn"].forwards == [("127.0.0.1", 0, "/run/cluster-agent/agent.sock")]


def test_close_is_idempotent_and_closes_connection(fake_asyncssh):
    session = SSHSession.connect("root", "203.0.113.10")
    session.close()
    session.close()
    assert fake_asyncssh["conn"].closed is True

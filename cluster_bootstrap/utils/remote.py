"""
Remote Shell Utilities

Provides a blocking SSH session for running scripts on a remote machine
and tunnelling to the cluster agent's Unix socket.

This module uses `asyncssh`. Each session keeps its connection on a
private event loop running in a background thread, so the connection
(and any port forwarding) stays alive between blocking calls.
"""

import asyncio
import concurrent.futures
import threading
from dataclasses import dataclass
from typing import Any, Coroutine, Optional, TypeVar

import asyncssh
from loguru import logger

from ..configs.types import expand_home_dir, new_ssh_destination

T = TypeVar("T")

# Raised by blocking calls that hit their deadline. Distinct classes before Python 3.11.
TIMEOUT_ERRORS = (TimeoutError, asyncio.TimeoutError, concurrent.futures.TimeoutError)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        return value
    return str(value)


@dataclass
class CommandResult:
    """Result of a remote command execution"""
    host: str
    success: bool
    stdout: str
    stderr: str
    return_code: int


class RemoteCommandError(Exception):
    """Remote command exited with a non-zero status"""

    def __init__(self, result: CommandResult):
        self.result = result
        detail = result.stderr.strip() or result.stdout.strip()
        super().__init__(f"remote command failed with exit code {result.return_code}: {detail}")


class SSHSession:
    """
    A live SSH connection to one remote machine.

    Use SSHSession.connect() to open it and close() (or a with block) to
    release it. Blocking calls abort the in-flight remote operation when
    they time out or the caller is interrupted.
    """

    def __init__(
        self,
        conn: asyncssh.SSHClientConnection,
        loop: asyncio.AbstractEventLoop,
        thread: threading.Thread,
        user: str,
        host: str,
        port: int,
        key_path: str = "",
    ):
        self._conn = conn
        self._loop = loop
        self._thread = thread
        self.user = user
        self.host = host
        self.port = port
        self.key_path = key_path
        self._closed = False

    @property
    def destination(self) -> str:
        return new_ssh_destination(self.user, self.host, self.port)

    @staticmethod
    def _start_loop() -> "tuple[asyncio.AbstractEventLoop, threading.Thread]":
        loop = asyncio.new_event_loop()
        thread = threading.Thread(target=loop.run_forever, name="ssh-session", daemon=True)
        thread.start()
        return loop, thread

    @staticmethod
    def _stop_loop(loop: asyncio.AbstractEventLoop, thread: threading.Thread) -> None:
        loop.call_soon_threadsafe(loop.stop)
        thread.join()
        loop.close()

    @staticmethod
    def _wait(loop: asyncio.AbstractEventLoop, coro: Coroutine[Any, Any, T], timeout: Optional[float]) -> T:
        fut = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return fut.result(timeout)
        except BaseException:
            # Timeout or interrupt: stop the remote operation before propagating.
            fut.cancel()
            raise

    @classmethod
    def connect(
        cls,
        user: str,
        host: str,
        port: int = 22,
        key_path: str = "",
        connect_timeout: float = 30.0,
        keepalive_interval: float = 30.0,
    ) -> "SSHSession":
        """
        Open an SSH session.

        Args:
            user: SSH username
            host: Host IP or hostname
            port: SSH port
            key_path: Private key path, empty to use the SSH agent and default keys
            connect_timeout: SSH connect timeout seconds
            keepalive_interval: SSH keepalive interval seconds

        Raises:
            asyncssh.Error, OSError: If the connection or authentication fails
        """
        client_keys = [expand_home_dir(key_path)] if key_path else None

        async def do_connect() -> asyncssh.SSHClientConnection:
            return await asyncssh.connect(
                host,
                port=port,
                username=user,
                client_keys=client_keys,
                known_hosts=None,
                connect_timeout=connect_timeout,
                keepalive_interval=keepalive_interval,
            )

        loop, thread = cls._start_loop()
        try:
            conn = cls._wait(loop, do_connect(), timeout=None)
        except BaseException:
            cls._stop_loop(loop, thread)
            raise

        logger.debug(f"SSH session opened to {new_ssh_destination(user, host, port)}")
        return cls(conn, loop, thread, user=user, host=host, port=port, key_path=key_path)

    def run(self, command: str, check: bool = True, timeout: Optional[float] = None) -> CommandResult:
        """
        Run a command or script on the remote machine.

        Raises:
            RemoteCommandError: If check is set and the command exits non-zero
        """
        res = self._wait(self._loop, self._conn.run(command, check=False), timeout)
        exit_status = res.exit_status if res.exit_status is not None else -1
        result = CommandResult(
            host=self.host,
            success=exit_status == 0,
            stdout=_as_text(res.stdout),
            stderr=_as_text(res.stderr),
            return_code=int(exit_status),
        )
        if check and not result.success:
            raise RemoteCommandError(result)
        return result

    def forward_local_port_to_path(self, remote_path: str, timeout: Optional[float] = 30.0) -> int:
        """Forward an ephemeral localhost port to a Unix socket on the remote machine"""

        async def do_forward() -> int:
            listener = await self._conn.forward_local_port_to_path("127.0.0.1", 0, remote_path)
            return listener.get_port()

        port = self._wait(self._loop, do_forward(), timeout)
        logger.debug(f"Forwarding 127.0.0.1:{port} to {self.destination}:{remote_path}")
        return port

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        async def do_close() -> None:
            self._conn.close()
            await self._conn.wait_closed()

        try:
            self._wait(self._loop, do_close(), timeout=10.0)
        finally:
            self._stop_loop(self._loop, self._thread)
        logger.debug(f"SSH session to {self.destination} closed")

    def __enter__(self) -> "SSHSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

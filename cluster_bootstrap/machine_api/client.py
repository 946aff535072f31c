"""
Machine API JSON-RPC Client

A client for the cluster agent's machine and cluster APIs. The agent
listens on a Unix socket which is reached through an SSH tunnel, or
directly on a TCP address.
"""

from typing import Dict, List, Optional, Any

import requests

from loguru import logger

from ..utils.remote import SSHSession
from .types import (
    AddMachineRequest,
    InitClusterRequest,
    JoinClusterRequest,
    MachineInfo,
    MachineMember,
    PrerequisitesCheck,
    PrerequisitesStatus,
)

DEFAULT_SOCKET_PATH = "/run/cluster-agent/agent.sock"
DEFAULT_API_PORT = 51000

# JSON-RPC "method not found", returned by agents that predate a method
METHOD_NOT_FOUND = -32601


class MachineApiError(Exception):
    """Error from the machine API"""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC Error {code}: {message}")

    @property
    def unimplemented(self) -> bool:
        return self.code == METHOD_NOT_FOUND


class MachineClient:
    """
    Client for the machine API of a single cluster agent.

    Owns the SSH session it was built on, if any: close() releases both.
    """

    DEFAULT_TIMEOUT = 30  # seconds

    def __init__(self, url: str, timeout: int = DEFAULT_TIMEOUT, session: Optional[SSHSession] = None):
        """
        Initialize the RPC client.

        Args:
            url: JSON-RPC endpoint URL
            timeout: Request timeout in seconds
            session: SSH session carrying the tunnel to url, closed with the client
        """
        self.url = url
        self.timeout = timeout
        self._session = session
        self._request_id = 0
        self._closed = False

    @classmethod
    def over_ssh(
        cls,
        session: SSHSession,
        socket_path: str = DEFAULT_SOCKET_PATH,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> "MachineClient":
        """Build a client tunnelled over an SSH session. Takes ownership of the session."""
        try:
            port = session.forward_local_port_to_path(socket_path)
        except BaseException:
            session.close()
            raise
        return cls(f"http://127.0.0.1:{port}/rpc", timeout=timeout, session=session)

    @classmethod
    def over_tcp(cls, address: str, timeout: int = DEFAULT_TIMEOUT) -> "MachineClient":
        """Build a client for an agent API exposed directly on host[:port]"""
        if address.startswith("[") or address.count(":") == 1:
            host_port = address
        elif ":" in address:
            host_port = f"[{address}]:{DEFAULT_API_PORT}"
        else:
            host_port = f"{address}:{DEFAULT_API_PORT}"
        return cls(f"http://{host_port}/rpc", timeout=timeout)

    def _next_id(self) -> int:
        """Get next request ID"""
        self._request_id += 1
        return self._request_id

    def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Make an RPC call.

        Args:
            method: RPC method name
            params: Method parameters

        Returns:
            Result from RPC call

        Raises:
            MachineApiError: If the call fails or RPC returns an error
            requests.Timeout: If the agent doesn't answer within the timeout
        """
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": params or {},
        }

        logger.debug(f"RPC {method} -> {self.url}")
        try:
            response = requests.post(
                self.url,
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()

            result = response.json()
        except requests.Timeout:
            raise
        except requests.RequestException as e:
            raise MachineApiError(-1, f"Request failed: {e}")
        except ValueError as e:
            raise MachineApiError(-1, f"Invalid response: {e}")

        if "error" in result:
            error = result["error"]
            raise MachineApiError(
                code=error.get("code", -1),
                message=error.get("message", "Unknown error"),
                data=error.get("data"),
            )

        return result.get("result")

    # ==================== Machine API ====================

    def inspect(self) -> MachineInfo:
        """Get the machine's cluster identity (empty id if not a member)"""
        return MachineInfo.from_dict(self.call("Machine.Inspect"))

    def check_prerequisites(self) -> PrerequisitesCheck:
        """
        Check the machine meets the system requirements.

        Agents that don't implement the check report UNSUPPORTED instead of
        an error. Any other failure raises MachineApiError.
        """
        try:
            result = self.call("Machine.CheckPrerequisites") or {}
        except MachineApiError as e:
            if e.unimplemented:
                return PrerequisitesCheck(status=PrerequisitesStatus.UNSUPPORTED)
            raise

        if result.get("satisfied"):
            return PrerequisitesCheck(status=PrerequisitesStatus.SATISFIED)
        return PrerequisitesCheck(status=PrerequisitesStatus.NOT_SATISFIED, error=result.get("error", ""))

    def token(self) -> str:
        """Get the machine's token"""
        return (self.call("Machine.Token") or {}).get("token", "")

    def init_cluster(self, req: InitClusterRequest) -> MachineInfo:
        result = self.call("Machine.InitCluster", req.to_dict()) or {}
        return MachineInfo.from_dict(result.get("machine"))

    def join_cluster(self, req: JoinClusterRequest) -> None:
        self.call("Machine.JoinCluster", req.to_dict())

    def reset(self) -> None:
        self.call("Machine.Reset")

    # ==================== Cluster API ====================

    def add_machine(self, req: AddMachineRequest) -> MachineInfo:
        """Register a machine in the cluster and return its assigned identity"""
        result = self.call("Cluster.AddMachine", req.to_dict()) or {}
        return MachineInfo.from_dict(result.get("machine"))

    def list_machines(self) -> List[MachineMember]:
        result = self.call("Cluster.ListMachines") or {}
        return [MachineMember.from_dict(m) for m in result.get("machines") or []]

    # ==================== Lifecycle ====================

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._session is not None:
            self._session.close()

    def __enter__(self) -> "MachineClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

import ipaddress
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from cluster_bootstrap.configs import BootstrapConfig
from cluster_bootstrap.context_management import ConnectionRegistry
from cluster_bootstrap.machine_api import (
    MachineApiError,
    MachineInfo,
    MachineMember,
    MachineToken,
    NetworkConfig,
    PrerequisitesCheck,
    PrerequisitesStatus,
)


def make_token(public_ip: Optional[str] = "198.51.100.7") -> str:
    return MachineToken(
        public_key=bytes(range(32)),
        endpoints=["10.0.0.5:51820", "198.51.100.7:51820"],
        public_ip=ipaddress.ip_address(public_ip) if public_ip else None,
    ).encode()


class FakeMachineClient:
    """Stands in for both the machine API of a new machine and the cluster API."""

    def __init__(
        self,
        info: Optional[MachineInfo] = None,
        prerequisites: Optional[PrerequisitesCheck] = None,
        token: str = "",
        members: Optional[List[MachineInfo]] = None,
        failures: Optional[Dict[str, Exception]] = None,
        assigned_id: str = "new-machine-id",
    ):
        self.info = info or MachineInfo()
        self.prerequisites = prerequisites or PrerequisitesCheck(status=PrerequisitesStatus.SATISFIED)
        self._token = token or make_token()
        self.members = list(members or [])
        self.failures = failures or {}
        self.assigned_id = assigned_id
        self.calls: List[str] = []
        self.requests: Dict[str, object] = {}
        self.closed = False

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]

    def inspect(self) -> MachineInfo:
        self._record("inspect")
        return self.info

    def check_prerequisites(self) -> PrerequisitesCheck:
        self._record("check_prerequisites")
        return self.prerequisites

    def token(self) -> str:
        self._record("token")
        return self._token

    def reset(self) -> None:
        self._record("reset")
        self.info = MachineInfo()

    def init_cluster(self, req) -> MachineInfo:
        self._record("init_cluster")
        self.requests["init_cluster"] = req
        self.info = MachineInfo(id="founder-id", name=req.machine_name or "machine-1")
        return self.info

    def add_machine(self, req) -> MachineInfo:
        self._record("add_machine")
        self.requests["add_machine"] = req
        machine = MachineInfo(
            id=self.assigned_id,
            name=req.name or "machine-new",
            network=req.network,
            public_ip=req.public_ip,
        )
        self.members.append(machine)
        return machine

    def list_machines(self) -> List[MachineMember]:
        self._record("list_machines")
        return [MachineMember(machine=m, state="UP") for m in self.members]

    def join_cluster(self, req) -> None:
        self._record("join_cluster")
        self.requests["join_cluster"] = req

    def close(self) -> None:
        self.closed = True


class FakeProvisioner:
    def __init__(self, client: Optional[FakeMachineClient] = None, error: Optional[Exception] = None):
        self.client = client or FakeMachineClient()
        self.error = error
        self.calls = []

    def provision(self, machine, version: str = ""):
        self.calls.append((machine, version))
        if self.error is not None:
            raise self.error
        return self.client


class FakeConnector:
    def __init__(self, client: Optional[FakeMachineClient] = None, error: Optional[Exception] = None):
        self.client = client or FakeMachineClient(
            info=MachineInfo(id="founder-id", name="machine-1"),
            members=[MachineInfo(id="founder-id", name="machine-1", network=NetworkConfig(endpoints=["10.0.0.1:51820"]))],
        )
        self.error = error
        self.calls = []

    def connect(self, context_name: str = "", options=None):
        self.calls.append(context_name)
        if self.error is not None:
            raise self.error
        return self.client


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "config" / "config.json"


@pytest.fixture
def registry(config_path: Path) -> ConnectionRegistry:
    return ConnectionRegistry(BootstrapConfig(path=str(config_path)))


@pytest.fixture
def unimplemented_error() -> MachineApiError:
    return MachineApiError(-32601, "Method not found")

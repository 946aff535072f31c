"""
Machine API Types

Wire types exchanged with the cluster agent's machine and cluster APIs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Any


@dataclass
class NetworkConfig:
    """Overlay network configuration of a machine"""
    endpoints: List[str] = field(default_factory=list)
    # Base64-encoded overlay public key
    public_key: str = ""
    subnet: Optional[str] = None
    management_ip: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "endpoints": list(self.endpoints),
            "public_key": self.public_key,
        }
        if self.subnet:
            result["subnet"] = self.subnet
        if self.management_ip:
            result["management_ip"] = self.management_ip
        return result

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "NetworkConfig":
        data = data or {}
        return cls(
            endpoints=list(data.get("endpoints") or []),
            public_key=data.get("public_key", ""),
            subnet=data.get("subnet"),
            management_ip=data.get("management_ip"),
        )


@dataclass
class MachineInfo:
    """The cluster's record of a machine. Empty id means not a cluster member."""
    id: str = ""
    name: str = ""
    network: NetworkConfig = field(default_factory=NetworkConfig)
    public_ip: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "network": self.network.to_dict(),
        }
        if self.public_ip:
            result["public_ip"] = self.public_ip
        return result

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MachineInfo":
        data = data or {}
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            network=NetworkConfig.from_dict(data.get("network")),
            public_ip=data.get("public_ip") or None,
        )


@dataclass
class MachineMember:
    """A machine as listed by the cluster, with its membership state"""
    machine: MachineInfo
    state: str = "UNKNOWN"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MachineMember":
        return cls(
            machine=MachineInfo.from_dict(data.get("machine")),
            state=data.get("state", "UNKNOWN"),
        )


class PrerequisitesStatus(str, Enum):
    """Outcome of a machine prerequisites check"""
    SATISFIED = "satisfied"
    NOT_SATISFIED = "not_satisfied"
    # Older agents don't implement the check
    UNSUPPORTED = "unsupported"


@dataclass
class PrerequisitesCheck:
    status: PrerequisitesStatus
    error: str = ""


@dataclass
class InitClusterRequest:
    machine_name: str
    network: str
    # Exact public IP; mutually exclusive with public_ip_auto
    public_ip: Optional[str] = None
    public_ip_auto: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "machine_name": self.machine_name,
            "network": self.network,
        }
        if self.public_ip:
            result["public_ip"] = self.public_ip
        elif self.public_ip_auto:
            result["public_ip_auto"] = True
        return result


@dataclass
class AddMachineRequest:
    name: str
    network: NetworkConfig
    public_ip: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "network": self.network.to_dict(),
        }
        if self.public_ip:
            result["public_ip"] = self.public_ip
        return result


@dataclass
class JoinClusterRequest:
    machine: MachineInfo
    other_machines: List[MachineInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "machine": self.machine.to_dict(),
            "other_machines": [m.to_dict() for m in self.other_machines],
        }

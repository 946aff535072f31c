"""
Configuration Type Definitions

Local cluster config: contexts, their connection records and the
transient description of a bare remote machine to provision.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Tuple


# Fallback SSH private key used when no key is given and SSH agent authentication fails.
DEFAULT_SSH_KEY_PATH = "~/.ssh/id_ed25519"
DEFAULT_CONTEXT_NAME = "default"
DEFAULT_SSH_USER = "root"
DEFAULT_SSH_PORT = 22
DEFAULT_NETWORK = "10.210.0.0/16"
DEFAULT_CONFIG_PATH = "~/.config/cluster-bootstrap/config.json"


def expand_home_dir(path: str) -> str:
    """Expand a leading ~ to the invoking user's home directory."""
    return os.path.expanduser(path) if path else path


def new_ssh_destination(user: str, host: str, port: int) -> str:
    """Encode an SSH destination as user@host:port (IPv6 hosts in brackets)."""
    if ":" in host:
        host = f"[{host}]"
    return f"{user}@{host}:{port}"


def parse_ssh_destination(destination: str) -> Tuple[str, str, int]:
    """
    Parse an SSH destination string into (user, host, port).

    Accepts host, user@host, user@host:port, [ipv6]:port and bare ipv6.
    The user defaults to root and the port to 22.

    Raises:
        ValueError: If the destination is empty or malformed
    """
    if not destination:
        raise ValueError("empty SSH destination")

    user, sep, host_port = destination.rpartition("@")
    if not sep:
        user = DEFAULT_SSH_USER
    elif not user:
        raise ValueError(f"empty user in SSH destination '{destination}'")

    port_str = None
    if host_port.startswith("["):
        end = host_port.find("]")
        if end == -1:
            raise ValueError(f"unterminated IPv6 host in SSH destination '{destination}'")
        host = host_port[1:end]
        rest = host_port[end + 1:]
        if rest:
            if not rest.startswith(":"):
                raise ValueError(f"invalid SSH destination '{destination}'")
            port_str = rest[1:]
    elif host_port.count(":") == 1:
        host, port_str = host_port.split(":")
    else:
        # Bare IPv6 address or plain hostname.
        host = host_port

    if not host:
        raise ValueError(f"empty host in SSH destination '{destination}'")

    port = DEFAULT_SSH_PORT
    if port_str is not None:
        if not port_str.isdigit():
            raise ValueError(f"invalid port in SSH destination '{destination}'")
        port = int(port_str)
    if not 1 <= port <= 65535:
        raise ValueError(f"port out of range in SSH destination '{destination}'")

    return user, host, port


@dataclass
class RemoteMachine:
    """A bare remote machine reachable over SSH"""
    host: str
    user: str = DEFAULT_SSH_USER
    port: int = DEFAULT_SSH_PORT
    # Empty means SSH agent first, then DEFAULT_SSH_KEY_PATH
    key_path: str = ""

    @property
    def destination(self) -> str:
        return new_ssh_destination(self.user, self.host, self.port)


@dataclass
class MachineConnection:
    """One way to reach a cluster: an SSH destination or a direct API address"""
    ssh: str = ""
    ssh_key_file: str = ""
    tcp: str = ""

    @classmethod
    def from_remote_machine(cls, machine: RemoteMachine) -> "MachineConnection":
        return cls(
            ssh=new_ssh_destination(machine.user, machine.host, machine.port),
            ssh_key_file=machine.key_path,
        )

    def describe(self) -> str:
        if self.ssh:
            return f"ssh://{self.ssh}"
        if self.tcp:
            return f"tcp://{self.tcp}"
        return "<empty connection>"

    def to_dict(self) -> Dict[str, str]:
        result = {}
        if self.ssh:
            result["ssh"] = self.ssh
        if self.ssh_key_file:
            result["ssh_key_file"] = self.ssh_key_file
        if self.tcp:
            result["tcp"] = self.tcp
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MachineConnection":
        return cls(
            ssh=data.get("ssh", ""),
            ssh_key_file=data.get("ssh_key_file", ""),
            tcp=data.get("tcp", ""),
        )


@dataclass
class ContextConfig:
    """A named cluster context with its ordered connections"""
    name: str
    connections: List[MachineConnection] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"connections": [c.to_dict() for c in self.connections]}

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "ContextConfig":
        return cls(
            name=name,
            connections=[MachineConnection.from_dict(c) for c in data.get("connections", [])],
        )


@dataclass
class BootstrapConfig:
    """Root of the local config: all contexts plus the current context pointer"""
    contexts: Dict[str, ContextConfig] = field(default_factory=dict)
    current_context: str = ""
    # Where the config was loaded from and will be saved to
    path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_context": self.current_context,
            "contexts": {name: ctx.to_dict() for name, ctx in self.contexts.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: Optional[str] = None) -> "BootstrapConfig":
        contexts = {
            name: ContextConfig.from_dict(name, ctx_data or {})
            for name, ctx_data in (data.get("contexts") or {}).items()
        }
        return cls(
            contexts=contexts,
            current_context=data.get("current_context") or "",
            path=path,
        )

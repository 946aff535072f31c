"""
Machine API Module

Client and wire types for the cluster agent API, and machine token parsing.
"""

from .client import MachineClient, MachineApiError, DEFAULT_SOCKET_PATH, DEFAULT_API_PORT
from .token import MachineToken, parse_token
from .types import (
    NetworkConfig,
    MachineInfo,
    MachineMember,
    PrerequisitesStatus,
    PrerequisitesCheck,
    InitClusterRequest,
    AddMachineRequest,
    JoinClusterRequest,
)

__all__ = [
    "MachineClient",
    "MachineApiError",
    "DEFAULT_SOCKET_PATH",
    "DEFAULT_API_PORT",
    "MachineToken",
    "parse_token",
    "NetworkConfig",
    "MachineInfo",
    "MachineMember",
    "PrerequisitesStatus",
    "PrerequisitesCheck",
    "InitClusterRequest",
    "AddMachineRequest",
    "JoinClusterRequest",
]

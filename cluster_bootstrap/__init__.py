"""
Cluster Bootstrap

Bootstraps a multi-machine cluster over SSH: installs the cluster agent on
a bare remote machine, founds a new cluster on it or admits it into an
existing one, and keeps local contexts describing how to reach clusters.

Features:
- Cluster initialisation on a remote machine with idempotent context naming
- Adding machines to an existing cluster with peer configuration in one step
- Ordered failover across every stored connection of a context
- SSH agent authentication with a default key fallback

Usage:
    from cluster_bootstrap import BootstrapOrchestrator, InitClusterOptions, RemoteMachine

    orchestrator = BootstrapOrchestrator.from_config_file()
    client = orchestrator.init_cluster(InitClusterOptions(
        remote_machine=RemoteMachine(host="203.0.113.10"),
    ))
    client.close()

CLI:
    cluster-bootstrap machine init root@203.0.113.10
    cluster-bootstrap machine add ubuntu@203.0.113.11
    cluster-bootstrap context ls
"""

__version__ = "0.1.0"

# Core types
from .configs import (
    RemoteMachine,
    MachineConnection,
    ContextConfig,
    BootstrapConfig,
    ConfigLoader,
)

# Main orchestrator
from .main import (
    BootstrapOrchestrator,
    InitClusterOptions,
    AddMachineOptions,
    PUBLIC_IP_AUTO,
)

# Components
from .context_management import ConnectionRegistry
from .cluster_connection import ClusterConnector, ConnectOptions, first_success
from .provisioning import RemoteProvisioner
from .machine_api import MachineClient, MachineApiError, MachineInfo, parse_token
from .utils.remote import SSHSession

from .exceptions import BootstrapError

__all__ = [
    # Version
    "__version__",
    # Types
    "RemoteMachine",
    "MachineConnection",
    "ContextConfig",
    "BootstrapConfig",
    "ConfigLoader",
    # Main
    "BootstrapOrchestrator",
    "InitClusterOptions",
    "AddMachineOptions",
    "PUBLIC_IP_AUTO",
    # Components
    "ConnectionRegistry",
    "ClusterConnector",
    "ConnectOptions",
    "first_success",
    "RemoteProvisioner",
    "MachineClient",
    "MachineApiError",
    "MachineInfo",
    "parse_token",
    "SSHSession",
    # Errors
    "BootstrapError",
]

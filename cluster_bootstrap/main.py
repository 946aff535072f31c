"""
Main Orchestrator Module

This module ties together context management, cluster connection and
remote provisioning to found a new cluster on a remote machine or admit
a new machine into an existing cluster.
"""

import ipaddress
import time
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from loguru import logger

from .configs import RemoteMachine, MachineConnection, DEFAULT_NETWORK
from .context_management import ConnectionRegistry
from .cluster_connection import ClusterConnector, ConnectOptions
from .exceptions import (
    MachineAlreadyMemberError,
    MachineResetDeclinedError,
    PreconditionError,
    PrerequisitesError,
    RpcError,
    TokenError,
)
from .machine_api import (
    AddMachineRequest,
    InitClusterRequest,
    JoinClusterRequest,
    MachineApiError,
    MachineClient,
    MachineInfo,
    NetworkConfig,
    PrerequisitesStatus,
    parse_token,
)
from .provisioning import RemoteProvisioner

# Public IP value asking the machine to detect its public IP automatically
PUBLIC_IP_AUTO = "auto"

RESET_WAIT_TIMEOUT = 60.0
RESET_POLL_INTERVAL = 1.0


@dataclass
class InitClusterOptions:
    """Options for initialising a new cluster"""
    context: str = ""
    machine_name: str = ""
    network: str = DEFAULT_NETWORK
    # None: don't configure; a valid address: use it; anything else (e.g. "auto"): detect
    public_ip: Optional[str] = None
    remote_machine: Optional[RemoteMachine] = None
    # Agent version to install, empty for latest
    version: str = ""


@dataclass
class AddMachineOptions:
    """Options for adding a machine to an existing cluster"""
    context: str = ""
    machine_name: str = ""
    # None: don't configure; a valid address: use it; anything else: use the detected IP from the token
    public_ip: Optional[str] = None
    remote_machine: Optional[RemoteMachine] = None
    version: str = ""


def concrete_ip(value: Optional[str]) -> Optional[str]:
    """Return the normalised address if value is a usable IP, None for zero/invalid/auto"""
    if not value:
        return None
    try:
        ip = ipaddress.ip_address(value)
    except ValueError:
        return None
    if ip.is_unspecified:
        return None
    return str(ip)


def confirm_reset_machine(machine: MachineInfo) -> bool:
    """Ask the user whether an already initialised machine should be reset"""
    print(f"The remote machine is already initialised as a cluster member ('{machine.name}').")
    answer = input("Do you want to reset the machine and continue? [y/N]: ").strip().lower()
    return answer in ("y", "yes")


def _rpc(operation: str, fn: Callable, *args):
    """Call a machine API method, wrapping API errors with the operation name"""
    try:
        return fn(*args)
    except MachineApiError as e:
        raise RpcError(operation, e) from e


def prompt_reset_machine(
    client: MachineClient,
    machine: MachineInfo,
    confirm: Callable[[MachineInfo], bool],
    timeout: float = RESET_WAIT_TIMEOUT,
    interval: float = RESET_POLL_INTERVAL,
) -> None:
    """
    Reset a machine that already belongs to a cluster, after user confirmation.

    Raises:
        MachineResetDeclinedError: If the user declines
        RpcError: If the reset call fails
        PreconditionError: If the machine doesn't come back reset in time
    """
    if not confirm(machine):
        raise MachineResetDeclinedError(
            f"machine '{machine.name}' is already initialised as a cluster member and reset was declined"
        )

    _rpc("reset remote machine", client.reset)
    logger.info("Resetting the remote machine...")

    deadline = time.monotonic() + timeout
    last_error: Optional[Exception] = None
    while True:
        try:
            if not client.inspect().id:
                return
        except MachineApiError as e:
            # The agent restarts while resetting.
            last_error = e
        if time.monotonic() >= deadline:
            break
        time.sleep(interval)

    detail = f": {last_error}" if last_error else ""
    raise PreconditionError(f"machine was not reset within {timeout:.0f}s{detail}")


def check_prerequisites(client: MachineClient) -> None:
    """
    Check the machine meets the system requirements.

    Agents that don't support the check are let through.

    Raises:
        PrerequisitesError: If requirements are not satisfied
        RpcError: If the check fails
    """
    check = _rpc("check machine prerequisites", client.check_prerequisites)
    if check.status == PrerequisitesStatus.UNSUPPORTED:
        logger.debug("Machine agent doesn't support prerequisites check, proceeding")
    elif check.status == PrerequisitesStatus.NOT_SATISFIED:
        raise PrerequisitesError(f"machine prerequisites not satisfied: {check.error}")


class BootstrapOrchestrator:
    """
    Orchestrates cluster initialisation and machine admission.

    Clients returned by init_cluster() and add_machine() are owned by the
    caller. Every client created along the way is closed if a workflow fails.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        provisioner: Optional[RemoteProvisioner] = None,
        connector: Optional[ClusterConnector] = None,
        confirm_reset: Callable[[MachineInfo], bool] = confirm_reset_machine,
    ):
        """
        Initialize the orchestrator.

        Args:
            registry: Local cluster contexts
            provisioner: Installs the agent on remote machines
            connector: Connects to existing clusters (defaults to the registry's contexts)
            confirm_reset: Asks whether an already initialised machine may be reset
        """
        self.registry = registry
        self.provisioner = provisioner or RemoteProvisioner()
        self.connector = connector or ClusterConnector(registry)
        self.confirm_reset = confirm_reset

    @classmethod
    def from_config_file(
        cls,
        config_path: Optional[str] = None,
        override: Optional[MachineConnection] = None,
        **kwargs,
    ) -> "BootstrapOrchestrator":
        registry = ConnectionRegistry.from_file(config_path)
        connector = ClusterConnector(registry, override=override)
        return cls(registry, connector=connector, **kwargs)

    def connect_cluster(self, context_name: str = "", options: Optional[ConnectOptions] = None) -> MachineClient:
        """Connect to a cluster by context name (empty for current). The caller closes the client."""
        return self.connector.connect(context_name, options)

    # ==================== Init Cluster ====================

    def init_cluster(self, opts: InitClusterOptions) -> MachineClient:
        """
        Initialise a new cluster on a remote machine and save it as a context.

        Returns:
            Client for the founding machine, owned by the caller

        Raises:
            NotImplementedError: If no remote machine is given
        """
        if opts.remote_machine is None:
            raise NotImplementedError("local machine initialisation is not implemented")

        remote = opts.remote_machine
        context_name = self.registry.new_context_name(opts.context, remote)

        with ExitStack() as stack:
            client = self.provisioner.provision(remote, opts.version)
            stack.callback(client.close)

            minfo = _rpc("inspect machine", client.inspect)
            if minfo.id:
                prompt_reset_machine(client, minfo, self.confirm_reset)

            check_prerequisites(client)

            public_ip = None
            public_ip_auto = False
            if opts.public_ip is not None:
                public_ip = concrete_ip(opts.public_ip)
                public_ip_auto = public_ip is None

            req = InitClusterRequest(
                machine_name=opts.machine_name,
                network=opts.network,
                public_ip=public_ip,
                public_ip_auto=public_ip_auto,
            )
            machine = _rpc("init cluster", client.init_cluster, req)
            logger.info(
                f"Cluster initialised with machine '{machine.name}' and saved as context "
                f"'{context_name}' in your local config ({self.registry.config_path})"
            )

            self.registry.create_context(context_name)
            self.registry.set_current_context(context_name)
            logger.info(f"Current cluster context is now '{context_name}'.")
            self.registry.add_connection(context_name, remote)

            stack.pop_all()
            return client

    # ==================== Add Machine ====================

    def add_machine(self, opts: AddMachineOptions) -> Tuple[MachineClient, MachineClient]:
        """
        Provision a remote machine and add it to an existing cluster.

        Returns:
            Tuple of (cluster client used to register the machine, client for the
            new machine). Both are owned by the caller.

        Raises:
            MachineAlreadyMemberError: If the machine already belongs to this cluster
            TokenError: If the machine's token is malformed
        """
        if opts.remote_machine is None:
            raise ValueError("remote machine is required to add a machine")

        remote = opts.remote_machine
        context_name = opts.context or self.registry.config.current_context

        with ExitStack() as stack:
            cluster = self.connector.connect(context_name)
            stack.callback(cluster.close)

            client = self.provisioner.provision(remote, opts.version)
            stack.callback(client.close)

            minfo = _rpc("inspect machine", client.inspect)
            if minfo.id:
                members = _rpc("list cluster machines", cluster.list_machines)
                if any(m.machine.id == minfo.id for m in members):
                    raise MachineAlreadyMemberError(f"machine is already a member of this cluster ({minfo.name})")
                prompt_reset_machine(client, minfo, self.confirm_reset)

            check_prerequisites(client)

            raw_token = _rpc("get remote machine token", client.token)
            try:
                token = parse_token(raw_token)
            except TokenError as e:
                raise TokenError(f"parse remote machine token: {e.message}") from e

            public_ip = None
            if opts.public_ip is not None:
                public_ip = concrete_ip(opts.public_ip)
                if public_ip is None and token.public_ip is not None:
                    public_ip = concrete_ip(str(token.public_ip))

            add_req = AddMachineRequest(
                name=opts.machine_name,
                network=NetworkConfig(endpoints=token.endpoints, public_key=token.public_key_b64),
                public_ip=public_ip,
            )
            machine = _rpc(f"add machine to cluster (context '{context_name}')", cluster.add_machine, add_req)

            # Membership may have changed since the first listing.
            members = _rpc("list cluster machines", cluster.list_machines)
            other_machines: List[MachineInfo] = [m.machine for m in members if m.machine.id != machine.id]

            _rpc("join cluster", client.join_cluster, JoinClusterRequest(machine=machine, other_machines=other_machines))
            logger.info(f"Machine '{machine.name}' added to the cluster (context '{context_name}').")

            if context_name in self.registry.config.contexts:
                self.registry.append_connection(context_name, MachineConnection.from_remote_machine(remote))
            else:
                logger.info("Cluster connection was given explicitly, not saving the machine to any context")

            stack.pop_all()
            return cluster, client

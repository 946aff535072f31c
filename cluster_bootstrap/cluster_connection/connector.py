"""
Cluster Connector

Produces a live machine API client for a cluster context by trying its
stored connections one after another.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Sequence, TypeVar

from loguru import logger

from ..configs import MachineConnection, parse_ssh_destination
from ..context_management import ConnectionRegistry
from ..exceptions import ClusterConnectionError, ConfigurationError
from ..machine_api import MachineClient
from ..utils.remote import SSHSession

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class ConnectOptions:
    """Options for connecting to a cluster"""
    # Log connection attempts at INFO instead of DEBUG
    show_progress: bool = True


class AttemptsExhaustedError(Exception):
    """All candidates failed"""

    def __init__(self, attempts: int, last_error: Optional[Exception]):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"all {attempts} attempts failed; last error: {last_error}")


def first_success(candidates: Sequence[T], factory: Callable[[T], R]) -> R:
    """
    Try candidates in order and return the first factory result that succeeds.

    Attempts are strictly sequential and stop at the first success. Only the
    last error is kept.

    Raises:
        AttemptsExhaustedError: If every candidate fails (or there are none)
    """
    last_error: Optional[Exception] = None
    for candidate in candidates:
        try:
            return factory(candidate)
        except Exception as e:
            last_error = e
    raise AttemptsExhaustedError(len(candidates), last_error)


def parse_connection_override(value: str, key_file: str = "") -> MachineConnection:
    """
    Parse a connection override: ssh://[user@]host[:port], tcp://host[:port]
    or a bare [user@]host[:port] SSH destination.

    Raises:
        ConfigurationError: If the value is not a valid connection
    """
    scheme, sep, rest = value.partition("://")
    if not sep:
        scheme, rest = "ssh", value

    if scheme == "tcp":
        if not rest:
            raise ConfigurationError(f"invalid connection '{value}': empty TCP address")
        return MachineConnection(tcp=rest)
    if scheme != "ssh":
        raise ConfigurationError(f"invalid connection '{value}': unsupported scheme '{scheme}'")

    try:
        parse_ssh_destination(rest)
    except ValueError as e:
        raise ConfigurationError(f"invalid connection '{value}': {e}")
    return MachineConnection(ssh=rest, ssh_key_file=key_file)


def connect_machine(conn: MachineConnection, timeout: int = MachineClient.DEFAULT_TIMEOUT) -> MachineClient:
    """
    Connect to the machine API behind one connection record and check it responds.

    Raises:
        ValueError: If the record has no usable destination
        asyncssh.Error, OSError, MachineApiError: If the machine can't be reached
    """
    if conn.ssh:
        user, host, port = parse_ssh_destination(conn.ssh)
        session = SSHSession.connect(user, host, port, key_path=conn.ssh_key_file)
        client = MachineClient.over_ssh(session, timeout=timeout)
    elif conn.tcp:
        client = MachineClient.over_tcp(conn.tcp, timeout=timeout)
    else:
        raise ValueError("connection has neither an SSH destination nor a TCP address")

    try:
        client.inspect()
    except BaseException:
        client.close()
        raise
    return client


class ClusterConnector:
    """Connects to a cluster through a context's stored connections or an explicit override"""

    def __init__(
        self,
        registry: Optional[ConnectionRegistry] = None,
        override: Optional[MachineConnection] = None,
        connect_fn: Callable[[MachineConnection], MachineClient] = connect_machine,
    ):
        """
        Initialize the connector.

        Args:
            registry: Registry of stored cluster contexts
            override: Connection used instead of any stored context
            connect_fn: Builds a live client from one connection record
        """
        if registry is None and override is None:
            raise ValueError("either a registry or an override connection is required")
        self.registry = registry
        self.override = override
        self._connect_fn = connect_fn

    def connect(self, context_name: str = "", options: Optional[ConnectOptions] = None) -> MachineClient:
        """
        Connect to the cluster of the given context (empty for the current one).

        Raises:
            ConfigurationError: If the context can't be resolved
            ClusterConnectionError: If every stored connection fails
        """
        options = options or ConnectOptions()
        log = logger.info if options.show_progress else logger.debug

        if self.override is not None:
            log(f"Connecting to {self.override.describe()}")
            return self._connect_fn(self.override)

        name, connections = self.registry.resolve_context(context_name)

        def attempt(conn: MachineConnection) -> MachineClient:
            log(f"Connecting to cluster '{name}' via {conn.describe()}")
            try:
                return self._connect_fn(conn)
            except Exception as e:
                logger.debug(f"Connection {conn.describe()} failed: {e}")
                raise

        try:
            return first_success(connections, attempt)
        except AttemptsExhaustedError as e:
            raise ClusterConnectionError(
                f"failed to connect to cluster context '{name}': all connections ({e.attempts}) "
                f"in the config ({self.registry.config_path}) failed; last error: {e.last_error}"
            ) from e.last_error

"""
Connection Registry

Owns the local mapping of cluster contexts to their ordered connection
records. Every mutating operation persists the whole config.
"""

from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

from loguru import logger

from ..configs import (
    BootstrapConfig,
    ConfigLoader,
    ContextConfig,
    MachineConnection,
    RemoteMachine,
    DEFAULT_CONTEXT_NAME,
    DEFAULT_SSH_KEY_PATH,
    expand_home_dir,
    parse_ssh_destination,
)
from ..exceptions import ConfigurationError, ContextNameConflictError, NotFoundError


@dataclass
class ContextSummary:
    """Listing entry for a cluster context"""
    name: str
    connections: int
    current: bool


class ConnectionRegistry:
    """Manages cluster contexts and their connections in the local config"""

    def __init__(self, config: BootstrapConfig):
        self.config = config

    @classmethod
    def from_file(cls, config_path: Optional[str] = None) -> "ConnectionRegistry":
        return cls(ConfigLoader.load_from_file(config_path))

    @property
    def config_path(self) -> str:
        return self.config.path or "<in-memory config>"

    def save(self) -> None:
        """Persist the whole config"""
        ConfigLoader.save_to_file(self.config)

    def create_context(self, name: str) -> None:
        """Create an empty context if it doesn't exist yet"""
        if name not in self.config.contexts:
            self.config.contexts[name] = ContextConfig(name=name)
            logger.debug(f"Created cluster context '{name}'")
        self.save()

    def set_current_context(self, name: str) -> None:
        if name not in self.config.contexts:
            raise NotFoundError(f"cluster context '{name}' not found", self.config_path)
        self.config.current_context = name
        self.save()

    def list_contexts(self) -> List[ContextSummary]:
        return [
            ContextSummary(
                name=name,
                connections=len(ctx.connections),
                current=name == self.config.current_context,
            )
            for name, ctx in sorted(self.config.contexts.items())
        ]

    def resolve_context(self, name: str = "") -> Tuple[str, List[MachineConnection]]:
        """
        Resolve a context name to its ordered connections.

        Args:
            name: Context name, empty for the current context

        Returns:
            Tuple of the resolved context name and its connections

        Raises:
            ConfigurationError: If the context can't be resolved to at least one connection
        """
        if not self.config.contexts:
            raise ConfigurationError(
                f"no cluster contexts found in the config ({self.config_path}). "
                "Please initialise a cluster with 'cluster-bootstrap machine init' first"
            )

        if not name:
            if not self.config.current_context:
                raise ConfigurationError(
                    f"the current cluster context is not set in the config ({self.config_path}). "
                    "Please specify the context with the '--context' flag or set 'current_context' in the config"
                )
            if self.config.current_context not in self.config.contexts:
                raise ConfigurationError(
                    f"current cluster context '{self.config.current_context}' not found in the config "
                    f"({self.config_path}). Please specify the context with the '--context' flag "
                    "or update 'current_context' in the config"
                )
            name = self.config.current_context

        ctx = self.config.contexts.get(name)
        if ctx is None:
            raise ConfigurationError(
                f"cluster context '{name}' not found in the config ({self.config_path})"
            )
        if not ctx.connections:
            raise ConfigurationError(
                f"no connection configurations found for cluster context '{name}' "
                f"in the config ({self.config_path})"
            )
        return name, list(ctx.connections)

    @staticmethod
    def matches_machine(conn: MachineConnection, machine: RemoteMachine) -> bool:
        """Check if a stored connection points at the remote machine with the same key"""
        if not conn.ssh:
            return False
        try:
            user, host, port = parse_ssh_destination(conn.ssh)
        except ValueError:
            return False

        return (
            user == machine.user
            and host == machine.host
            and port == machine.port
            and expand_home_dir(conn.ssh_key_file) == expand_home_dir(machine.key_path)
        )

    def find_context_by_machine(self, machine: RemoteMachine) -> str:
        """Return the first context with a connection matching the machine, or empty"""
        for name, ctx in self.config.contexts.items():
            if any(self.matches_machine(conn, machine) for conn in ctx.connections):
                return name
        return ""

    def new_context_name(self, name: str, machine: Optional[RemoteMachine] = None) -> str:
        """
        Pick the context name a newly initialised cluster is saved under.

        An explicit non-default name must be free or already point at the same
        machine. The default name reuses any context that already points at the
        machine (re-initialising it), otherwise the first free "default[-N]".

        Raises:
            ContextNameConflictError: If an explicit name is taken by another connection
        """
        if not name:
            name = DEFAULT_CONTEXT_NAME

        if machine is not None and not machine.key_path:
            # Compare as the key the login falls back to. The caller's machine stays
            # unchanged so provisioning still tries the SSH agent first.
            machine = replace(machine, key_path=DEFAULT_SSH_KEY_PATH)

        existing = self.config.contexts.get(name)
        if existing is not None and machine is not None:
            if any(self.matches_machine(conn, machine) for conn in existing.connections):
                return name
            if name != DEFAULT_CONTEXT_NAME:
                raise ContextNameConflictError(
                    f"cluster context '{name}' already exists with different connection", self.config_path
                )

        if name == DEFAULT_CONTEXT_NAME and machine is not None:
            matched = self.find_context_by_machine(machine)
            if matched:
                return matched

        if name not in self.config.contexts:
            return name

        if name != DEFAULT_CONTEXT_NAME:
            raise ContextNameConflictError(f"cluster context '{name}' already exists", self.config_path)

        i = 1
        while True:
            candidate = f"{DEFAULT_CONTEXT_NAME}-{i}"
            if candidate not in self.config.contexts:
                return candidate
            i += 1

    def _get_context(self, name: str) -> ContextConfig:
        ctx = self.config.contexts.get(name)
        if ctx is None:
            raise NotFoundError(f"cluster context '{name}' not found", self.config_path)
        return ctx

    def add_connection(self, name: str, machine: RemoteMachine) -> None:
        """Add the machine's SSH connection to the context unless an equivalent one is stored"""
        ctx = self._get_context(name)
        if any(self.matches_machine(conn, machine) for conn in ctx.connections):
            logger.debug(f"Connection {machine.destination} already stored in context '{name}'")
        else:
            ctx.connections.append(MachineConnection.from_remote_machine(machine))
        self.save()

    def append_connection(self, name: str, conn: MachineConnection) -> None:
        """Append a connection to the context as is"""
        self._get_context(name).connections.append(conn)
        self.save()

"""
Configuration Module

Provides the local cluster config types and loading utilities.
"""

from .types import (
    DEFAULT_SSH_KEY_PATH,
    DEFAULT_CONTEXT_NAME,
    DEFAULT_SSH_USER,
    DEFAULT_SSH_PORT,
    DEFAULT_NETWORK,
    DEFAULT_CONFIG_PATH,
    RemoteMachine,
    MachineConnection,
    ContextConfig,
    BootstrapConfig,
    expand_home_dir,
    new_ssh_destination,
    parse_ssh_destination,
)

from .loader import ConfigLoader, default_config_path

__all__ = [
    # Defaults
    "DEFAULT_SSH_KEY_PATH",
    "DEFAULT_CONTEXT_NAME",
    "DEFAULT_SSH_USER",
    "DEFAULT_SSH_PORT",
    "DEFAULT_NETWORK",
    "DEFAULT_CONFIG_PATH",
    # Config types
    "RemoteMachine",
    "MachineConnection",
    "ContextConfig",
    "BootstrapConfig",
    # Helpers
    "expand_home_dir",
    "new_ssh_destination",
    "parse_ssh_destination",
    # Utilities
    "ConfigLoader",
    "default_config_path",
]

"""
Cluster Connection Module

Connects to an existing cluster with ordered failover across stored connections.
"""

from .connector import (
    ClusterConnector,
    ConnectOptions,
    AttemptsExhaustedError,
    first_success,
    connect_machine,
    parse_connection_override,
)

__all__ = [
    "ClusterConnector",
    "ConnectOptions",
    "AttemptsExhaustedError",
    "first_success",
    "connect_machine",
    "parse_connection_override",
]

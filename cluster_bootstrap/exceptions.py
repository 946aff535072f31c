"""
Cluster Bootstrap Exception Hierarchy

Every error raised by the bootstrap workflows carries a user-displayable
message plus optional context (config path, target machine, operation).
"""

from typing import Optional


class BootstrapError(Exception):
    """Base exception for all cluster bootstrap errors."""

    def __init__(self, message: str, context: Optional[str] = None):
        self.message = message
        self.context = context
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with optional context."""
        if self.context:
            return f"{self.message} ({self.context})"
        return self.message


class ConfigurationError(BootstrapError):
    """Raised when the local cluster config cannot be used as requested."""


class NotFoundError(BootstrapError):
    """Raised when a named object does not exist."""


class ContextNameConflictError(BootstrapError):
    """Raised when a context name is already bound to a different connection."""


class ConnectivityError(BootstrapError):
    """Raised when a machine or cluster cannot be reached."""


class SSHLoginError(ConnectivityError):
    """Raised when SSH login to a remote machine fails."""


class ClusterConnectionError(ConnectivityError):
    """Raised when all stored connections of a context fail."""


class ProvisionError(BootstrapError):
    """Raised when installing the cluster agent on a remote machine fails."""


class PreconditionError(BootstrapError):
    """Raised when a machine is not in a state that allows the operation."""


class MachineResetDeclinedError(PreconditionError):
    """Raised when the user declines to reset an already initialised machine."""


class MachineAlreadyMemberError(PreconditionError):
    """Raised when a machine is already a member of the target cluster."""


class PrerequisitesError(BootstrapError):
    """Raised when a machine does not meet the system requirements."""


class TokenError(BootstrapError):
    """Raised when a machine token is malformed."""


class RpcError(BootstrapError):
    """Raised when a machine API call fails. Wraps the failing operation name."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation}: {cause}")

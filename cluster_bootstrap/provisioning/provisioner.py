"""Remote Machine Provisioner"""

import os
import shlex
from typing import Callable, Optional

from loguru import logger

from ..configs import RemoteMachine, DEFAULT_SSH_KEY_PATH
from ..exceptions import ProvisionError, SSHLoginError
from ..machine_api import MachineClient
from ..utils.remote import SSHSession, TIMEOUT_ERRORS

INSTALL_SCRIPT_URL = "https://get.cluster-agent.dev/install.sh"
INSTALL_URL_ENV = "CLUSTER_BOOTSTRAP_INSTALL_URL"
SUPERUSER = "root"


def build_install_script(user: str, version: str = "", script_url: str = INSTALL_SCRIPT_URL) -> str:
    """
    Shell script that installs and starts the cluster agent and its dependencies.

    The version is passed to the installer verbatim, empty means latest. A
    non-root user gets sudo and is added to the agent's group.
    """
    sudo = "" if user == SUPERUSER else "sudo "
    env = [f"AGENT_VERSION={shlex.quote(version)}"]
    if user != SUPERUSER:
        env.append(f"AGENT_GROUP_USERS={shlex.quote(user)}")
    return (
        "set -eu\n"
        f"curl -fsSL {shlex.quote(script_url)} -o /tmp/cluster-agent-install.sh\n"
        f"{sudo}env {' '.join(env)} sh /tmp/cluster-agent-install.sh\n"
        "rm -f /tmp/cluster-agent-install.sh\n"
    )


class RemoteProvisioner:
    """Installs the cluster agent on a bare machine over SSH and connects to its API"""

    def __init__(
        self,
        ssh_connect: Callable[..., SSHSession] = SSHSession.connect,
        client_factory: Callable[[SSHSession], MachineClient] = MachineClient.over_ssh,
        install_script_url: Optional[str] = None,
        install_timeout: float = 900.0,
    ):
        self._ssh_connect = ssh_connect
        self._client_factory = client_factory
        self.install_script_url = (
            install_script_url or os.getenv(INSTALL_URL_ENV, "").strip() or INSTALL_SCRIPT_URL
        )
        self.install_timeout = install_timeout

    def _login(self, machine: RemoteMachine) -> SSHSession:
        """
        Open an SSH session to the machine.

        Without an explicit key the SSH agent is tried first, then the default
        key. machine.key_path is updated to the key that worked.
        """
        try:
            return self._ssh_connect(machine.user, machine.host, machine.port, key_path=machine.key_path)
        except TIMEOUT_ERRORS:
            raise
        except Exception as e:
            if machine.key_path:
                raise SSHLoginError(f"SSH login to remote machine {machine.destination}: {e}") from e
            logger.debug(f"SSH agent login to {machine.destination} failed, retrying with {DEFAULT_SSH_KEY_PATH}: {e}")

        machine.key_path = DEFAULT_SSH_KEY_PATH
        try:
            return self._ssh_connect(machine.user, machine.host, machine.port, key_path=machine.key_path)
        except TIMEOUT_ERRORS:
            raise
        except Exception as e:
            raise SSHLoginError(f"SSH login to remote machine {machine.destination}: {e}") from e

    def provision(self, machine: RemoteMachine, version: str = "") -> MachineClient:
        """
        Install the cluster agent on the remote machine and return a client for its API.

        The caller owns the returned client and must close it.

        Args:
            machine: Remote machine, key_path may be updated to the default key
            version: Agent version to install, empty for latest

        Raises:
            SSHLoginError: If SSH login fails
            ProvisionError: If installation or connecting to the agent fails
            TimeoutError: If login, installation or the tunnel setup times out
        """
        session = self._login(machine)
        try:
            logger.info(f"Installing cluster agent {version or 'latest'} on {machine.destination}")
            session.run(
                build_install_script(machine.user, version, self.install_script_url),
                timeout=self.install_timeout,
            )
        except TIMEOUT_ERRORS:
            session.close()
            raise
        except Exception as e:
            session.close()
            raise ProvisionError(f"provision machine {machine.destination}: {e}") from e
        except BaseException:
            session.close()
            raise

        if machine.user != SUPERUSER:
            # Group membership granting access to the agent socket only applies
            # to a new login session.
            session.close()
            session = self._login(machine)

        try:
            return self._client_factory(session)
        except TIMEOUT_ERRORS:
            raise
        except Exception as e:
            raise ProvisionError(f"connect to remote machine {machine.destination}: {e}") from e

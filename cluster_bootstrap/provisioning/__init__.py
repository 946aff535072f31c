"""
Provisioning Module

Installs the cluster agent on bare remote machines over SSH.
"""

from .provisioner import RemoteProvisioner, build_install_script, INSTALL_SCRIPT_URL

__all__ = [
    "RemoteProvisioner",
    "build_install_script",
    "INSTALL_SCRIPT_URL",
]

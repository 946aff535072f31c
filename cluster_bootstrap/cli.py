"""
Command Line Interface for Cluster Bootstrap

Provides commands for:
- machine init: Initialise a new cluster on a remote machine
- machine add: Add a remote machine to an existing cluster
- context ls: List cluster contexts
- context use: Switch the current cluster context
- context create: Create an empty cluster context
"""

import argparse
import os
import sys
from typing import Optional

from dotenv import load_dotenv
from loguru import logger

from .configs import RemoteMachine, DEFAULT_NETWORK, parse_ssh_destination
from .cluster_connection import parse_connection_override
from .context_management import ConnectionRegistry
from .main import (
    AddMachineOptions,
    BootstrapOrchestrator,
    InitClusterOptions,
    confirm_reset_machine,
)

CONNECT_ENV = "CLUSTER_BOOTSTRAP_CONNECT"


def setup_logger(verbose: bool = False):
    """Setup logger configuration"""
    logger.remove()
    level = "DEBUG" if verbose else "INFO"
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
               "<level>{level: <8}</level> | "
               "<level>{message}</level>",
        level=level,
    )


def parse_remote_machine(destination: str, key_path: Optional[str] = None) -> RemoteMachine:
    """Build a RemoteMachine from a [user@]host[:port] argument"""
    try:
        user, host, port = parse_ssh_destination(destination)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))
    return RemoteMachine(host=host, user=user, port=port, key_path=key_path or "")


def get_orchestrator(args) -> BootstrapOrchestrator:
    """Get orchestrator from args"""
    override = None
    connect = getattr(args, "connect", None) or os.getenv(CONNECT_ENV, "").strip()
    if connect:
        override = parse_connection_override(connect, key_file=getattr(args, "connect_key", None) or "")

    confirm = (lambda _machine: True) if getattr(args, "yes", False) else confirm_reset_machine
    return BootstrapOrchestrator.from_config_file(args.config, override=override, confirm_reset=confirm)


# === Machine Commands ===

def machine_init_command(args):
    """Machine init command handler"""
    setup_logger(args.verbose)

    try:
        orchestrator = get_orchestrator(args)
        remote = parse_remote_machine(args.destination, args.ssh_key) if args.destination else None

        logger.info("Initialising a new cluster...")
        client = orchestrator.init_cluster(InitClusterOptions(
            context=args.context or "",
            machine_name=args.name or "",
            network=args.network,
            public_ip=args.public_ip,
            remote_machine=remote,
            version=args.version or "",
        ))
        client.close()
        return 0

    except Exception as e:
        logger.error(f"Cluster initialisation failed: {e}")
        return 1


def machine_add_command(args):
    """Machine add command handler"""
    setup_logger(args.verbose)

    try:
        orchestrator = get_orchestrator(args)
        remote = parse_remote_machine(args.destination, args.ssh_key)

        logger.info(f"Adding machine {remote.destination} to the cluster...")
        cluster, client = orchestrator.add_machine(AddMachineOptions(
            context=args.context or "",
            machine_name=args.name or "",
            public_ip=args.public_ip,
            remote_machine=remote,
            version=args.version or "",
        ))
        try:
            client.close()
        finally:
            cluster.close()
        return 0

    except Exception as e:
        logger.error(f"Adding machine failed: {e}")
        return 1


# === Context Commands ===

def context_ls_command(args):
    """Context list command handler"""
    setup_logger(args.verbose)

    try:
        registry = ConnectionRegistry.from_file(args.config)
        contexts = registry.list_contexts()
        if not contexts:
            logger.info(f"No cluster contexts found in {registry.config_path}")
            return 0

        print(f"{'NAME':<24} {'CURRENT':<8} CONNECTIONS")
        for ctx in contexts:
            print(f"{ctx.name:<24} {'*' if ctx.current else '':<8} {ctx.connections}")
        return 0

    except Exception as e:
        logger.error(f"Listing contexts failed: {e}")
        return 1


def context_use_command(args):
    """Context use command handler"""
    setup_logger(args.verbose)

    try:
        registry = ConnectionRegistry.from_file(args.config)
        registry.set_current_context(args.name)
        logger.info(f"Current cluster context is now '{args.name}'.")
        return 0

    except Exception as e:
        logger.error(f"Switching context failed: {e}")
        return 1


def context_create_command(args):
    """Context create command handler"""
    setup_logger(args.verbose)

    try:
        registry = ConnectionRegistry.from_file(args.config)
        registry.create_context(args.name)
        logger.info(f"Cluster context '{args.name}' saved in {registry.config_path}")
        return 0

    except Exception as e:
        logger.error(f"Creating context failed: {e}")
        return 1


def _add_machine_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-n", "--name", help="Machine name (assigned by the cluster if omitted)")
    parser.add_argument(
        "--public-ip",
        help="Public IP of the machine, or 'auto' to use the automatically detected one",
    )
    parser.add_argument("--version", help="Cluster agent version to install (default: latest)")
    parser.add_argument("-i", "--ssh-key", help="SSH private key (default: SSH agent, then ~/.ssh/id_ed25519)")
    parser.add_argument("--context", help="Cluster context name")
    parser.add_argument("-y", "--yes", action="store_true", help="Reset an already initialised machine without asking")


def main():
    """Main CLI entry point"""
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Cluster Bootstrap Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Initialise a new cluster on a remote machine
  cluster-bootstrap machine init root@203.0.113.10

  # Add another machine to the current cluster
  cluster-bootstrap machine add ubuntu@203.0.113.11:2222 -i ~/.ssh/cluster --name node-2

  # Add a machine to a cluster reached through an explicit connection
  cluster-bootstrap --connect ssh://root@203.0.113.10 machine add root@203.0.113.12

  # List and switch cluster contexts
  cluster-bootstrap context ls
  cluster-bootstrap context use prod
        """
    )

    # Global arguments
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("-c", "--config", help="Config file path (default: $CLUSTER_BOOTSTRAP_CONFIG or ~/.config/cluster-bootstrap/config.json)")
    parser.add_argument(
        "--connect",
        help="Connect to the cluster via ssh://user@host[:port] or tcp://host[:port] instead of the config",
    )
    parser.add_argument(
        "--connect-key",
        help="SSH private key for the --connect connection (default: SSH agent and default keys)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Machine commands
    machine_parser = subparsers.add_parser("machine", help="Manage cluster machines")
    machine_sub = machine_parser.add_subparsers(dest="machine_command", required=True)

    init_parser = machine_sub.add_parser("init", help="Initialise a new cluster on a remote machine")
    init_parser.add_argument("destination", nargs="?", help="Remote machine as [user@]host[:port]")
    init_parser.add_argument("--network", default=DEFAULT_NETWORK, help=f"Cluster network (default: {DEFAULT_NETWORK})")
    _add_machine_arguments(init_parser)
    init_parser.set_defaults(func=machine_init_command)

    add_parser = machine_sub.add_parser("add", help="Add a remote machine to a cluster")
    add_parser.add_argument("destination", help="Remote machine as [user@]host[:port]")
    _add_machine_arguments(add_parser)
    add_parser.set_defaults(func=machine_add_command)

    # Context commands
    context_parser = subparsers.add_parser("context", help="Manage cluster contexts")
    context_sub = context_parser.add_subparsers(dest="context_command", required=True)

    ls_parser = context_sub.add_parser("ls", help="List cluster contexts")
    ls_parser.set_defaults(func=context_ls_command)

    use_parser = context_sub.add_parser("use", help="Switch the current cluster context")
    use_parser.add_argument("name", help="Context name")
    use_parser.set_defaults(func=context_use_command)

    create_parser = context_sub.add_parser("create", help="Create an empty cluster context")
    create_parser.add_argument("name", help="Context name")
    create_parser.set_defaults(func=context_create_command)

    # Parse and execute
    args = parser.parse_args()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
syno-iscsi - CLI for interacting with Synology iSCSI storage

Usage examples:
    syno-iscsi --host nas.local --user admin volume list
    syno-iscsi lun create --thin --reclaim data01 /volume1 100
    syno-iscsi target delete --force --skip-verify target01

Connection settings can also be given through SYNO_HOST, SYNO_PORT,
SYNO_USER, SYNO_PASS and SYNO_HTTPS, directly or in a .env file.
"""

import sys
import logging
import argparse
import traceback
from typing import Dict, List, Optional, TextIO

from syno_iscsi import __version__
from syno_iscsi.components.iscsi_component import ISCSIComponent, ISCSIConfig
from syno_iscsi.config import (
    DEFAULT_PORT, HOST_ENV_VAR, PORT_ENV_VAR, USER_ENV_VAR, PASS_ENV_VAR,
    HTTPS_ENV_VAR, VERIFY_SSL_ENV_VAR, load_connection_config
)
from syno_iscsi.dsm_client import DSMClient, StorageClient
from syno_iscsi.errors import ISCSIError

logger = logging.getLogger("syno_iscsi")


def setup_logging(verbose: bool = False) -> logging.Logger:
    """
    Set up logging configuration.

    Log records go to stderr so they never mix with command output.

    Args:
        verbose: Whether to use DEBUG level logging

    Returns:
        Configured logger instance
    """
    log_level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler()
        ]
    )
    logger.setLevel(log_level)
    return logger


def _add_command(
    subparsers: argparse._SubParsersAction,
    name: str,
    command: str,
    help_text: str,
    args_usage: str = ""
) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(
        name,
        help=help_text,
        description=help_text,
        usage=f"%(prog)s [options] {args_usage}".rstrip()
    )
    # Counted by the component so a wrong count gives a short error, not a usage dump
    parser.add_argument("arguments", nargs="*", help=argparse.SUPPRESS)
    parser.set_defaults(command=command, option_names=())
    return parser


def build_parser() -> argparse.ArgumentParser:
    """
    Build the command line parser.

    Returns:
        ArgumentParser with global connection flags and all commands
    """
    parser = argparse.ArgumentParser(
        prog="syno-iscsi",
        description="CLI for interacting with Synology iSCSI storage"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s v{__version__}")

    # Connection configuration
    parser.add_argument("--host", help=f"synology host or ip (${HOST_ENV_VAR})")
    parser.add_argument("--port", type=int, help=f"port on which synology DSM is listening (${PORT_ENV_VAR}, default: {DEFAULT_PORT})")
    parser.add_argument("--user", help=f"synology user (${USER_ENV_VAR})")
    parser.add_argument("--pass", dest="password", help=f"synology password (${PASS_ENV_VAR}, prompted if missing)")
    parser.add_argument("--https", action="store_true", default=None, help=f"use https for connection to synology DSM (${HTTPS_ENV_VAR})")
    parser.add_argument("--verify-ssl", action="store_true", default=None, help=f"verify the DSM TLS certificate (${VERIFY_SSL_ENV_VAR})")
    parser.add_argument("--env-file", help="load connection settings from this file (default: .env)")

    # General options
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    groups = parser.add_subparsers(dest="group", metavar="{volume,lun,target}", required=True)

    # Volume commands
    volume_parser = groups.add_parser("volume", help="Volume management (list)")
    volume_commands = volume_parser.add_subparsers(dest="action", required=True)
    _add_command(volume_commands, "list", "volume list", "list volumes")

    # LUN commands
    lun_parser = groups.add_parser("lun", help="LUN management (list, create, map, resize, clone, delete)")
    lun_commands = lun_parser.add_subparsers(dest="action", required=True)

    _add_command(lun_commands, "list", "lun list", "list LUNs")

    create_parser = _add_command(lun_commands, "create", "lun create", "create a LUN", "<name> <volume> <size-in-gb>")
    create_parser.add_argument("--thin", "-t", action="store_true", help="use thin provisioning")
    create_parser.add_argument("--reclaim", "-r", action="store_true", help="enable space reclamation (thin provisioning only)")
    create_parser.add_argument("--sync-cache", "-s", action="store_true", help="enable FUA and Sync Cache commands, recommended for SSDs")
    create_parser.set_defaults(option_names=("thin", "reclaim", "sync_cache"))

    _add_command(lun_commands, "map", "lun map", "map a LUN to a target", "<lun-name> <target-name>")
    _add_command(lun_commands, "resize", "lun resize", "resize LUN by name (can only be increased)", "<name> <new-size-in-gb>")
    _add_command(lun_commands, "clone", "lun clone", "clone a LUN", "<source-lun> <destination-lun> <volume>")

    lun_delete_parser = _add_command(lun_commands, "delete", "lun delete", "delete LUN by name", "<name>")
    lun_delete_parser.add_argument("--skip-verify", "-s", action="store_true", help="skip verification")
    lun_delete_parser.set_defaults(option_names=("skip_verify",))

    # Target commands
    target_parser = groups.add_parser("target", help="Target management (list, create, delete)")
    target_commands = target_parser.add_subparsers(dest="action", required=True)

    _add_command(target_commands, "list", "target list", "list targets")
    _add_command(target_commands, "create", "target create", "create a target", "<name> <iqn>")

    target_delete_parser = _add_command(target_commands, "delete", "target delete", "delete target by name", "<name>")
    target_delete_parser.add_argument("--force", "-f", action="store_true", help="force deletion")
    target_delete_parser.add_argument("--skip-verify", "-s", action="store_true", help="skip verification")
    target_delete_parser.set_defaults(option_names=("force", "skip_verify"))

    return parser


def main(
    argv: Optional[List[str]] = None,
    out: Optional[TextIO] = None,
    inp: Optional[TextIO] = None,
    client: Optional[StorageClient] = None
) -> int:
    """
    Main function.

    Args:
        argv: Command line arguments (default: sys.argv[1:])
        out: Output stream (default: stdout)
        inp: Stream confirmation answers are read from (default: stdin)
        client: Storage client to use instead of a DSMClient

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    out = out or sys.stdout

    try:
        connection = load_connection_config(args)
        config: ISCSIConfig = {'connection': connection}

        component = ISCSIComponent(
            config,
            client or DSMClient(verify_ssl=connection['verify_ssl']),
            out=out,
            inp=inp
        )

        options: Dict[str, bool] = {name: getattr(args, name) for name in args.option_names}
        component.run(args.command, args.arguments, options)

    except ISCSIError as e:
        print(f"Error: {e}", file=out)
        return 1

    except Exception as e:
        logger.debug(traceback.format_exc())
        print(f"Unknown error: {e}", file=out)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())

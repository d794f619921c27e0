#!/usr/bin/env python3
"""
Connection configuration for syno-iscsi.

Settings come from command line flags first, then from the environment.
An optional .env file is loaded into the environment beforehand; variables
already set in the real environment win over the file.
"""

import os
import logging
import argparse
from pathlib import Path
from typing import List, Optional, TypedDict

from dotenv import load_dotenv

from syno_iscsi.errors import ISCSIError

logger = logging.getLogger("syno_iscsi.config")

DEFAULT_PORT = 5000
DEFAULT_ENV_FILE = ".env"

HOST_ENV_VAR = "SYNO_HOST"
PORT_ENV_VAR = "SYNO_PORT"
USER_ENV_VAR = "SYNO_USER"
PASS_ENV_VAR = "SYNO_PASS"
HTTPS_ENV_VAR = "SYNO_HTTPS"
VERIFY_SSL_ENV_VAR = "SYNO_VERIFY_SSL"

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"", "0", "false", "no", "off"}


class ConnectionConfig(TypedDict):
    """Everything needed to open a session with the appliance."""
    host: str
    port: int
    user: str
    password: str
    https: bool
    verify_ssl: bool


def _env_bool(name: str) -> bool:
    raw = os.environ.get(name, "")
    match raw.strip().lower():
        case value if value in TRUE_VALUES:
            return True
        case value if value in FALSE_VALUES:
            return False
        case _:
            raise ISCSIError(f"invalid value for {name}: {raw}")


def _env_port() -> int:
    raw = os.environ.get(PORT_ENV_VAR)
    if not raw:
        return DEFAULT_PORT
    try:
        return int(raw)
    except ValueError:
        raise ISCSIError(f"invalid value for {PORT_ENV_VAR}: {raw}")


def load_env_file(env_file: Optional[str]) -> bool:
    """
    Load variables from a .env file if it exists.

    Args:
        env_file: Path of the file, defaults to .env in the working directory

    Returns:
        True if a file was loaded
    """
    env_path = Path(os.path.expanduser(env_file or DEFAULT_ENV_FILE))
    if not env_path.is_file():
        if env_file:
            logger.warning(f"Specified .env file not found: {env_file}")
        return False

    load_dotenv(dotenv_path=env_path, override=False)
    logger.debug(f"Loaded environment variables from {env_path}")
    return True


def load_connection_config(args: argparse.Namespace) -> ConnectionConfig:
    """
    Build the connection configuration from parsed global flags.

    Args:
        args: Parsed command line arguments

    Returns:
        ConnectionConfig with flags taking precedence over the environment
    """
    load_env_file(getattr(args, 'env_file', None))

    config: ConnectionConfig = {
        'host': args.host if args.host is not None else os.environ.get(HOST_ENV_VAR, ""),
        'port': args.port if args.port is not None else _env_port(),
        'user': args.user if args.user is not None else os.environ.get(USER_ENV_VAR, ""),
        'password': args.password if args.password is not None else os.environ.get(PASS_ENV_VAR, ""),
        'https': args.https if args.https is not None else _env_bool(HTTPS_ENV_VAR),
        'verify_ssl': args.verify_ssl if args.verify_ssl is not None else _env_bool(VERIFY_SSL_ENV_VAR),
    }

    logger.debug(f"Connection settings: host={config['host']} port={config['port']} "
                 f"user={config['user']} https={config['https']}")
    return config


def missing_settings(config: ConnectionConfig, can_prompt: bool) -> List[str]:
    """
    Names of required settings that are not set.

    The password only counts as missing when it cannot be asked for
    interactively.
    """
    missing = []
    if not config['host']:
        missing.append("host")
    if not config['user']:
        missing.append("user")
    if not config['password'] and not can_prompt:
        missing.append("pass")
    return missing

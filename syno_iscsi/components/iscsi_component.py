#!/usr/bin/env python3
"""
iSCSI Component for Discovery-Processing-Housekeeping Pattern

Runs one administrative command against a Synology appliance:
discovery logs in, processing resolves names, checks the business rules
and issues the request, housekeeping logs out again.

Input that can be checked locally is validated before any network call.
"""

import re
import sys
import getpass
import logging
import datetime
import functools
import requests
from typing import Dict, Any, Optional, List, Sequence, TextIO

from syno_iscsi.base_component import BaseComponent, ComponentConfig
from syno_iscsi.config import ConnectionConfig, missing_settings
from syno_iscsi.dsm_client import (
    StorageClient, DSMApiError, VolumeInfo, LunInfo, TargetInfo,
    LunCreateSpec, LunUpdateSpec, LunCloneSpec, TargetCreateSpec, LunDevAttrib,
    LUN_SPACE_RECLAMATION, LUN_FUA_WRITE, LUN_SYNC_CACHE,
    get_lun_type, is_thin
)
from syno_iscsi.errors import ISCSIError
from syno_iscsi.formatting import (
    GIB, readable_byte_size, bytes_to_gib, align_columns, build_lun_string
)

NAME_PATTERN = re.compile(r"[a-zA-Z0-9-]+")
SIZE_PATTERN = re.compile(r"[0-9]+")

AUTH_FAILED_CODE = "400"

MISSING_GLOBAL_ARGS_MSG = "the following global flag(s) are missing: {}"
WRONG_ARG_COUNT_MSG = "invalid number of arguments, expected {} but got {}"
LUN_RECLAIM_THIN_MSG = "--reclaim can only be used with --thin"
LUN_INVALID_NAME_MSG = "invalid LUN name, must consist of a-z, A-Z, 0-9, and hyphens (-)"
TARGET_INVALID_NAME_MSG = "invalid target name, must consist of a-z, A-Z, 0-9, and hyphens (-)"
LUN_INVALID_SIZE_MSG = "invalid LUN size, must be a positive integer"
VOLUME_NOT_ENOUGH_SPACE_MSG = "not enough space, {} has {} GiB free"
LUN_CANNOT_DECREASE_SIZE_MSG = "LUN cannot decrease in size"
TARGET_ACTIVE_SESSION_MSG = ("There are active sessions, please logout of all clients "
                             "before continuing (force delete with -f)")
TARGET_FORCE_DELETE_MSG = "Force deleting even though there are active sessions"
INVALID_CREDENTIALS_MSG = "Invalid user and/or pass"
CONNECTION_PROBLEM_MSG = "problem connecting to host ({})"
LOGOUT_FAILED_MSG = "Error: failed to logout of DSM: {}"
CANCELLED_MSG = "Cancelled"

VOLUME_NOT_FOUND_MSG = "could not find volume with path: {}"
LUN_NOT_FOUND_MSG = "could not find LUN with name: {}"
TARGET_NOT_FOUND_MSG = "could not find target with name: {}"

LUN_CREATED_MSG = "LUN created successfully"
LUN_MAPPED_MSG = "LUN mapped to the target successfully"
LUN_RESIZED_MSG = "LUN resized successfully"
LUN_CLONED_MSG = "LUN cloned successfully"
LUN_DELETED_MSG = "LUN deleted successfully"
TARGET_CREATED_MSG = "Target created successfully"
TARGET_DELETED_MSG = "Target deleted successfully"


class ISCSIConfig(ComponentConfig, total=False):
    """TypedDict for iSCSI component configuration."""
    connection: ConnectionConfig


def verify_args(expected: int, arguments: Sequence[str]) -> None:
    if len(arguments) != expected:
        raise ISCSIError(WRONG_ARG_COUNT_MSG.format(expected, len(arguments)))


def validate_lun_name(name: str) -> None:
    if not NAME_PATTERN.fullmatch(name):
        raise ISCSIError(LUN_INVALID_NAME_MSG)


def validate_target_name(name: str) -> None:
    if not NAME_PATTERN.fullmatch(name):
        raise ISCSIError(TARGET_INVALID_NAME_MSG)


def parse_size(size: str) -> int:
    """
    Convert a size given in whole gigabytes to bytes.

    Args:
        size: Positive integer as typed by the user

    Returns:
        Size in bytes (GB * 2^30)
    """
    if not SIZE_PATTERN.fullmatch(size) or int(size) <= 0:
        raise ISCSIError(LUN_INVALID_SIZE_MSG)
    return int(size) * GIB


def free_bytes(volume: VolumeInfo) -> int:
    """Free space of a volume; the appliance reports it as a decimal string."""
    return int(volume['free'])


def check_free_space(volume: VolumeInfo, required: int) -> None:
    if required > (free := free_bytes(volume)):
        raise ISCSIError(VOLUME_NOT_ENOUGH_SPACE_MSG.format(volume['path'], bytes_to_gib(free)))


def _stdin_is_terminal() -> bool:
    try:
        return sys.stdin is not None and sys.stdin.isatty()
    except (AttributeError, ValueError):
        return False


class ISCSIComponent(BaseComponent):
    """
    Component running iSCSI administration commands on a Synology appliance.

    Each public command method validates its input, then executes the
    discover/process/housekeep lifecycle around the remote calls.
    """

    # command -> (positional argument count, method)
    COMMANDS: Dict[str, tuple[int, str]] = {
        'volume list': (0, 'volume_list'),
        'lun list': (0, 'lun_list'),
        'lun create': (3, 'lun_create'),
        'lun map': (2, 'lun_map'),
        'lun resize': (2, 'lun_resize'),
        'lun clone': (3, 'lun_clone'),
        'lun delete': (1, 'lun_delete'),
        'target list': (0, 'target_list'),
        'target create': (2, 'target_create'),
        'target delete': (1, 'target_delete'),
    }

    def __init__(
        self,
        config: ISCSIConfig,
        client: StorageClient,
        out: Optional[TextIO] = None,
        inp: Optional[TextIO] = None,
        logger: Optional[logging.Logger] = None
    ) -> None:
        """
        Initialize the iSCSI component.

        Args:
            config: Component configuration carrying the connection settings
            client: Storage client used for every remote call
            out: Stream for tables, prompts and messages (default: stdout)
            inp: Stream confirmation answers are read from (default: stdin)
            logger: Optional logger instance
        """
        super().__init__(config, logger)

        self.client = client
        self.out: TextIO = out or sys.stdout
        self.inp: TextIO = inp or sys.stdin

    def run(self, command: str, arguments: Sequence[str], options: Optional[Dict[str, bool]] = None) -> None:
        """
        Dispatch a command by name.

        Args:
            command: Command name, e.g. 'lun create'
            arguments: Positional arguments as typed by the user
            options: Boolean flags accepted by the command
        """
        expected, method_name = self.COMMANDS[command]
        verify_args(expected, arguments)

        self.logger.debug(f"Running '{command}' with {len(arguments)} argument(s)")
        getattr(self, method_name)(*arguments, **(options or {}))

    # Lifecycle
    def discover(self) -> Dict[str, Any]:
        """
        Discovery phase: open a session with the appliance.

        Checks the required connection settings, asks for the password when
        it was not configured, then initializes the client and logs in.

        Returns:
            Dictionary of discovery results
        """
        self.timestamps['discover_start'] = datetime.datetime.now().isoformat()
        self.logger.debug(f"Starting discovery phase for {self.component_name}")

        try:
            connection = self.config['connection']

            if missing := missing_settings(connection, can_prompt=_stdin_is_terminal()):
                raise ISCSIError(MISSING_GLOBAL_ARGS_MSG.format(", ".join(missing)))

            password = connection['password'] or self._read_password()

            self.client.init(
                connection['host'],
                connection['port'],
                connection['user'],
                password,
                connection['https']
            )
            self._login()

            self.discovery_results = {
                'connected': True,
                'host': connection['host'],
                'port': connection['port']
            }

            self.phases_executed['discover'] = True
            self.timestamps['discover_end'] = datetime.datetime.now().isoformat()
            self.logger.debug(f"Discovery phase completed for {self.component_name}")

            return self.discovery_results

        except Exception as e:
            self.logger.debug(f"Error during discovery phase: {str(e)}")
            self.status['success'] = False
            self.status['error'] = str(e)
            self.status['message'] = f"Discovery phase failed: {str(e)}"

            # Update timestamp even on failure
            self.timestamps['discover_end'] = datetime.datetime.now().isoformat()

            raise

    def housekeep(self) -> Dict[str, Any]:
        """
        Housekeeping phase: log out of the appliance.

        A failed logout is reported but never fails the command.

        Returns:
            Dictionary of housekeeping results
        """
        self.timestamps['housekeep_start'] = datetime.datetime.now().isoformat()
        self.logger.debug(f"Starting housekeeping phase for {self.component_name}")

        try:
            self.client.logout()
            self.housekeeping_results = {'logged_out': True}
        except Exception as e:
            self.logger.warning(f"Logout failed: {e}")
            self._print(LOGOUT_FAILED_MSG.format(e))
            self.housekeeping_results = {'logged_out': False, 'error': str(e)}

        self.phases_executed['housekeep'] = True
        self.timestamps['housekeep_end'] = datetime.datetime.now().isoformat()
        return self.housekeeping_results

    # Helper methods
    def _print(self, message: str = "", end: str = "\n") -> None:
        print(message, end=end, file=self.out)

    def _read_password(self) -> str:
        """Read the password from the terminal with echo turned off"""
        return getpass.getpass("Enter Password: ")

    def _login(self) -> None:
        try:
            self.client.login()
        except DSMApiError as e:
            if str(e.code) == AUTH_FAILED_CODE:
                raise ISCSIError(INVALID_CREDENTIALS_MSG)
            raise
        except requests.exceptions.ConnectionError as e:
            raise ISCSIError(CONNECTION_PROBLEM_MSG.format(e))

        self.logger.info(f"Logged in to {self.config['connection']['host']}")

    def _confirm(self, kind: str, name: str) -> bool:
        """
        Ask the operator to type the resource name again.

        End of input counts as a wrong answer.
        """
        self._print(f"Enter the {kind} name ({name}) to continue: ", end="")
        self.out.flush()

        answer = self.inp.readline().rstrip("\r\n")
        if answer != name:
            self._print(CANCELLED_MSG)
            self.logger.info(f"Deletion of {kind} {name} cancelled")
            return False
        return True

    def get_volume_by_path(self, path: str) -> VolumeInfo:
        for volume in self.client.volume_list():
            if volume['path'] == path:
                return volume
        raise ISCSIError(VOLUME_NOT_FOUND_MSG.format(path))

    def get_lun_by_name(self, name: str) -> LunInfo:
        for lun in self.client.lun_list():
            if lun['name'] == name:
                return lun
        raise ISCSIError(LUN_NOT_FOUND_MSG.format(name))

    def get_target_by_name(self, name: str) -> TargetInfo:
        for target in self.client.target_list():
            if target['name'] == name:
                return target
        raise ISCSIError(TARGET_NOT_FOUND_MSG.format(name))

    # Volume commands
    def volume_list(self) -> None:
        self.execute(self._volume_list)

    def _volume_list(self) -> None:
        lines = ["PATH\tSTATUS\tFILESYSTEM\tSIZE\tUSED"]
        for volume in self.client.volume_list():
            readable_size = readable_used = "?"
            try:
                size = int(volume['size'])
                free = int(volume['free'])
            except ValueError:
                self.logger.debug(f"Unparsable size for volume {volume['path']}")
            else:
                readable_size = readable_byte_size(size)
                readable_used = readable_byte_size(size - free)

            lines.append(f"{volume['path']}\t{volume['status']}\t{volume['fs_type']}\t{readable_size}\t{readable_used}")

        self.out.write(align_columns(lines))

    # LUN commands
    def lun_list(self) -> None:
        self.execute(self._lun_list)

    def _lun_list(self) -> None:
        lines = ["NAME\tVOLUME\tSTATUS\tSIZE\tUSED\tTHIN"]
        for lun in self.client.lun_list():
            thin = "yes" if is_thin(lun['lun_type']) else "no"
            lines.append(
                f"{lun['name']}\t{lun['location']}\t{lun['status']}\t"
                f"{readable_byte_size(lun['size'])}\t{readable_byte_size(lun['used'])}\t{thin}"
            )

        self.out.write(align_columns(lines))

    def lun_create(
        self,
        name: str,
        volume_path: str,
        size: str,
        thin: bool = False,
        reclaim: bool = False,
        sync_cache: bool = False
    ) -> None:
        """
        Create a LUN on a volume.

        Args:
            name: Name of the new LUN
            volume_path: Path of the volume holding it, e.g. /volume1
            size: Size in whole gigabytes
            thin: Use thin provisioning
            reclaim: Enable space reclamation (thin provisioning only)
            sync_cache: Enable FUA and Sync Cache commands
        """
        if reclaim and not thin:
            raise ISCSIError(LUN_RECLAIM_THIN_MSG)

        validate_lun_name(name)
        size_bytes = parse_size(size)

        self.execute(functools.partial(
            self._lun_create, name, volume_path, size_bytes, thin, reclaim, sync_cache
        ))

    def _lun_create(self, name: str, volume_path: str, size: int, thin: bool, reclaim: bool, sync_cache: bool) -> None:
        volume = self.get_volume_by_path(volume_path)
        check_free_space(volume, size)

        dev_attribs: List[LunDevAttrib] = []
        if reclaim:
            dev_attribs.append(LUN_SPACE_RECLAMATION)
        if sync_cache:
            dev_attribs.extend([LUN_FUA_WRITE, LUN_SYNC_CACHE])

        if not (lun_type := get_lun_type(volume['fs_type'], thin)):
            self.logger.warning(f"No known LUN type for filesystem '{volume['fs_type']}'")

        spec: LunCreateSpec = {
            'name': name,
            'location': volume_path,
            'size': size,
            'type': lun_type,
            'dev_attribs': dev_attribs
        }

        lun_uuid = self.client.lun_create(spec)
        self.logger.info(f"Created LUN {name} ({lun_uuid}) on {volume_path}")
        self._print(LUN_CREATED_MSG)

    def lun_map(self, lun_name: str, target_name: str) -> None:
        self.execute(functools.partial(self._lun_map, lun_name, target_name))

    def _lun_map(self, lun_name: str, target_name: str) -> None:
        lun = self.get_lun_by_name(lun_name)
        target = self.get_target_by_name(target_name)

        self.client.lun_map_target([str(target['target_id'])], lun['uuid'])
        self.logger.info(f"Mapped LUN {lun_name} to target {target_name}")
        self._print(LUN_MAPPED_MSG)

    def lun_resize(self, name: str, size: str) -> None:
        """Grow a LUN to a new size in gigabytes; shrinking is refused"""
        size_bytes = parse_size(size)
        self.execute(functools.partial(self._lun_resize, name, size_bytes))

    def _lun_resize(self, name: str, size: int) -> None:
        lun = self.get_lun_by_name(name)

        if size <= lun['size']:
            raise ISCSIError(LUN_CANNOT_DECREASE_SIZE_MSG)

        volume = self.get_volume_by_path(lun['location'])
        check_free_space(volume, size - lun['size'])

        spec: LunUpdateSpec = {
            'uuid': lun['uuid'],
            'new_size': size
        }

        self.client.lun_update(spec)
        self.logger.info(f"Resized LUN {name} from {lun['size']} to {size} bytes")
        self._print(LUN_RESIZED_MSG)

    def lun_clone(self, src_name: str, dst_name: str, volume_path: str) -> None:
        """Clone a LUN; the destination volume must hold the full source size"""
        validate_lun_name(dst_name)
        self.execute(functools.partial(self._lun_clone, src_name, dst_name, volume_path))

    def _lun_clone(self, src_name: str, dst_name: str, volume_path: str) -> None:
        src_lun = self.get_lun_by_name(src_name)
        volume = self.get_volume_by_path(volume_path)
        check_free_space(volume, src_lun['size'])

        spec: LunCloneSpec = {
            'name': dst_name,
            'src_lun_uuid': src_lun['uuid'],
            'location': volume_path
        }

        lun_uuid = self.client.lun_clone(spec)
        self.logger.info(f"Cloned LUN {src_name} to {dst_name} ({lun_uuid}) on {volume_path}")
        self._print(LUN_CLONED_MSG)

    def lun_delete(self, name: str, skip_verify: bool = False) -> None:
        self.execute(functools.partial(self._lun_delete, name, skip_verify))

    def _lun_delete(self, name: str, skip_verify: bool) -> None:
        lun = self.get_lun_by_name(name)

        if not skip_verify:
            mapped_targets = []
            for target in self.client.target_list():
                if any(mapped['lun_uuid'] == lun['uuid'] for mapped in target['mapped_luns']):
                    if target['connected_sessions']:
                        mapped_targets.append(f"{target['name']} (connected)")
                    else:
                        mapped_targets.append(target['name'])

            self._print("Are you sure you want to delete this lun?")
            if mapped_targets:
                self._print(f"It is mapped to the targets: {', '.join(mapped_targets)}")

            if not self._confirm("lun", name):
                return

        self.client.lun_delete(lun['uuid'])
        self.logger.info(f"Deleted LUN {name} ({lun['uuid']})")
        self._print(LUN_DELETED_MSG)

    # Target commands
    def target_list(self) -> None:
        self.execute(self._target_list)

    def _target_list(self) -> None:
        targets = self.client.target_list()
        luns = self.client.lun_list()

        lines = ["NAME\tIQN\tSESSIONS\tLUNS"]
        for target in targets:
            lun_string = build_lun_string(luns, target['mapped_luns'])
            sessions = f"{len(target['connected_sessions'])}/{target['max_sessions']}"
            lines.append(f"{target['name']}\t{target['iqn']}\t{sessions}\t{lun_string}")

        self.out.write(align_columns(lines))

    def target_create(self, name: str, iqn: str) -> None:
        validate_target_name(name)
        self.execute(functools.partial(self._target_create, name, iqn))

    def _target_create(self, name: str, iqn: str) -> None:
        spec: TargetCreateSpec = {
            'name': name,
            'iqn': iqn
        }

        target_id = self.client.target_create(spec)
        self.logger.info(f"Created target {name} (ID: {target_id})")
        self._print(TARGET_CREATED_MSG)

    def target_delete(self, name: str, force: bool = False, skip_verify: bool = False) -> None:
        """
        Delete a target by name.

        Args:
            name: Name of the target
            force: Delete even when initiators are connected
            skip_verify: Do not ask for the name again
        """
        self.execute(functools.partial(self._target_delete, name, force, skip_verify))

    def _target_delete(self, name: str, force: bool, skip_verify: bool) -> None:
        target = self.get_target_by_name(name)

        if target['connected_sessions']:
            if not force:
                self._print(TARGET_ACTIVE_SESSION_MSG)
                return
            self._print(TARGET_FORCE_DELETE_MSG)

        if not skip_verify:
            self._print("Are you sure you want to delete this target?")
            if not self._confirm("target", name):
                return

        self.client.target_delete(str(target['target_id']))
        self.logger.info(f"Deleted target {name} (ID: {target['target_id']})")
        self._print(TARGET_DELETED_MSG)

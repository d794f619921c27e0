#!/usr/bin/env python3
"""
Synology DSM storage client

Defines the capability surface the command layer consumes (StorageClient),
the records exchanged with it, the LUN type tables, and DSMClient, a thin
adapter that issues the matching calls against the DSM web API.
"""

import json
import logging
import requests
import urllib3
from typing import Dict, Any, Optional, List, TypedDict, Protocol


class VolumeInfo(TypedDict):
    """Storage volume as reported by the appliance. Sizes are decimal strings."""
    path: str
    status: str
    fs_type: str
    size: str
    free: str


class LunInfo(TypedDict):
    """iSCSI LUN information."""
    name: str
    uuid: str
    lun_type: int
    location: str
    size: int
    used: int
    status: str


class MappedLun(TypedDict):
    lun_uuid: str
    mapping_index: int


class ConnectedSession(TypedDict):
    iqn: str
    ip: str


class TargetInfo(TypedDict):
    """iSCSI target information."""
    target_id: int
    name: str
    iqn: str
    status: str
    max_sessions: int
    mapped_luns: List[MappedLun]
    connected_sessions: List[ConnectedSession]


class LunDevAttrib(TypedDict):
    dev_attrib: str
    enable: int


class LunCreateSpec(TypedDict):
    name: str
    location: str
    size: int
    type: str
    dev_attribs: List[LunDevAttrib]


class LunUpdateSpec(TypedDict):
    uuid: str
    new_size: int


class LunCloneSpec(TypedDict):
    name: str
    src_lun_uuid: str
    location: str


class TargetCreateSpec(TypedDict):
    name: str
    iqn: str


class StorageClient(Protocol):
    """Operations the command layer needs from the appliance."""

    def init(self, host: str, port: int, user: str, password: str, https: bool) -> None: ...

    def login(self) -> None: ...

    def logout(self) -> None: ...

    def volume_list(self) -> List[VolumeInfo]: ...

    def lun_list(self) -> List[LunInfo]: ...

    def lun_create(self, spec: LunCreateSpec) -> str: ...

    def lun_update(self, spec: LunUpdateSpec) -> None: ...

    def lun_clone(self, spec: LunCloneSpec) -> str: ...

    def lun_delete(self, lun_uuid: str) -> None: ...

    def lun_map_target(self, target_ids: List[str], lun_uuid: str) -> None: ...

    def target_list(self) -> List[TargetInfo]: ...

    def target_create(self, spec: TargetCreateSpec) -> str: ...

    def target_delete(self, target_id: str) -> None: ...


LUN_SPACE_RECLAMATION: LunDevAttrib = {'dev_attrib': 'emulate_tpu', 'enable': 1}
LUN_FUA_WRITE: LunDevAttrib = {'dev_attrib': 'emulate_fua_write', 'enable': 1}
LUN_SYNC_CACHE: LunDevAttrib = {'dev_attrib': 'emulate_sync_cache', 'enable': 1}

# (filesystem, thin) -> LUN type requested on create
LUN_TYPES: Dict[tuple[str, bool], str] = {
    ('ext4', False): 'FILE',
    ('ext4', True): 'ADV',
    ('btrfs', False): 'BLUN_THICK',
    ('btrfs', True): 'BLUN',
}

# LUN type code reported by list -> thin provisioned
THIN_LUN_CODES: Dict[int, bool] = {
    3: False,    # ext4 thick, FILE
    15: True,    # ext4 thin, ADV
    259: False,  # btrfs thick, BLUN_THICK
    263: True,   # btrfs thin, BLUN
}


def get_lun_type(fs_type: str, thin: bool) -> str:
    """Return the LUN type for a volume filesystem, or '' when unsupported."""
    return LUN_TYPES.get((fs_type, thin), '')


def is_thin(lun_type: int) -> bool:
    """Unknown codes are reported as thick."""
    return THIN_LUN_CODES.get(lun_type, False)


class DSMApiError(Exception):
    """Unsuccessful response from the DSM web API."""

    def __init__(self, code: Any) -> None:
        self.code = code
        super().__init__(f"DSM Api error. Error code:{code}")


class DSMClient:
    """
    StorageClient implementation backed by the DSM web API.

    Uses one requests session per instance; the session id obtained at
    login is sent with every following call until logout.
    """

    AUTH_PATH = "webapi/auth.cgi"
    ENTRY_PATH = "webapi/entry.cgi"
    SESSION_NAME = "Core"

    def __init__(self, verify_ssl: bool = False, logger: Optional[logging.Logger] = None) -> None:
        self.verify_ssl = verify_ssl
        self.logger = logger or logging.getLogger("syno_iscsi.DSMClient")

        self.session: Optional[requests.Session] = None
        self.api_url: Optional[str] = None
        self.user: Optional[str] = None
        self.password: Optional[str] = None
        self.sid: Optional[str] = None

    def init(self, host: str, port: int, user: str, password: str, https: bool) -> None:
        """Set up the API session for the given appliance"""
        scheme = "https" if https else "http"
        self.api_url = f"{scheme}://{host}:{port}"
        self.user = user
        self.password = password
        self.sid = None

        self.session = requests.Session()

        # DSM ships with a self-signed certificate
        self.session.verify = self.verify_ssl
        if https and not self.verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        self.logger.debug(f"API session set up for {self.api_url}")

    def _request(self, path: str, api: str, version: int, method: str, **params: Any) -> Dict[str, Any]:
        """Issue one API call and return its data payload."""
        if not self.session or not self.api_url:
            raise RuntimeError("DSM client used before init()")

        payload = {
            'api': api,
            'version': version,
            'method': method,
            **params
        }
        if self.sid:
            payload['_sid'] = self.sid

        self.logger.debug(f"Calling {api}.{method} (v{version})")
        response = self.session.post(f"{self.api_url}/{path}", data=payload)
        response.raise_for_status()

        body = response.json()
        if not body.get('success'):
            raise DSMApiError(body.get('error', {}).get('code', 'unknown'))

        return body.get('data') or {}

    def _call(self, api: str, method: str, version: int = 1, **params: Any) -> Dict[str, Any]:
        return self._request(self.ENTRY_PATH, api, version, method, **params)

    def login(self) -> None:
        data = self._request(
            self.AUTH_PATH, 'SYNO.API.Auth', 3, 'login',
            account=self.user,
            passwd=self.password,
            session=self.SESSION_NAME,
            format='sid'
        )
        self.sid = data.get('sid')
        self.logger.debug(f"Logged in to {self.api_url} as {self.user}")

    def logout(self) -> None:
        try:
            self._request(self.AUTH_PATH, 'SYNO.API.Auth', 1, 'logout', session=self.SESSION_NAME)
        finally:
            self.sid = None
            if self.session:
                self.session.close()

    def volume_list(self) -> List[VolumeInfo]:
        data = self._call('SYNO.Core.Storage.Volume', 'list', offset=0, limit=-1, location='internal')
        return [
            {
                'path': volume.get('volume_path', ''),
                'status': volume.get('status', ''),
                'fs_type': volume.get('fs_type', ''),
                'size': str(volume.get('size_total_byte', '')),
                'free': str(volume.get('size_free_byte', ''))
            }
            for volume in data.get('volumes', [])
        ]

    def lun_list(self) -> List[LunInfo]:
        data = self._call(
            'SYNO.Core.ISCSI.LUN', 'list',
            additional=json.dumps(['status', 'allocated_size'])
        )
        return [
            {
                'name': lun.get('name', ''),
                'uuid': lun.get('uuid', ''),
                'lun_type': int(lun.get('type', 0)),
                'location': lun.get('location', ''),
                'size': int(lun.get('size', 0)),
                'used': int(lun.get('allocated_size', 0)),
                'status': lun.get('status', '')
            }
            for lun in data.get('luns', [])
        ]

    def lun_create(self, spec: LunCreateSpec) -> str:
        data = self._call(
            'SYNO.Core.ISCSI.LUN', 'create',
            name=json.dumps(spec['name']),
            location=json.dumps(spec['location']),
            size=spec['size'],
            type=json.dumps(spec['type']),
            dev_attribs=json.dumps(spec['dev_attribs'])
        )
        return data.get('uuid', '')

    def lun_update(self, spec: LunUpdateSpec) -> None:
        self._call(
            'SYNO.Core.ISCSI.LUN', 'set',
            uuid=json.dumps(spec['uuid']),
            new_size=spec['new_size']
        )

    def lun_clone(self, spec: LunCloneSpec) -> str:
        data = self._call(
            'SYNO.Core.ISCSI.LUN', 'clone',
            src_lun_uuid=json.dumps(spec['src_lun_uuid']),
            dst_lun_name=json.dumps(spec['name']),
            dst_location=json.dumps(spec['location'])
        )
        return data.get('dst_lun_uuid', '')

    def lun_delete(self, lun_uuid: str) -> None:
        self._call('SYNO.Core.ISCSI.LUN', 'delete', uuid=json.dumps(lun_uuid))

    def lun_map_target(self, target_ids: List[str], lun_uuid: str) -> None:
        self._call(
            'SYNO.Core.ISCSI.LUN', 'map_target',
            uuid=json.dumps(lun_uuid),
            target_ids=json.dumps(target_ids)
        )

    def target_list(self) -> List[TargetInfo]:
        data = self._call(
            'SYNO.Core.ISCSI.Target', 'list',
            additional=json.dumps(['mapped_lun', 'status', 'connected_sessions'])
        )
        return [
            {
                'target_id': int(target.get('target_id', 0)),
                'name': target.get('name', ''),
                'iqn': target.get('iqn', ''),
                'status': target.get('status', ''),
                'max_sessions': int(target.get('max_sessions', 0)),
                'mapped_luns': [
                    {'lun_uuid': mapped.get('lun_uuid', ''), 'mapping_index': int(mapped.get('mapping_index', 0))}
                    for mapped in target.get('mapped_luns', [])
                ],
                'connected_sessions': [
                    {'iqn': session.get('iqn', ''), 'ip': session.get('ip', '')}
                    for session in target.get('connected_sessions', [])
                ]
            }
            for target in data.get('targets', [])
        ]

    def target_create(self, spec: TargetCreateSpec) -> str:
        data = self._call(
            'SYNO.Core.ISCSI.Target', 'create',
            name=json.dumps(spec['name']),
            iqn=json.dumps(spec['iqn']),
            auth_type=0
        )
        return str(data.get('target_id', ''))

    def target_delete(self, target_id: str) -> None:
        self._call('SYNO.Core.ISCSI.Target', 'delete', target_id=json.dumps(target_id))

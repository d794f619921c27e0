#!/usr/bin/env python3
"""
Unit tests for the ISCSIComponent class.

These tests validate the commands run by the ISCSIComponent against a mocked
storage client, using the discovery-processing-housekeeping pattern.
"""

import io
import os
import sys
import logging
import unittest
import requests
from unittest.mock import patch

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../../../../')))

from syno_iscsi.components.iscsi_component import ISCSIComponent
from syno_iscsi.dsm_client import (
    DSMApiError, LUN_SPACE_RECLAMATION, LUN_FUA_WRITE, LUN_SYNC_CACHE
)
from syno_iscsi.errors import ISCSIError
from tests.appliance_data import (
    GB, VOL1, VOL2, LUN1, LUN2, TARGET1, TARGET2, CONNECTION, make_client
)


class TestISCSIComponent(unittest.TestCase):
    """Test cases for the ISCSIComponent class."""

    def setUp(self):
        """Set up test fixtures."""
        # Configure logging to prevent output during tests
        logging.basicConfig(level=logging.CRITICAL)

        self.client = make_client(
            volumes=[VOL1, VOL2],
            luns=[LUN1, LUN2],
            targets=[TARGET1, TARGET2]
        )
        self.out = io.StringIO()
        self.config = {
            'component_id': 'test-iscsi-001',
            'connection': dict(CONNECTION)
        }

    def _component(self, answer=""):
        return ISCSIComponent(self.config, self.client, out=self.out, inp=io.StringIO(answer))

    def test_initialization(self):
        """Test component initialization."""
        component = self._component()

        self.assertEqual(component.component_id, 'test-iscsi-001')
        self.assertEqual(component.component_name, 'ISCSIComponent')
        self.assertIs(component.client, self.client)
        self.assertFalse(any(component.phases_executed.values()))

    def test_lifecycle_logs_in_and_out(self):
        component = self._component()

        component.volume_list()

        self.client.init.assert_called_once_with('host', 5000, 'user', 'pass', False)
        self.client.login.assert_called_once()
        self.client.logout.assert_called_once()
        self.assertTrue(component.discovery_results['connected'])
        self.assertTrue(component.housekeeping_results['logged_out'])
        self.assertTrue(component.status['success'])
        self.assertTrue(all(component.phases_executed.values()))

    # Discovery
    def test_missing_host(self):
        self.config['connection']['host'] = ""

        with self.assertRaises(ISCSIError) as cm:
            self._component().volume_list()

        self.assertEqual(str(cm.exception), "the following global flag(s) are missing: host")
        self.client.init.assert_not_called()

    @patch('syno_iscsi.components.iscsi_component._stdin_is_terminal', return_value=False)
    def test_missing_password_without_terminal(self, mock_terminal):
        self.config['connection'].update(user="", password="")

        with self.assertRaises(ISCSIError) as cm:
            self._component().volume_list()

        self.assertEqual(str(cm.exception), "the following global flag(s) are missing: user, pass")
        self.client.init.assert_not_called()

    @patch('syno_iscsi.components.iscsi_component.getpass.getpass', return_value='secret')
    @patch('syno_iscsi.components.iscsi_component._stdin_is_terminal', return_value=True)
    def test_password_prompt(self, mock_terminal, mock_getpass):
        self.config['connection']['password'] = ""

        self._component().volume_list()

        mock_getpass.assert_called_once_with("Enter Password: ")
        self.client.init.assert_called_once_with('host', 5000, 'user', 'secret', False)

    def test_invalid_credentials(self):
        self.client.login.side_effect = DSMApiError(400)

        with self.assertRaises(ISCSIError) as cm:
            self._component().volume_list()

        self.assertEqual(str(cm.exception), "Invalid user and/or pass")
        self.client.logout.assert_not_called()
        self.client.volume_list.assert_not_called()

    def test_other_login_error_is_passed_on(self):
        self.client.login.side_effect = DSMApiError(105)

        with self.assertRaises(DSMApiError) as cm:
            self._component().volume_list()

        self.assertEqual(str(cm.exception), "DSM Api error. Error code:105")

    def test_connection_problem(self):
        self.client.login.side_effect = requests.exceptions.ConnectionError("connection refused")

        with self.assertRaises(ISCSIError) as cm:
            self._component().volume_list()

        self.assertEqual(str(cm.exception), "problem connecting to host (connection refused)")

    # Housekeeping
    def test_logout_failure_is_reported(self):
        self.client.logout.side_effect = DSMApiError(119)
        component = self._component()

        component.target_create('target3', 'iqn.2000-01.com.synology:target3')

        self.assertEqual(self.out.getvalue(), (
            "Target created successfully\n"
            "Error: failed to logout of DSM: DSM Api error. Error code:119\n"
        ))
        self.assertFalse(component.housekeeping_results['logged_out'])
        self.assertTrue(component.status['success'])

    def test_logout_after_failed_command(self):
        with self.assertRaises(ISCSIError):
            self._component().lun_map('lun3', 'target1')

        self.client.logout.assert_called_once()

    # Dispatch
    def test_run_dispatches_command(self):
        self._component().run('lun create', ['new', '/vol1', '1'], {'thin': True, 'reclaim': False, 'sync_cache': False})

        spec = self.client.lun_create.call_args.args[0]
        self.assertEqual(spec['type'], 'ADV')
        self.assertEqual(spec['size'], GB)

    def test_run_wrong_argument_count(self):
        with self.assertRaises(ISCSIError) as cm:
            self._component().run('lun create', ['new', '/vol1'])

        self.assertEqual(str(cm.exception), "invalid number of arguments, expected 3 but got 2")
        self.client.init.assert_not_called()

    def test_run_list_takes_no_arguments(self):
        with self.assertRaises(ISCSIError) as cm:
            self._component().run('volume list', ['extra'])

        self.assertEqual(str(cm.exception), "invalid number of arguments, expected 0 but got 1")

    # Name resolution
    def test_resolvers(self):
        component = self._component()

        self.assertEqual(component.get_volume_by_path('/vol2'), VOL2)
        self.assertEqual(component.get_lun_by_name('lun1'), LUN1)
        self.assertEqual(component.get_target_by_name('target2'), TARGET2)

    def test_resolvers_not_found(self):
        component = self._component()

        with self.assertRaisesRegex(ISCSIError, "^could not find volume with path: /vol3$"):
            component.get_volume_by_path('/vol3')
        with self.assertRaisesRegex(ISCSIError, "^could not find LUN with name: lun3$"):
            component.get_lun_by_name('lun3')
        with self.assertRaisesRegex(ISCSIError, "^could not find target with name: target3$"):
            component.get_target_by_name('target3')

    # List commands
    def test_volume_list(self):
        self._component().volume_list()

        self.assertEqual(self.out.getvalue(), (
            "PATH    STATUS    FILESYSTEM  SIZE       USED\n"
            "/vol1   normal    ext4        10.00 GiB  5.00 GiB\n"
            "/vol2   degraded  btrfs       5.00 GiB   0.00 B\n"
        ))

    def test_volume_list_unparsable_size(self):
        broken = dict(VOL1, size="unknown")
        self.client = make_client(volumes=[broken])

        self._component().volume_list()

        self.assertEqual(self.out.getvalue().splitlines()[1].split(), ['/vol1', 'normal', 'ext4', '?', '?'])

    def test_volume_list_empty(self):
        self.client = make_client()

        self._component().volume_list()

        self.assertEqual(self.out.getvalue(), "PATH    STATUS  FILESYSTEM  SIZE    USED\n")

    def test_lun_list(self):
        self._component().lun_list()

        self.assertEqual(self.out.getvalue(), (
            "NAME    VOLUME  STATUS    SIZE      USED      THIN\n"
            "lun1    /vol1   normal    5.00 GiB  3.00 GiB  no\n"
            "lun2    /vol2   degraded  5.00 GiB  0.00 B    yes\n"
        ))

    def test_target_list(self):
        self._component().target_list()

        rows = [line.split() for line in self.out.getvalue().splitlines()]
        self.assertEqual(rows, [
            ['NAME', 'IQN', 'SESSIONS', 'LUNS'],
            ['target1', 'iqn.2000-01.com.synology:target1', '1/2', 'lun1,lun2'],
            ['target2', 'iqn.2000-01.com.synology:target2', '0/1', 'lun1'],
        ])

    # lun create
    def test_lun_create_thick(self):
        self._component().lun_create('new-lun', '/vol1', '5')

        self.client.lun_create.assert_called_once_with({
            'name': 'new-lun',
            'location': '/vol1',
            'size': 5 * GB,
            'type': 'FILE',
            'dev_attribs': []
        })
        self.assertEqual(self.out.getvalue(), "LUN created successfully\n")

    def test_lun_create_thin_with_all_attributes(self):
        self._component().lun_create('new-lun', '/vol2', '1', thin=True, reclaim=True, sync_cache=True)

        spec = self.client.lun_create.call_args.args[0]
        self.assertEqual(spec['type'], 'BLUN')
        self.assertEqual(spec['dev_attribs'], [LUN_SPACE_RECLAMATION, LUN_FUA_WRITE, LUN_SYNC_CACHE])

    def test_lun_create_sync_cache_only(self):
        self._component().lun_create('new-lun', '/vol2', '1', sync_cache=True)

        spec = self.client.lun_create.call_args.args[0]
        self.assertEqual(spec['type'], 'BLUN_THICK')
        self.assertEqual(spec['dev_attribs'], [LUN_FUA_WRITE, LUN_SYNC_CACHE])

    def test_lun_create_unknown_filesystem(self):
        self.client = make_client(volumes=[dict(VOL1, fs_type='xfs')])

        self._component().lun_create('new-lun', '/vol1', '1')

        self.assertEqual(self.client.lun_create.call_args.args[0]['type'], '')

    def test_lun_create_reclaim_requires_thin(self):
        with self.assertRaises(ISCSIError) as cm:
            self._component().lun_create('new-lun', '/vol1', '1', reclaim=True)

        self.assertEqual(str(cm.exception), "--reclaim can only be used with --thin")
        self.client.init.assert_not_called()

    def test_lun_create_reclaim_checked_before_name(self):
        with self.assertRaisesRegex(ISCSIError, "^--reclaim can only be used with --thin$"):
            self._component().lun_create('bad_name', '/vol1', 'x', reclaim=True)

    def test_lun_create_invalid_name(self):
        for name in ['bad_name', 'bad name', 'lün', '']:
            with self.subTest(name=name):
                with self.assertRaises(ISCSIError) as cm:
                    self._component().lun_create(name, '/vol1', '1')

                self.assertEqual(str(cm.exception),
                                 "invalid LUN name, must consist of a-z, A-Z, 0-9, and hyphens (-)")

        self.client.init.assert_not_called()

    def test_lun_create_invalid_size(self):
        for size in ['0', '-5', '1.5', 'abc', '']:
            with self.subTest(size=size):
                with self.assertRaises(ISCSIError) as cm:
                    self._component().lun_create('new-lun', '/vol1', size)

                self.assertEqual(str(cm.exception), "invalid LUN size, must be a positive integer")

        self.client.init.assert_not_called()

    def test_lun_create_not_enough_space(self):
        with self.assertRaises(ISCSIError) as cm:
            self._component().lun_create('new-lun', '/vol1', '6')

        self.assertEqual(str(cm.exception), "not enough space, /vol1 has 5 GiB free")
        self.client.lun_create.assert_not_called()
        self.client.logout.assert_called_once()

    def test_lun_create_unknown_volume(self):
        with self.assertRaisesRegex(ISCSIError, "^could not find volume with path: /vol3$"):
            self._component().lun_create('new-lun', '/vol3', '1')

    # lun map
    def test_lun_map(self):
        self._component().lun_map('lun2', 'target2')

        self.client.lun_map_target.assert_called_once_with(['2'], LUN2['uuid'])
        self.assertEqual(self.out.getvalue(), "LUN mapped to the target successfully\n")

    def test_lun_map_unknown_target(self):
        with self.assertRaisesRegex(ISCSIError, "^could not find target with name: target3$"):
            self._component().lun_map('lun1', 'target3')

        self.client.lun_map_target.assert_not_called()

    # lun resize
    def test_lun_resize(self):
        self._component().lun_resize('lun1', '10')

        self.client.lun_update.assert_called_once_with({'uuid': LUN1['uuid'], 'new_size': 10 * GB})
        self.assertEqual(self.out.getvalue(), "LUN resized successfully\n")

    def test_lun_resize_cannot_decrease(self):
        for size in ['5', '4']:
            with self.subTest(size=size):
                with self.assertRaises(ISCSIError) as cm:
                    self._component().lun_resize('lun1', size)

                self.assertEqual(str(cm.exception), "LUN cannot decrease in size")

        self.client.lun_update.assert_not_called()

    def test_lun_resize_not_enough_space(self):
        with self.assertRaises(ISCSIError) as cm:
            self._component().lun_resize('lun1', '11')

        self.assertEqual(str(cm.exception), "not enough space, /vol1 has 5 GiB free")
        self.client.lun_update.assert_not_called()

    def test_lun_resize_invalid_size(self):
        with self.assertRaisesRegex(ISCSIError, "^invalid LUN size, must be a positive integer$"):
            self._component().lun_resize('lun1', 'big')

        self.client.init.assert_not_called()

    # lun clone
    def test_lun_clone(self):
        self._component().lun_clone('lun1', 'lun1-copy', '/vol2')

        self.client.lun_clone.assert_called_once_with({
            'name': 'lun1-copy',
            'src_lun_uuid': LUN1['uuid'],
            'location': '/vol2'
        })
        self.assertEqual(self.out.getvalue(), "LUN cloned successfully\n")

    def test_lun_clone_not_enough_space(self):
        volumes = [VOL1, dict(VOL2, free=str(4 * GB))]
        self.client = make_client(volumes=volumes, luns=[LUN1])

        with self.assertRaisesRegex(ISCSIError, "^not enough space, /vol2 has 4 GiB free$"):
            self._component().lun_clone('lun1', 'lun1-copy', '/vol2')

        self.client.lun_clone.assert_not_called()

    def test_lun_clone_invalid_destination_name(self):
        with self.assertRaisesRegex(ISCSIError, "^invalid LUN name"):
            self._component().lun_clone('lun1', 'lun1.copy', '/vol2')

        self.client.init.assert_not_called()

    # lun delete
    def test_lun_delete_confirmed(self):
        self._component("lun1\n").lun_delete('lun1')

        self.client.lun_delete.assert_called_once_with(LUN1['uuid'])
        self.assertEqual(self.out.getvalue(), (
            "Are you sure you want to delete this lun?\n"
            "It is mapped to the targets: target1 (connected), target2\n"
            "Enter the lun name (lun1) to continue: "
            "LUN deleted successfully\n"
        ))

    def test_lun_delete_unmapped(self):
        self.client = make_client(luns=[LUN1, LUN2], targets=[TARGET2])

        self._component("lun2\n").lun_delete('lun2')

        self.assertEqual(self.out.getvalue(), (
            "Are you sure you want to delete this lun?\n"
            "Enter the lun name (lun2) to continue: "
            "LUN deleted successfully\n"
        ))

    def test_lun_delete_cancelled(self):
        component = self._component("lun2\n")

        component.lun_delete('lun1')

        self.client.lun_delete.assert_not_called()
        self.assertTrue(self.out.getvalue().endswith("to continue: Cancelled\n"))
        self.assertTrue(component.status['success'])

    def test_lun_delete_end_of_input(self):
        self._component("").lun_delete('lun1')

        self.client.lun_delete.assert_not_called()
        self.assertTrue(self.out.getvalue().endswith("Cancelled\n"))

    def test_lun_delete_skip_verify(self):
        self._component().lun_delete('lun2', skip_verify=True)

        self.client.lun_delete.assert_called_once_with(LUN2['uuid'])
        self.client.target_list.assert_not_called()
        self.assertEqual(self.out.getvalue(), "LUN deleted successfully\n")

    # target create
    def test_target_create(self):
        self._component().target_create('target3', 'iqn.2000-01.com.synology:target3')

        self.client.target_create.assert_called_once_with({
            'name': 'target3',
            'iqn': 'iqn.2000-01.com.synology:target3'
        })
        self.assertEqual(self.out.getvalue(), "Target created successfully\n")

    def test_target_create_invalid_name(self):
        with self.assertRaises(ISCSIError) as cm:
            self._component().target_create('target.3', 'iqn.2000-01.com.synology:target3')

        self.assertEqual(str(cm.exception),
                         "invalid target name, must consist of a-z, A-Z, 0-9, and hyphens (-)")
        self.client.init.assert_not_called()

    # target delete
    def test_target_delete_active_sessions(self):
        component = self._component("target1\n")

        component.target_delete('target1')

        self.client.target_delete.assert_not_called()
        self.assertEqual(self.out.getvalue(), (
            "There are active sessions, please logout of all clients "
            "before continuing (force delete with -f)\n"
        ))
        self.assertTrue(component.status['success'])
        self.client.logout.assert_called_once()

    def test_target_delete_force(self):
        self._component("target1\n").target_delete('target1', force=True)

        self.client.target_delete.assert_called_once_with('1')
        self.assertEqual(self.out.getvalue(), (
            "Force deleting even though there are active sessions\n"
            "Are you sure you want to delete this target?\n"
            "Enter the target name (target1) to continue: "
            "Target deleted successfully\n"
        ))

    def test_target_delete_force_skip_verify(self):
        self._component().target_delete('target1', force=True, skip_verify=True)

        self.client.target_delete.assert_called_once_with('1')
        self.assertEqual(self.out.getvalue(), (
            "Force deleting even though there are active sessions\n"
            "Target deleted successfully\n"
        ))

    def test_target_delete_cancelled(self):
        self._component("target1\n").target_delete('target2')

        self.client.target_delete.assert_not_called()
        self.assertEqual(self.out.getvalue(), (
            "Are you sure you want to delete this target?\n"
            "Enter the target name (target2) to continue: "
            "Cancelled\n"
        ))

    def test_target_delete_skip_verify(self):
        self._component().target_delete('target2', skip_verify=True)

        self.client.target_delete.assert_called_once_with('2')
        self.assertEqual(self.out.getvalue(), "Target deleted successfully\n")

    def test_target_delete_unknown(self):
        with self.assertRaisesRegex(ISCSIError, "^could not find target with name: target3$"):
            self._component().target_delete('target3', skip_verify=True)

    def test_remote_calls_order(self):
        self._component().lun_map('lun1', 'target2')

        names = [c[0] for c in self.client.method_calls]
        self.assertEqual(names, ['init', 'login', 'lun_list', 'target_list', 'lun_map_target', 'logout'])


if __name__ == '__main__':
    unittest.main()

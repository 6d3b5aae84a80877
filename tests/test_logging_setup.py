#!/usr/bin/env python3
"""
Tests for logging configuration and credential scrubbing.
"""

import os
import sys
import time
import shutil
import logging
import tempfile
import unittest

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_harness.logging_setup import SensitiveDataFilter, LoggingManager, SecurityAuditLogger


class TestSensitiveDataFilter(unittest.TestCase):
    """Test cases for SensitiveDataFilter."""

    def scrub(self, msg):
        record = logging.LogRecord('ldap_harness', logging.INFO, __file__, 1, msg, None, None)
        self.assertTrue(SensitiveDataFilter().filter(record))
        return record.msg

    def test_key_value(self):
        self.assertEqual(self.scrub('password=secret123'), 'password=****')
        self.assertEqual(self.scrub('bind with bindCredential=secret123, dn=uid=admin'),
                         'bind with bindCredential=****, dn=uid=admin')

    def test_json_value(self):
        self.assertEqual(self.scrub('{"bindCredential": "topsecret"}'), '{"bindCredential": "****"}')
        self.assertEqual(self.scrub("{'userPassword': 'Password1'}"), "{'userPassword': '****'}")

    def test_normal_message(self):
        self.assertEqual(self.scrub('Created LDAP group cn=group1,ou=Groups'),
                         'Created LDAP group cn=group1,ou=Groups')


class TestLoggingManager(unittest.TestCase):
    """Test cases for LoggingManager."""

    def setUp(self):
        self.log_dir = tempfile.mkdtemp(prefix='ldap_harness_logs_')
        self.root_level = logging.getLogger().level
        self.manager = LoggingManager()

    def tearDown(self):
        self.manager.reset()
        logging.getLogger().setLevel(self.root_level)
        shutil.rmtree(self.log_dir, ignore_errors=True)

    def config(self, **overrides):
        config = {
            'level': 'INFO',
            'log_dir': self.log_dir,
            'rotation': 'none',
            'console_output': False,
        }
        config.update(overrides)
        return config

    def read_log(self):
        for handler in logging.getLogger().handlers:
            handler.flush()
        with open(os.path.join(self.log_dir, 'harness.log'), encoding='utf-8') as f:
            return f.read()

    def test_file_logging_is_scrubbed(self):
        self.manager.setup_logging(self.config())
        logging.getLogger('ldap_harness.tests').info('Binding with bind_password=hunter2')

        content = self.read_log()
        self.assertIn('bind_password=****', content)
        self.assertNotIn('hunter2', content)

    def test_configured_once(self):
        self.manager.setup_logging(self.config())
        handlers = list(logging.getLogger().handlers)

        self.manager.setup_logging(self.config(console_output=True))
        self.assertEqual(logging.getLogger().handlers, handlers)

    def test_old_logs_removed(self):
        old_log = os.path.join(self.log_dir, 'harness.log.2020-01-01')
        with open(old_log, 'w') as f:
            f.write('old\n')
        old_time = time.time() - 30 * 24 * 3600
        os.utime(old_log, (old_time, old_time))

        self.manager.setup_logging(self.config(retention_days=7))

        self.assertFalse(os.path.exists(old_log))
        self.assertTrue(os.path.exists(os.path.join(self.log_dir, 'harness.log')))


class TestSecurityAuditLogger(unittest.TestCase):

    def test_user_operation(self):
        with self.assertLogs('security', level='INFO') as captured:
            SecurityAuditLogger().log_user_operation('delete', 'johnkeycloak', 'ldap-1', False)
        self.assertIn('User operation FAILURE: delete user=johnkeycloak provider=ldap-1', captured.output[0])


if __name__ == '__main__':
    unittest.main()

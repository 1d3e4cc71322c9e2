#!/usr/bin/env python3
"""
Unit tests for logging infrastructure.

Covers log file creation, rotation handlers, retention cleanup and the
audit logger.
"""

import os
import sys
import time
import shutil
import logging
import logging.handlers
import tempfile
import unittest

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldapdn.logging_setup import LoggingManager, AuditLogger, SensitiveDataFilter, LOG_FILE_NAME


class TestLoggingManager(unittest.TestCase):
    """Test cases for LoggingManager."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp(prefix='ldapdn_test_logs_')
        self.root_logger = logging.getLogger()
        self.saved_handlers = list(self.root_logger.handlers)
        self.saved_level = self.root_logger.level

    def tearDown(self):
        for handler in self.root_logger.handlers:
            handler.close()
        self.root_logger.handlers = self.saved_handlers
        self.root_logger.setLevel(self.saved_level)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def configure(self, **overrides):
        config = {
            'level': 'DEBUG',
            'log_dir': self.temp_dir,
            'rotation': 'daily',
            'retention_days': 3,
            'console_output': False,
        }
        config.update(overrides)
        manager = LoggingManager()
        manager.setup_logging(config)
        return manager

    def test_writes_log_file(self):
        self.configure()
        logging.getLogger('ldapdn.test').info("entry converged")
        for handler in self.root_logger.handlers:
            handler.flush()

        with open(os.path.join(self.temp_dir, LOG_FILE_NAME)) as f:
            self.assertIn("entry converged", f.read())

    def test_daily_rotation_handler(self):
        self.configure(rotation='daily')
        handler = self.root_logger.handlers[0]
        self.assertIsInstance(handler, logging.handlers.TimedRotatingFileHandler)
        self.assertEqual(handler.backupCount, 3)

    def test_no_rotation(self):
        self.configure(rotation='none')
        handler = self.root_logger.handlers[0]
        self.assertIsInstance(handler, logging.FileHandler)
        self.assertNotIsInstance(handler, logging.handlers.TimedRotatingFileHandler)

    def test_console_handler(self):
        self.configure(console_output=True, console_level='ERROR')
        self.assertEqual(len(self.root_logger.handlers), 2)
        self.assertEqual(self.root_logger.handlers[1].level, logging.ERROR)

    def test_handlers_scrub_secrets(self):
        self.configure()
        for handler in self.root_logger.handlers:
            self.assertTrue(any(isinstance(f, SensitiveDataFilter) for f in handler.filters))

    def test_creates_log_directory(self):
        log_dir = os.path.join(self.temp_dir, 'nested', 'logs')
        self.configure(log_dir=log_dir)
        self.assertTrue(os.path.isdir(log_dir))

    def test_configured_once(self):
        manager = self.configure()
        handlers = list(self.root_logger.handlers)
        manager.setup_logging({'log_dir': os.path.join(self.temp_dir, 'other')})
        self.assertEqual(self.root_logger.handlers, handlers)

    def test_removes_old_rotated_logs(self):
        old_file = os.path.join(self.temp_dir, LOG_FILE_NAME + '.2020-01-01')
        recent_file = os.path.join(self.temp_dir, LOG_FILE_NAME + '.recent')
        for path in (old_file, recent_file):
            with open(path, 'w') as f:
                f.write('old\n')
        ten_days_ago = time.time() - 10 * 86400
        os.utime(old_file, (ten_days_ago, ten_days_ago))

        manager = self.configure(retention_days=3)

        self.assertFalse(os.path.exists(old_file))
        self.assertTrue(os.path.exists(recent_file))
        self.assertIn(recent_file, manager.get_log_files())


class TestAuditLogger(unittest.TestCase):
    """Test cases for AuditLogger."""

    def test_entry_change(self):
        audit = AuditLogger()
        with self.assertLogs('audit', level='INFO') as logs:
            audit.log_entry_change('cn=a,dc=example', 'created', success=True)
            audit.log_entry_change('cn=b,dc=example', 'present', success=False)

        self.assertIn('SUCCESS: created dn=cn=a,dc=example', logs.output[0])
        self.assertIn('FAILURE: present dn=cn=b,dc=example', logs.output[1])

    def test_configuration_access(self):
        with self.assertLogs('audit', level='INFO') as logs:
            AuditLogger().log_configuration_access('/etc/ldapdn/config.yaml')
        self.assertIn('/etc/ldapdn/config.yaml', logs.output[0])


if __name__ == '__main__':
    unittest.main()

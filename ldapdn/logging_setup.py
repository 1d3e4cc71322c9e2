"""
Logging setup and configuration for ldapdn.

Every run logs to ``<log_dir>/ldapdn.log`` (rotated at midnight) and,
optionally, to the console. Change records are logged at debug level, so
every handler scrubs password values before they are written.
"""

import os
import re
import glob
import logging
import logging.handlers
from typing import Dict, Any, List
from datetime import datetime, timedelta

LOG_FILE_NAME = 'ldapdn.log'

FILE_FORMAT = '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s'
FILE_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
CONSOLE_FORMAT = '%(asctime)s %(levelname)-7s %(message)s'
CONSOLE_DATE_FORMAT = '%H:%M:%S'


def _level(name: str, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub secrets from log messages and logged change records."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'token', 'secret', 'credential',
        'pass', 'pwd', 'authorization'
    ]

    # LDIF lines holding secrets, plain or base64 encoded
    LDIF_SECRET_LINE = re.compile(
        r'\b((?:userPassword|olcRootPW|[A-Za-z]*[Pp]assword|[A-Za-z]*[Ss]ecret)(?:;[\w-]+)*::?[ \t]*)\S.*$',
        re.MULTILINE
    )

    # ldapmodify -w secret
    BIND_PASSWORD_ARGUMENT = re.compile(r'(\s-w\s+)\S+')

    def _scrub_assignments(self, msg: str) -> str:
        for keyword in self.SENSITIVE_KEYWORDS:
            # key=value
            msg = re.sub(rf'({keyword}\s*=\s*)[^\s,}}\]]+(\s|,|$)', r'\1****\2', msg, flags=re.IGNORECASE)
            # "key": "value" in dict or JSON dumps
            msg = re.sub(rf'(["\']{keyword}["\']\s*:\s*["\'])[^"\']*(["\'])', r'\1****\2', msg,
                         flags=re.IGNORECASE)
        return msg

    def filter(self, record):
        if hasattr(record, 'msg'):
            msg = self._scrub_assignments(str(record.msg))
            msg = self.LDIF_SECRET_LINE.sub(r'\1****', msg)
            record.msg = self.BIND_PASSWORD_ARGUMENT.sub(r'\1****', msg)
        return True


class LoggingManager:
    """
    Configures the root logger once per process.

    Settings come from the ``logging`` section of the configuration:
    level, log_dir, rotation ('daily'/'midnight' or 'none'), retention_days,
    console_output and console_level.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Install file and console handlers on the root logger.

        Args:
            config: Logging configuration dictionary
        """
        if self.configured:
            return

        settings = config or {}
        level = _level(settings.get('level', 'INFO'), logging.INFO)
        self.log_dir = settings.get('log_dir', 'logs')
        self.retention_days = settings.get('retention_days', 7)
        console_output = settings.get('console_output', True)

        self._ensure_log_directory()

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        scrubber = SensitiveDataFilter()
        handlers = [
            (self._create_file_handler(settings.get('rotation', 'daily')), level,
             logging.Formatter(FILE_FORMAT, datefmt=FILE_DATE_FORMAT)),
        ]
        if console_output:
            handlers.append((logging.StreamHandler(), _level(settings.get('console_level', 'WARNING'), logging.WARNING),
                             logging.Formatter(CONSOLE_FORMAT, datefmt=CONSOLE_DATE_FORMAT)))

        for handler, handler_level, formatter in handlers:
            handler.setLevel(handler_level)
            handler.setFormatter(formatter)
            handler.addFilter(scrubber)
            root_logger.addHandler(handler)

        self._cleanup_old_logs()
        self.configured = True

        logging.getLogger(__name__).info(
            f"Logging to {os.path.join(self.log_dir, LOG_FILE_NAME)} at {logging.getLevelName(level)}, "
            f"keeping {self.retention_days} days, console={console_output}"
        )

    def _ensure_log_directory(self) -> None:
        if not self.log_dir or os.path.isdir(self.log_dir):
            return
        try:
            os.makedirs(self.log_dir, exist_ok=True)
        except OSError as e:
            # logging is not configured yet
            print(f"Warning: cannot create log directory {self.log_dir} ({e}), logging to current directory")
            self.log_dir = '.'

    def _create_file_handler(self, rotation: str) -> logging.Handler:
        """
        Create the file handler for the rotation setting.

        Args:
            rotation: 'daily' or 'midnight' to rotate at midnight, anything else for a single file

        Returns:
            Logging handler writing to the ldapdn log file
        """
        path = os.path.join(self.log_dir, LOG_FILE_NAME)
        if rotation.lower() not in ('daily', 'midnight'):
            return logging.FileHandler(path, encoding='utf-8')

        handler = logging.handlers.TimedRotatingFileHandler(
            filename=path,
            when='midnight',
            backupCount=self.retention_days,
            encoding='utf-8'
        )
        handler.suffix = '%Y-%m-%d'
        return handler

    def _rotated_logs(self) -> List[str]:
        return [path for path in self.get_log_files() if not path.endswith(LOG_FILE_NAME)]

    def _cleanup_old_logs(self) -> None:
        """Delete rotated log files older than the retention period."""
        if not self.log_dir or self.retention_days <= 0:
            return

        cutoff = datetime.now() - timedelta(days=self.retention_days)
        for path in self._rotated_logs():
            try:
                if datetime.fromtimestamp(os.path.getmtime(path)) < cutoff:
                    os.remove(path)
                    print(f"Removed old log file: {path}")
            except (OSError, ValueError) as e:
                print(f"Warning: Could not remove old log file {path}: {e}")

    def get_log_files(self) -> List[str]:
        if not self.log_dir:
            return []
        return sorted(glob.glob(os.path.join(self.log_dir, LOG_FILE_NAME + '*')))


_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """Configure process-wide logging from the ``logging`` config section."""
    _logging_manager.setup_logging(config)


class AuditLogger:
    """Records every change applied to the directory on the ``audit`` logger."""

    def __init__(self):
        self.logger = logging.getLogger('audit')

    def log_entry_change(self, dn: str, action: str, success: bool):
        outcome = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"Entry change {outcome}: {action} dn={dn}")

    def log_configuration_access(self, config_file: str):
        self.logger.info(f"Configuration read from {config_file}")


audit_logger = AuditLogger()

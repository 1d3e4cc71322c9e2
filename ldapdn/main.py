"""
Main orchestrator for ldapdn.

This module loads the declared entries, connects to the directory and brings
each entry to its declared state, one entry at a time and in declaration
order.
"""

import sys
import json
import logging
import argparse
from datetime import datetime
from typing import Dict, Any, List, Optional, Tuple

from ldapdn.config import load_config, ConfigurationError
from ldapdn.attributes import DeclarationError
from ldapdn.entry import ManagedEntry, RESULT_UNCHANGED
from ldapdn.gateway import create_gateway, DirectoryGateway, GatewayError, GatewayConnectionError
from ldapdn.logging_setup import setup_logging, audit_logger
from ldapdn.observation import ParseError
from ldapdn.retry import retry_call, retry_settings, is_retryable_error, MaxRetriesExceeded

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ENTRY_FAILURES = 1
EXIT_CONFIG_ERROR = 2
EXIT_CONNECTION_ERROR = 3
EXIT_UNEXPECTED_ERROR = 4


class SyncError(Exception):
    """Raised when an entry cannot be brought to its declared state."""
    pass


class SyncOrchestrator:
    """
    Main orchestrator for declared directory entries.

    Syncs entries sequentially, so declarations that share a DN never race
    each other, and keeps going after a failed entry unless configured not to.
    """

    def __init__(self, config_path: Optional[str] = None, dry_run: bool = False):
        """
        Initialize sync orchestrator.

        Args:
            config_path: Path to configuration file
            dry_run: Compute and report change records without applying them
        """
        self.config = None
        self.config_path = config_path
        self.dry_run = dry_run
        self.gateway: Optional[DirectoryGateway] = None

        self.sync_stats = {
            'entries_processed': 0,
            'entries_failed': 0,
            'created': 0,
            'modified': 0,
            'removed': 0,
            'unchanged': 0,
            'start_time': None,
            'end_time': None,
            'runtime_seconds': 0,
        }
        self.entry_errors: Dict[str, str] = {}
        self.pending_records: List[Tuple[str, str]] = []

    def run(self) -> int:
        """
        Run the complete synchronization process.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self.sync_stats['start_time'] = datetime.now()

            self._load_configuration()
            setup_logging(self.config.get('logging', {}))
            logger.info(f"Starting ldapdn sync{' (dry run)' if self.dry_run else ''}")

            self._connect()
            self._process_entries()

            self.sync_stats['end_time'] = datetime.now()
            self.sync_stats['runtime_seconds'] = (
                self.sync_stats['end_time'] - self.sync_stats['start_time']
            ).total_seconds()
            self._log_sync_summary()

            if self.sync_stats['entries_failed'] > 0:
                logger.warning(f"Sync completed with {self.sync_stats['entries_failed']} failed entries")
                return EXIT_ENTRY_FAILURES
            logger.info("Sync completed successfully")
            return EXIT_OK

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIG_ERROR
        except GatewayConnectionError as e:
            logger.error(f"Directory connection error: {e}")
            return EXIT_CONNECTION_ERROR
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            return EXIT_UNEXPECTED_ERROR
        finally:
            self._cleanup()

    def _load_configuration(self):
        """Load and validate configuration."""
        self.config = load_config(self.config_path)
        audit_logger.log_configuration_access(self.config_path or 'config.yaml')

    def _connect(self):
        """Create the gateway and open it."""
        directory_config = dict(self.config['directory'])
        directory_config['error_handling'] = self.config.get('error_handling', {})
        self.gateway = create_gateway(directory_config)
        self.gateway.connect()

    def _search(self, dn: str):
        """Search with caller-level retries for transient failures."""
        error_config = self.config.get('error_handling', {})
        try:
            return retry_call(
                self.gateway.search,
                args=(dn,),
                exceptions=(GatewayError,),
                should_retry=is_retryable_error,
                operation_name=f"Search of {dn}",
                **retry_settings(error_config)
            )
        except MaxRetriesExceeded as e:
            raise GatewayError(str(e), transient=True)

    def _build_entries(self) -> List[ManagedEntry]:
        entries = []
        for entry_config in self.config.get('entries', []):
            try:
                entries.append(ManagedEntry.from_config(entry_config))
            except DeclarationError as e:
                raise ConfigurationError(f"Invalid attributes for {entry_config.get('dn')}: {e}")
        return entries

    def _process_entries(self):
        """Sync every configured entry in order."""
        continue_on_error = self.config.get('error_handling', {}).get('continue_on_error', True)

        for entry in self._build_entries():
            try:
                self._sync_entry(entry)
                self.sync_stats['entries_processed'] += 1
            except SyncError as e:
                logger.error(str(e))
                self.sync_stats['entries_failed'] += 1
                self.entry_errors[entry.name] = str(e)
                if not continue_on_error:
                    logger.error("Stopping after first failed entry (continue_on_error is false)")
                    break

    def _sync_entry(self, entry: ManagedEntry):
        """Sync a single entry and record its outcome."""
        logger.info(f"Processing entry: {entry.name}")
        try:
            result = entry.sync(self.gateway, dry_run=self.dry_run, search=self._search)
        except ParseError as e:
            raise SyncError(f"Could not parse directory entry {entry.dn}: {e}")
        except GatewayError as e:
            if not self.dry_run and e.record:
                audit_logger.log_entry_change(entry.dn, entry.ensure, success=False)
            raise SyncError(f"Failed to sync {entry.dn}: {e}")

        self.sync_stats[result] += 1
        if result != RESULT_UNCHANGED:
            if self.dry_run:
                self.pending_records.append((entry.name, entry.last_record))
            else:
                audit_logger.log_entry_change(entry.dn, result, success=True)

    def _log_sync_summary(self):
        """Log a summary of the run."""
        stats = self.sync_stats
        logger.info("=== SYNC SUMMARY ===")
        logger.info(f"Runtime: {stats['runtime_seconds']:.2f} seconds")
        logger.info(f"Entries processed: {stats['entries_processed']}, failed: {stats['entries_failed']}")
        logger.info(f"Created: {stats['created']}, modified: {stats['modified']}, "
                    f"removed: {stats['removed']}, unchanged: {stats['unchanged']}")
        for name, error in self.entry_errors.items():
            logger.info(f"  {name}: {error.splitlines()[0]}")

    def health_check(self) -> Dict[str, Any]:
        """
        Check configuration and directory connectivity.

        Returns:
            Dictionary with health check results
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            self._build_entries()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': f"{len(self.config['entries'])} entries configured"
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        try:
            self._connect()
            health_status['checks']['directory'] = {
                'status': 'pass',
                'message': f"{self.config['directory']['type']} gateway ready"
            }
        except (GatewayError, ValueError) as e:
            health_status['checks']['directory'] = {
                'status': 'fail',
                'message': f'Directory connection failed: {e}'
            }
            health_status['status'] = 'unhealthy'
        finally:
            self._cleanup()

        return health_status

    def _cleanup(self):
        """Clean up resources."""
        if self.gateway:
            self.gateway.disconnect()
            self.gateway = None


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    parser = argparse.ArgumentParser(description='Declarative LDAP entry management')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--dry-run', action='store_true',
                        help='Print the change records instead of applying them')
    parser.add_argument('--health-check', action='store_true',
                        help='Check configuration and directory connectivity')

    args = parser.parse_args(argv)

    orchestrator = SyncOrchestrator(config_path=args.config, dry_run=args.dry_run)

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    exit_code = orchestrator.run()
    for name, record in orchestrator.pending_records:
        print(f"# {name}")
        print(record)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

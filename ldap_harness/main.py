"""
Command line entry point for the LDAP Provisioning Harness.

Each invocation loads the YAML configuration, registers the configured LDAP
provider in a fresh registry and runs one command against the directory:

    seed          Build the groups fixture and synchronize it
    sync          Synchronize the LDAP groups into the local store
    remove-user   Delete one user in LDAP only
    health-check  Check configuration and directory connectivity

Results are printed as JSON.
"""

import sys
import json
import logging
import argparse
from datetime import datetime
from typing import Dict, Any, List, Optional

from ldap_harness.config import load_config, ConfigurationError
from ldap_harness.errors import HarnessError
from ldap_harness.group_mapper import GroupMapperMode, add_or_update_group_mapper, get_group_description_attr_name
from ldap_harness.harness import LDAPTestHarness
from ldap_harness.identity_store import InMemoryIdentityStore
from ldap_harness.ldap_client import LDAPClient, LDAPConnectionError
from ldap_harness.ldap_config import LDAPConfig
from ldap_harness.logging_setup import setup_logging, security_logger
from ldap_harness.providers import ProviderRegistry

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_CONNECTION_ERROR = 3


class HarnessRunner:
    """
    Runs harness commands from a configuration file.

    Maps failures to exit codes: 2 for configuration errors, 3 when the
    directory cannot be reached and 1 for any other failure.
    """

    def __init__(self, config_path: Optional[str] = None, client_factory=LDAPClient):
        """
        Initialize the runner.

        Args:
            config_path: Path to configuration file
            client_factory: Callable building a directory client from its configuration
        """
        self.config_path = config_path
        self.client_factory = client_factory
        self.config = None
        self.harness = None
        self.output: Dict[str, Any] = {}

    def run(self, command: str, username: Optional[str] = None) -> int:
        """
        Run one command.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self._load_configuration()
            self._setup_logging()
            logger.info(f"Running harness command: {command}")

            self.harness = self._build_harness()
            if command == 'seed':
                self.output = self.seed()
            elif command == 'sync':
                self.output = self.sync()
            elif command == 'remove-user':
                self.output = self.remove_user(username)
            else:
                raise ConfigurationError(f"Unknown command: {command}")

            self.output['status'] = 'success'
            return EXIT_OK

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            self.output = {'status': 'error', 'error': f"Configuration error: {e}"}
            return EXIT_CONFIGURATION_ERROR
        except LDAPConnectionError as e:
            logger.error(f"LDAP connection error: {e}")
            self.output = {'status': 'error', 'error': f"LDAP connection error: {e}"}
            return EXIT_CONNECTION_ERROR
        except HarnessError as e:
            logger.error(f"Command {command} failed: {e}")
            self.output = {'status': 'error', 'error': str(e)}
            return EXIT_FAILURE
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            self.output = {'status': 'error', 'error': f"Unexpected error: {e}"}
            return EXIT_FAILURE
        finally:
            self._cleanup()

    def _load_configuration(self):
        """Load and validate configuration."""
        if self.config is not None:
            return
        self.config = load_config(self.config_path)
        security_logger.log_configuration_access(self.config_path or 'config.yaml')

    def _setup_logging(self):
        setup_logging(self.config.get('logging', {}))

    def _build_harness(self) -> LDAPTestHarness:
        harness = LDAPTestHarness(
            ProviderRegistry(),
            InMemoryIdentityStore(),
            client_factory=self.client_factory,
            error_handling=self.config.get('error_handling', {}),
        )
        harness.create_ldap_provider(self.config['provider'], self.config['harness']['import_enabled'])
        return harness

    def _group_paths(self) -> List[str]:
        return [group.path for group in self.harness.store.groups()]

    def seed(self) -> Dict[str, Any]:
        result = self.harness.prepare_groups_ldap_test()
        return {
            'command': 'seed',
            'sync': result.to_dict(),
            'groups': self._group_paths(),
            'default_groups': [group.path for group in self.harness.store.default_groups()],
        }

    def sync(self) -> Dict[str, Any]:
        """Register the groups mapper and run one synchronization pass."""
        provider = self.harness.registry.get_ldap_provider()
        add_or_update_group_mapper(
            self.harness.registry, provider, GroupMapperMode.LDAP_ONLY,
            get_group_description_attr_name(LDAPConfig(provider)))
        result = self.harness.sync_groups(provider.id, self.config['harness']['default_groups'])
        return {
            'command': 'sync',
            'sync': result.to_dict(),
            'groups': self._group_paths(),
        }

    def remove_user(self, username: Optional[str]) -> Dict[str, Any]:
        if not username:
            raise ConfigurationError("remove-user requires --username")
        self.harness.remove_ldap_user(username)
        return {'command': 'remove-user', 'username': username}

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of the harness configuration and directory.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        try:
            harness = self._build_harness()
            client_config = LDAPConfig(harness.registry.get_ldap_provider()).to_client_config(
                self.config.get('error_handling', {}))
            test_client = self.client_factory(client_config)
            test_client.connect(max_retries=1, retry_wait=1)
            test_client.disconnect()
            health_status['checks']['ldap'] = {
                'status': 'pass',
                'message': 'LDAP connection successful'
            }
        except HarnessError as e:
            health_status['checks']['ldap'] = {
                'status': 'fail',
                'message': f'LDAP connection failed: {e}'
            }
            health_status['status'] = 'unhealthy'

        return health_status

    def _cleanup(self):
        """Clean up resources."""
        if self.harness:
            self.harness.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='ldap-harness', description='LDAP Provisioning Harness')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('seed', help='Build the groups fixture in LDAP and synchronize it')
    subparsers.add_parser(
        'sync',
        help='Synchronize LDAP groups into a fresh in-memory local store; '
             'every run starts empty, so all groups are reported as added')
    remove_parser = subparsers.add_parser('remove-user', help='Delete a user in LDAP only')
    remove_parser.add_argument('--username', '-u', required=True, help='Username of the LDAP user')
    subparsers.add_parser('health-check', help='Check configuration and LDAP connectivity')
    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)
    runner = HarnessRunner(config_path=args.config)

    if args.command == 'health-check':
        health_status = runner.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(EXIT_OK if health_status['status'] == 'healthy' else EXIT_FAILURE)

    exit_code = runner.run(args.command, username=getattr(args, 'username', None))
    print(json.dumps(runner.output, indent=2))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

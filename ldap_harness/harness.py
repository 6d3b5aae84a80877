"""
Provisioning harness for LDAP backed identity tests.

LDAPTestHarness ties together the provider registry, the local identity store
and one directory connection per registered provider. It seeds the directory
with a fixed group hierarchy and users, synchronizes the groups into the local
store and can remove directory users behind the local store's back to
simulate drift.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ldap_harness.group_mapper import (
    GroupMapperConfig, GroupMapperMode, add_or_update_group_mapper,
    get_group_description_attr_name, resolve_group_mapper,
)
from ldap_harness.group_sync import GroupLDAPSynchronizer, SynchronizationResult
from ldap_harness.groups import add_member, create_ldap_group, remove_all_ldap_groups
from ldap_harness.identity_store import IdentityStore
from ldap_harness.ldap_client import LDAPClient
from ldap_harness.ldap_config import LDAPConfig
from ldap_harness.providers import ProviderConfig, ProviderRegistry, create_ldap_provider
from ldap_harness.users import (
    add_ldap_user, add_local_user, remove_all_ldap_users,
    remove_ldap_user_by_username, update_ldap_password,
)

logger = logging.getLogger(__name__)

LOCAL_USER_PASSWORD = 'password-app'
LDAP_USER_PASSWORD = 'Password1'

LOCAL_USERS = [
    ('mary', 'mary@test.com'),
    ('john', 'john@test.com'),
]

# (username, first name, last name, email, postal code)
LDAP_USERS = [
    ('johnkeycloak', 'John', 'Doe', 'john@email.org', '1234'),
    ('marykeycloak', 'Mary', 'Kelly', 'mary@email.org', '5678'),
    ('robkeycloak', 'Rob', 'Brown', 'rob@email.org', '8910'),
    ('jameskeycloak', 'James', 'Brown', 'james@email.org', '8910'),
]

DEFAULT_GROUP_PATHS = [
    '/defaultGroup1/defaultGroup11',
    '/defaultGroup1/defaultGroup12',
]


class LDAPTestHarness:
    """
    Explicit context for one provisioning run.

    Directory clients are created through client_factory, which receives the
    LDAPClient configuration dictionary of a provider.
    """

    def __init__(self, registry: ProviderRegistry, store: IdentityStore,
                 client_factory: Callable[[Dict[str, Any]], LDAPClient] = LDAPClient,
                 error_handling: Optional[Dict[str, Any]] = None):
        self.registry = registry
        self.store = store
        self.client_factory = client_factory
        self.error_handling = error_handling or {}
        self._clients: Dict[str, LDAPClient] = {}

    def create_ldap_provider(self, settings: Mapping[str, str], import_enabled: bool) -> str:
        """Register an LDAP provider and return its id."""
        return create_ldap_provider(self.registry, settings, import_enabled)

    def _resolve_provider(self, provider_id: Optional[str] = None) -> ProviderConfig:
        if provider_id:
            return self.registry.get_provider(provider_id)
        return self.registry.get_ldap_provider()

    def get_ldap_client(self, provider: ProviderConfig) -> LDAPClient:
        """
        Return the connected directory client of a provider, connecting on first use.

        Raises:
            ConfigurationError: If the provider lacks connection settings
            LDAPConnectionError: If the directory cannot be reached
        """
        client = self._clients.get(provider.id)
        if client is not None and client.connected:
            return client

        client = self.client_factory(LDAPConfig(provider).to_client_config(self.error_handling))
        client.connect()
        self._clients[provider.id] = client
        return client

    def sync_groups(self, provider_id: Optional[str] = None,
                    default_groups: Optional[Iterable[str]] = None) -> SynchronizationResult:
        """
        Synchronize the LDAP groups of a provider into the local store.

        Args:
            provider_id: Provider to synchronize; the registered LDAP provider if None
            default_groups: Local group paths to mark as default after the pass

        Returns:
            Result of the synchronization pass
        """
        provider = self._resolve_provider(provider_id)
        mapper_config = resolve_group_mapper(self.registry, provider.id)
        synchronizer = GroupLDAPSynchronizer(self.store, self.get_ldap_client(provider), mapper_config)
        result = synchronizer.sync_data_from_federation_provider()
        if default_groups:
            synchronizer.assign_default_groups(default_groups)
        return result

    def prepare_groups_ldap_test(self) -> SynchronizationResult:
        """
        Seed the directory and local store with the groups test fixture.

        Creates two local users, rebuilds the LDAP group hierarchy

            group1 -> group11, group12
            defaultGroup1 -> defaultGroup11, defaultGroup12

        synchronizes it, makes the defaultGroup1 subgroups default groups and
        recreates four LDAP users. The first failure aborts the remaining steps.

        Returns:
            Result of the group synchronization
        """
        provider = self.registry.get_ldap_provider()
        ldap_config = LDAPConfig(provider)
        client = self.get_ldap_client(provider)
        logger.info(f"Preparing groups fixture for provider {provider.id}")

        for username, email in LOCAL_USERS:
            add_local_user(self.store, username, email, LOCAL_USER_PASSWORD)

        description_attr = get_group_description_attr_name(ldap_config)
        mapper = add_or_update_group_mapper(self.registry, provider, GroupMapperMode.LDAP_ONLY, description_attr)
        mapper_config = GroupMapperConfig(mapper)

        remove_all_ldap_groups(client, mapper_config)

        def create_group(name, description=None):
            return create_ldap_group(client, mapper_config, name, description_attr, description)

        def link(parent, child, replace_existing):
            add_member(client, mapper_config.membership_type, mapper_config.membership_attribute,
                       mapper_config.membership_user_attribute, parent, child, replace_existing)

        group1 = create_group('group1', 'group1 - description')
        group11 = create_group('group11')
        group12 = create_group('group12')
        default_group1 = create_group('defaultGroup1', 'Default Group1 - description')
        default_group11 = create_group('defaultGroup11')
        default_group12 = create_group('defaultGroup12', 'Default Group12 - description')

        link(group1, group11, False)
        link(group1, group12, True)
        link(default_group1, default_group11, False)
        link(default_group1, default_group12, True)

        result = self.sync_groups(provider.id, DEFAULT_GROUP_PATHS)

        remove_all_ldap_users(client, ldap_config)
        for username, first_name, last_name, email, postal_code in LDAP_USERS:
            user = add_ldap_user(client, ldap_config, username, first_name, last_name, email,
                                 None, postalCode=postal_code)
            update_ldap_password(client, ldap_config, user, LDAP_USER_PASSWORD)

        logger.info(f"Groups fixture ready: {result.status()}")
        return result

    def remove_ldap_user(self, username: str, provider_id: Optional[str] = None):
        """
        Delete a user in LDAP only, leaving the local store untouched.

        Raises:
            NotFoundError: If the provider or the user does not exist
        """
        provider = self._resolve_provider(provider_id)
        client = self.get_ldap_client(provider)
        remove_ldap_user_by_username(client, LDAPConfig(provider), username)

    def clients(self) -> List[LDAPClient]:
        return list(self._clients.values())

    def close(self):
        """Disconnect every cached directory client."""
        for provider_id, client in list(self._clients.items()):
            client.disconnect()
            logger.debug(f"Closed LDAP connection of provider {provider_id}")
        self._clients.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

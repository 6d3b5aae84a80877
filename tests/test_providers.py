#!/usr/bin/env python3
"""
Unit tests for provider registration and LDAP provider settings.
"""

import os
import sys
import unittest
import dataclasses

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_harness.config import ConfigurationError
from ldap_harness.errors import NotFoundError
from ldap_harness.ldap_config import LDAPConfig
from ldap_harness.providers import (
    ProviderRegistry, ProviderConfig, CachePolicy, EditMode,
    create_ldap_provider, to_multivalued, MAX_LIFESPAN_MS,
)
from mock_directory import LDAP_SETTINGS, BASE_DN


class TestCreateLDAPProvider(unittest.TestCase):
    """Test cases for create_ldap_provider."""

    def setUp(self):
        self.registry = ProviderRegistry()

    def test_registered_provider_fields(self):
        provider_id = create_ldap_provider(self.registry, LDAP_SETTINGS, True)
        provider = self.registry.get_provider(provider_id)

        self.assertEqual(provider.id, provider_id)
        self.assertEqual(provider.name, 'test-ldap')
        self.assertEqual(provider.provider_id, 'ldap')
        self.assertTrue(provider.import_enabled)
        self.assertEqual(provider.cache_policy, CachePolicy.MAX_LIFESPAN)
        self.assertEqual(provider.max_lifespan, MAX_LIFESPAN_MS)
        self.assertEqual(provider.priority, 0)
        self.assertEqual(provider.changed_sync_period, -1)
        self.assertEqual(provider.full_sync_period, -1)
        self.assertEqual(provider.last_sync, 0)
        self.assertEqual(provider.get('connectionUrl'), 'ldap://localhost:10389')

    def test_sync_registrations_and_edit_mode_forced(self):
        settings = dict(LDAP_SETTINGS, syncRegistrations='false', editMode='READ_ONLY')
        provider = self.registry.get_provider(create_ldap_provider(self.registry, settings, False))

        self.assertTrue(provider.sync_registrations)
        self.assertEqual(provider.edit_mode, EditMode.WRITABLE)
        self.assertEqual(provider.config['editMode'], ('WRITABLE',))
        self.assertFalse(provider.import_enabled)

    def test_each_registration_gets_new_id(self):
        first = create_ldap_provider(self.registry, LDAP_SETTINGS, True)
        second = create_ldap_provider(self.registry, LDAP_SETTINGS, True)
        self.assertNotEqual(first, second)
        self.assertEqual(len(self.registry.providers()), 2)

    def test_registered_provider_is_immutable(self):
        provider = self.registry.get_provider(create_ldap_provider(self.registry, LDAP_SETTINGS, True))

        with self.assertRaises(TypeError):
            provider.config['editMode'] = ('READ_ONLY',)
        with self.assertRaises(dataclasses.FrozenInstanceError):
            provider.import_enabled = False

    def test_malformed_settings(self):
        with self.assertRaises(ConfigurationError):
            create_ldap_provider(self.registry, dict(LDAP_SETTINGS, connectionTimeout=10000), True)
        with self.assertRaises(ConfigurationError):
            create_ldap_provider(self.registry, ['connectionUrl'], True)
        self.assertEqual(self.registry.providers(), [])


class TestProviderRegistry(unittest.TestCase):
    """Test cases for ProviderRegistry."""

    def setUp(self):
        self.registry = ProviderRegistry()

    def test_unknown_provider(self):
        with self.assertRaises(NotFoundError):
            self.registry.get_provider('missing')
        with self.assertRaises(NotFoundError):
            self.registry.get_ldap_provider()

    def test_already_registered_model_rejected(self):
        model = ProviderConfig(name='test-ldap', provider_id='ldap', config={}, id='fixed')
        with self.assertRaises(ConfigurationError):
            self.registry.add_provider(model)

    def test_get_ldap_provider_prefers_lowest_priority(self):
        self.registry.add_provider(ProviderConfig(name='second', provider_id='ldap', config={}, priority=5))
        first = self.registry.add_provider(ProviderConfig(name='first', provider_id='ldap', config={}, priority=1))
        self.registry.add_provider(ProviderConfig(name='kerberos', provider_id='kerberos', config={}, priority=0))

        self.assertEqual(self.registry.get_ldap_provider().id, first.id)

    def test_mapper_update_keeps_id(self):
        provider_id = create_ldap_provider(self.registry, LDAP_SETTINGS, True)
        mapper = self.registry.add_or_update_mapper(provider_id, 'groupsMapper', 'group-ldap-mapper', {'mode': ('IMPORT',)})
        updated = self.registry.add_or_update_mapper(provider_id, 'groupsMapper', 'group-ldap-mapper', {'mode': ('LDAP_ONLY',)})

        self.assertEqual(mapper.id, updated.id)
        self.assertEqual(self.registry.get_mapper(provider_id, 'groupsMapper').get('mode'), 'LDAP_ONLY')
        self.assertEqual(len(self.registry.mappers(provider_id)), 1)

        self.registry.remove_mapper(provider_id, 'groupsMapper')
        with self.assertRaises(NotFoundError):
            self.registry.get_mapper(provider_id, 'groupsMapper')

    def test_to_multivalued(self):
        config = to_multivalued({'userObjectClasses': ['inetOrgPerson', 'organizationalPerson'], 'vendor': 'other'})
        self.assertEqual(config['userObjectClasses'], ('inetOrgPerson', 'organizationalPerson'))
        self.assertEqual(config['vendor'], ('other',))


class TestLDAPConfig(unittest.TestCase):
    """Test cases for the typed LDAP settings view."""

    def setUp(self):
        self.registry = ProviderRegistry()

    def ldap_config(self, **overrides):
        settings = dict(LDAP_SETTINGS, **overrides)
        return LDAPConfig(self.registry.get_provider(create_ldap_provider(self.registry, settings, True)))

    def test_defaults(self):
        config = self.ldap_config()
        self.assertEqual(config.username_attribute, 'uid')
        self.assertEqual(config.rdn_attribute, 'uid')
        self.assertEqual(config.uuid_attribute, 'entryUUID')
        self.assertEqual(config.user_object_classes, ['inetOrgPerson', 'organizationalPerson'])
        self.assertFalse(config.is_active_directory)
        self.assertEqual(config.edit_mode, EditMode.WRITABLE)

    def test_active_directory_defaults(self):
        config = self.ldap_config(vendor='ad')
        self.assertTrue(config.is_active_directory)
        self.assertEqual(config.username_attribute, 'cn')
        self.assertEqual(config.uuid_attribute, 'objectGUID')
        self.assertEqual(config.user_object_classes, ['person', 'organizationalPerson', 'user'])

    def test_container_defaults_from_base_dn(self):
        settings = {key: value for key, value in LDAP_SETTINGS.items() if key not in ('usersDn', 'groupsDn')}
        config = LDAPConfig(self.registry.get_provider(create_ldap_provider(self.registry, settings, True)))
        self.assertEqual(config.users_dn, f'ou=People,{BASE_DN}')
        self.assertEqual(config.groups_dn, f'ou=Groups,{BASE_DN}')

    def test_to_client_config(self):
        client_config = self.ldap_config(connectionTimeout='5000', startTls='true').to_client_config(
            {'max_retries': 1})
        self.assertEqual(client_config['server_url'], 'ldap://localhost:10389')
        self.assertEqual(client_config['bind_dn'], 'uid=admin,ou=system')
        self.assertEqual(client_config['bind_password'], 'secret')
        self.assertTrue(client_config['start_tls'])
        self.assertEqual(client_config['connection_timeout'], 5)
        self.assertEqual(client_config['error_handling'], {'max_retries': 1})

    def test_missing_connection_settings(self):
        config = self.ldap_config(connectionUrl='')
        with self.assertRaises(ConfigurationError) as context:
            config.to_client_config()
        self.assertIn('connectionUrl', str(context.exception))

    def test_invalid_timeout(self):
        with self.assertRaises(ConfigurationError):
            self.ldap_config(readTimeout='soon').to_client_config()

    def test_missing_base_dn(self):
        with self.assertRaises(ConfigurationError):
            self.ldap_config(baseDn='').base_dn


if __name__ == '__main__':
    unittest.main()

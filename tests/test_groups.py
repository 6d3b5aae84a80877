#!/usr/bin/env python3
"""
Tests for LDAP group creation and membership edges, run against the mock directory.
"""

import os
import sys
import unittest

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_harness.errors import NotFoundError, ConflictError, MembershipCycleError
from ldap_harness.group_mapper import GroupMapperConfig, GroupMapperMode, add_or_update_group_mapper
from ldap_harness.groups import add_member, create_ldap_group, remove_all_ldap_groups, resolve_member_identifier
from ldap_harness.models import DirectoryObject, MembershipType, EMPTY_MEMBER_ATTRIBUTE_VALUE
from ldap_harness.providers import ProviderRegistry, create_ldap_provider
from mock_directory import MockDirectory, LDAP_SETTINGS, GROUPS_DN, USERS_DN


class GroupTestCase(unittest.TestCase):

    def setUp(self):
        self.directory = MockDirectory()
        self.directory.connect()
        self.registry = ProviderRegistry()
        self.provider = self.registry.get_provider(create_ldap_provider(self.registry, LDAP_SETTINGS, True))
        self.mapper_config = self.mapper()

    def mapper(self, **overrides):
        mapper = add_or_update_group_mapper(self.registry, self.provider, GroupMapperMode.LDAP_ONLY,
                                            'description', overrides)
        return GroupMapperConfig(mapper)

    def create(self, name, description=None):
        return create_ldap_group(self.directory, self.mapper_config, name, 'description', description)

    def link(self, parent, child, replace_existing=False):
        return add_member(self.directory, MembershipType.DN, 'member', 'uid', parent, child, replace_existing)


class TestCreateLDAPGroup(GroupTestCase):
    """Test cases for create_ldap_group."""

    def test_group_with_description(self):
        group = self.create('group1', 'group1 - description')

        self.assertEqual(group.dn, f'cn=group1,{GROUPS_DN}')
        self.assertEqual(self.directory.get_values(group.dn, 'description'), ['group1 - description'])
        self.assertEqual(self.directory.get_values(group.dn, 'member'), [EMPTY_MEMBER_ATTRIBUTE_VALUE])
        self.assertEqual(group.get_attribute('member'), [EMPTY_MEMBER_ATTRIBUTE_VALUE])

    def test_description_left_out(self):
        group11 = self.create('group11')
        self.assertEqual(self.directory.get_values(group11.dn, 'description'), [])

        group12 = create_ldap_group(self.directory, self.mapper_config, 'group12', None, 'ignored')
        self.assertEqual(self.directory.get_values(group12.dn, 'description'), [])

    def test_existing_group_is_conflict(self):
        self.create('group1')
        with self.assertRaises(ConflictError):
            self.create('group1', 'again')

    def test_missing_container(self):
        directory = MockDirectory(containers=[USERS_DN])
        directory.connect()
        with self.assertRaises(NotFoundError):
            create_ldap_group(directory, self.mapper_config, 'group1')

    def test_no_placeholder_for_uid_membership(self):
        mapper_config = self.mapper(**{
            'membership.attribute.type': 'UID',
            'membership.ldap.attribute': 'memberUid',
            'preserve.group.inheritance': 'false',
            'group.object.classes': 'posixGroup',
        })
        group = create_ldap_group(self.directory, mapper_config, 'developers')
        self.assertEqual(self.directory.get_values(group.dn, 'memberUid'), [])


class TestAddMember(GroupTestCase):
    """Test cases for add_member."""

    def setUp(self):
        super().setUp()
        self.group1 = self.create('group1', 'group1 - description')
        self.group11 = self.create('group11')
        self.group12 = self.create('group12')

    def test_append_replaces_placeholder(self):
        parent = self.link(self.group1, self.group11)

        self.assertIs(parent, self.group1)
        self.assertEqual(self.directory.get_values(self.group1.dn, 'member'), [self.group11.dn])
        self.assertEqual(self.group1.get_attribute('member'), [self.group11.dn])

    def test_replace_keeps_recorded_members(self):
        self.link(self.group1, self.group11)
        self.link(self.group1, self.group12, replace_existing=True)

        self.assertEqual(self.directory.get_values(self.group1.dn, 'member'), [self.group11.dn, self.group12.dn])

    def test_replace_on_fresh_parent(self):
        self.link(self.group1, self.group12, replace_existing=True)
        self.assertEqual(self.directory.get_values(self.group1.dn, 'member'), [self.group12.dn])

    def test_adding_twice_is_idempotent(self):
        self.link(self.group1, self.group11)
        self.link(self.group1, self.group11)
        self.assertEqual(self.directory.get_values(self.group1.dn, 'member'), [self.group11.dn])

    def test_self_membership_rejected(self):
        with self.assertRaises(MembershipCycleError):
            self.link(self.group1, self.group1)

    def test_cycle_rejected(self):
        self.link(self.group1, self.group11)
        with self.assertRaises(MembershipCycleError):
            self.link(self.group11, self.group1)
        self.assertEqual(self.directory.get_values(self.group11.dn, 'member'), [EMPTY_MEMBER_ATTRIBUTE_VALUE])

    def test_transitive_cycle_rejected(self):
        group111 = self.create('group111')
        self.link(self.group1, self.group11)
        self.link(self.group11, group111)
        with self.assertRaises(MembershipCycleError):
            self.link(group111, self.group1)

    def test_cycle_error_is_conflict(self):
        self.assertTrue(issubclass(MembershipCycleError, ConflictError))

    def test_missing_child(self):
        ghost = DirectoryObject(f'cn=ghost,{GROUPS_DN}')
        with self.assertRaises(NotFoundError):
            self.link(self.group1, ghost)
        self.assertEqual(self.directory.get_values(self.group1.dn, 'member'), [EMPTY_MEMBER_ATTRIBUTE_VALUE])

    def test_user_member_by_uid(self):
        mapper_config = self.mapper(**{
            'membership.attribute.type': 'UID',
            'membership.ldap.attribute': 'memberUid',
            'preserve.group.inheritance': 'false',
            'group.object.classes': 'posixGroup',
        })
        group = create_ldap_group(self.directory, mapper_config, 'developers')
        user = self.directory.create_entry(f'uid=jdoe,{USERS_DN}', ['inetOrgPerson'],
                                           {'uid': 'jdoe', 'cn': 'John Doe', 'sn': 'Doe'})

        add_member(self.directory, MembershipType.UID, 'memberUid', 'uid', group, user, False)
        self.assertEqual(self.directory.get_values(group.dn, 'memberUid'), ['jdoe'])


class TestMemberIdentifier(unittest.TestCase):
    """Test cases for resolve_member_identifier."""

    def test_dn_membership(self):
        user = DirectoryObject(f'uid=jdoe,{USERS_DN}', attributes={'uid': 'jdoe'})
        self.assertEqual(resolve_member_identifier(MembershipType.DN, 'uid', user), user.dn)

    def test_uid_membership(self):
        user = DirectoryObject(f'cn=John Doe,{USERS_DN}', attributes={'uid': 'jdoe'})
        self.assertEqual(resolve_member_identifier(MembershipType.UID, 'uid', user), 'jdoe')

    def test_uid_missing(self):
        user = DirectoryObject(f'cn=John Doe,{USERS_DN}')
        with self.assertRaises(NotFoundError):
            resolve_member_identifier(MembershipType.UID, 'uid', user)


class TestRemoveAllLDAPGroups(GroupTestCase):
    """Test cases for remove_all_ldap_groups."""

    def test_removes_every_group(self):
        self.create('group1')
        self.create('group11')

        self.assertEqual(remove_all_ldap_groups(self.directory, self.mapper_config), 2)
        self.assertEqual(self.directory.children(GROUPS_DN), [])

    def test_empty_container(self):
        self.assertEqual(remove_all_ldap_groups(self.directory, self.mapper_config), 0)

    def test_missing_container(self):
        directory = MockDirectory(containers=[USERS_DN])
        directory.connect()
        with self.assertRaises(NotFoundError):
            remove_all_ldap_groups(directory, self.mapper_config)


if __name__ == '__main__':
    unittest.main()

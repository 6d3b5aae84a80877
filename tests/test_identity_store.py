#!/usr/bin/env python3
"""
Unit tests for the in-memory local identity store.
"""

import os
import sys
import unittest

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_harness.errors import NotFoundError, ConflictError
from ldap_harness.identity_store import InMemoryIdentityStore, join_path, normalize_path, parent_path, split_path


class TestGroupPaths(unittest.TestCase):
    """Test cases for group path helpers."""

    def test_split_and_normalize(self):
        self.assertEqual(split_path('/group1/group11'), ['group1', 'group11'])
        self.assertEqual(split_path('/'), [])
        self.assertEqual(normalize_path('/group1//group11/'), '/group1/group11')
        with self.assertRaises(ValueError):
            split_path('group1')

    def test_join_path(self):
        self.assertEqual(join_path('/', 'group1'), '/group1')
        self.assertEqual(join_path('/group1', 'group11'), '/group1/group11')
        with self.assertRaises(ValueError):
            join_path('/', 'a/b')
        with self.assertRaises(ValueError):
            join_path('/', '')

    def test_parent_path(self):
        self.assertIsNone(parent_path('/group1'))
        self.assertEqual(parent_path('/group1/group11'), '/group1')


class TestGroups(unittest.TestCase):
    """Test cases for local groups."""

    def setUp(self):
        self.store = InMemoryIdentityStore()

    def test_upsert_creates_group(self):
        group, changed = self.store.upsert_group('/group1', {'description': 'group1 - description'})

        self.assertTrue(changed)
        self.assertEqual(group.name, 'group1')
        self.assertIsNone(group.parent_id)
        self.assertEqual(group.get_attribute('description'), 'group1 - description')
        self.assertIs(self.store.get_group_by_path('/group1'), group)

    def test_upsert_unchanged_is_noop(self):
        group, _ = self.store.upsert_group('/group1', {'description': 'group1 - description'})
        same, changed = self.store.upsert_group('/group1', {'description': ['group1 - description']})

        self.assertFalse(changed)
        self.assertIs(same, group)
        self.assertEqual(group.version, 0)

    def test_upsert_updates_attributes(self):
        self.store.upsert_group('/group1', {'description': 'old'})
        group, changed = self.store.upsert_group('/group1', {'description': 'new'})

        self.assertTrue(changed)
        self.assertEqual(group.version, 1)
        self.assertEqual(group.get_attribute('description'), 'new')

    def test_subgroup_requires_parent(self):
        with self.assertRaises(NotFoundError):
            self.store.upsert_group('/group1/group11')

        parent, _ = self.store.upsert_group('/group1')
        child, _ = self.store.upsert_group('/group1/group11')
        self.assertEqual(child.parent_id, parent.id)
        self.assertEqual([g.path for g in self.store.subgroups('/group1')], ['/group1/group11'])

    def test_delete_removes_subtree_and_references(self):
        self.store.upsert_group('/group1')
        self.store.upsert_group('/group1/group11')
        self.store.upsert_group('/group2')
        self.store.set_default_group('/group1/group11')
        self.store.upsert_user('mary')
        self.store.join_group('mary', '/group1')

        self.store.delete_group('/group1')

        self.assertEqual([g.path for g in self.store.groups()], ['/group2'])
        self.assertEqual(self.store.default_groups(), [])
        self.assertEqual(self.store.user_group_paths('mary'), [])

    def test_delete_missing_group(self):
        with self.assertRaises(NotFoundError):
            self.store.delete_group('/missing')

    def test_default_groups(self):
        self.store.upsert_group('/defaultGroup1')
        self.store.set_default_group('/defaultGroup1')
        self.store.set_default_group('/defaultGroup1')

        self.assertEqual([g.path for g in self.store.default_groups()], ['/defaultGroup1'])
        with self.assertRaises(NotFoundError):
            self.store.set_default_group('/missing')


class TestUsers(unittest.TestCase):
    """Test cases for local users."""

    def setUp(self):
        self.store = InMemoryIdentityStore()

    def test_new_user_joins_default_groups(self):
        self.store.upsert_group('/defaultGroup1')
        self.store.upsert_group('/defaultGroup1/defaultGroup11')
        self.store.set_default_group('/defaultGroup1/defaultGroup11')

        self.store.upsert_user('Mary', {'email': 'mary@test.com', 'firstName': 'Mary', 'postalCode': '5678'})

        user = self.store.get_user('mary')
        self.assertEqual(user.username, 'mary')
        self.assertEqual(user.email, 'mary@test.com')
        self.assertEqual(user.first_name, 'Mary')
        self.assertEqual(user.attributes['postalCode'], ['5678'])
        self.assertEqual(self.store.user_group_paths('mary'), ['/defaultGroup1/defaultGroup11'])
        self.assertEqual(self.store.group_members('/defaultGroup1/defaultGroup11'), ['mary'])

    def test_existing_user_keeps_groups(self):
        self.store.upsert_user('mary')
        self.store.upsert_group('/defaultGroup1')
        self.store.set_default_group('/defaultGroup1')

        self.store.upsert_user('mary', {'lastName': 'Kelly'})
        self.assertEqual(self.store.user_group_paths('mary'), [])
        self.assertEqual(self.store.get_user('mary').last_name, 'Kelly')

    def test_email_must_be_unique(self):
        self.store.upsert_user('mary', {'email': 'mary@test.com'})
        with self.assertRaises(ConflictError):
            self.store.upsert_user('john', {'email': 'MARY@test.com'})
        self.assertIsNone(self.store.get_user('john'))

    def test_credentials(self):
        self.store.upsert_user('john')
        self.store.set_credential('john', 'password-app')
        self.assertEqual(self.store.get_user('john').credential, 'password-app')

        with self.assertRaises(NotFoundError):
            self.store.set_credential('nobody', 'secret')

    def test_empty_username(self):
        with self.assertRaises(ValueError):
            self.store.upsert_user('')


if __name__ == '__main__':
    unittest.main()

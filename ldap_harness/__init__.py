"""
LDAP Provisioning Harness - Provision groups and users in an LDAP directory and
mirror the directory group tree into a local identity store.

This package registers an LDAP provider configuration, seeds a directory with
a fixture of nested groups and users, synchronizes the group tree into a local
store and can remove directory users out of band to simulate drift.
"""

__version__ = "1.0.0"
__author__ = "LDAP Harness Team"

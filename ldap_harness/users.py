"""
Provisioning of LDAP users and local users.

Directory users are created, given passwords and removed directly in LDAP.
Removing a directory user never touches the local identity store.
"""

import logging
from typing import Any, Optional

from ldap3.utils.conv import escape_filter_chars

from ldap_harness.errors import NotFoundError, ConflictError
from ldap_harness.identity_store import IdentityStore, LocalUser
from ldap_harness.ldap_client import LDAPClient
from ldap_harness.ldap_config import LDAPConfig
from ldap_harness.logging_setup import security_logger
from ldap_harness.models import DirectoryObject, build_dn

logger = logging.getLogger(__name__)

UID = 'uid'


def add_ldap_user(client: LDAPClient, ldap_config: LDAPConfig, username: str,
                  first_name: Optional[str], last_name: Optional[str], email: Optional[str],
                  uid: Optional[str] = None, **custom_attrs: Any) -> DirectoryObject:
    """
    Create a user entry in the users container.

    Args:
        client: Connected LDAP client
        ldap_config: Settings of the provider the user belongs to
        username: Username, also used as RDN value
        first_name: givenName
        last_name: sn
        email: mail
        uid: Explicit UID used for UID based membership; left unset if None
        custom_attrs: Further LDAP attributes such as postalCode or street

    Returns:
        The created user

    Raises:
        ConflictError: If the username or email is already taken
    """
    username_attr = ldap_config.username_attribute
    dn = build_dn(ldap_config.rdn_attribute, username, ldap_config.users_dn)

    if ldap_config.rdn_attribute.lower() != username_attr.lower():
        try:
            existing = find_ldap_user_by_username(client, ldap_config, username)
            raise ConflictError(f"Username {username} is already used by {existing.dn}")
        except NotFoundError:
            pass

    if email:
        taken = client.search(ldap_config.users_dn, f"(mail={escape_filter_chars(email)})",
                              scope='SUBTREE', attributes=['mail'])
        if taken:
            raise ConflictError(f"Email {email} is already used by {taken[0].dn}")

    attributes = {
        username_attr: username,
        'cn': username if username_attr.lower() == 'cn' else _full_name(first_name, last_name, username),
        'sn': last_name or username,
        'givenName': first_name,
        'mail': email,
    }
    if ldap_config.rdn_attribute.lower() != username_attr.lower():
        attributes[ldap_config.rdn_attribute] = username
    if uid is not None and username_attr.lower() != UID:
        attributes[UID] = uid
    for name, value in custom_attrs.items():
        if value is not None:
            attributes[name] = value

    user = client.create_entry(dn, ldap_config.user_object_classes, attributes)
    security_logger.log_user_operation('create', username, ldap_config.provider.id, True)
    logger.info(f"Added LDAP user {username} ({dn})")
    return user


def _full_name(first_name: Optional[str], last_name: Optional[str], fallback: str) -> str:
    full_name = ' '.join(part for part in (first_name, last_name) if part)
    return full_name or fallback


def update_ldap_password(client: LDAPClient, ldap_config: LDAPConfig, user: DirectoryObject, password: str):
    """Set the password of a directory user."""
    client.modify_password(user.dn, password, active_directory=ldap_config.is_active_directory)
    security_logger.log_user_operation('set-password', user.dn, ldap_config.provider.id, True)


def find_ldap_user_by_username(client: LDAPClient, ldap_config: LDAPConfig, username: str) -> DirectoryObject:
    """
    Look up a directory user by the configured username attribute.

    Raises:
        NotFoundError: If no such user exists
    """
    object_class = ldap_config.user_object_classes[0]
    search_filter = (f"(&(objectClass={object_class})"
                     f"({ldap_config.username_attribute}={escape_filter_chars(username)}))")
    users = client.search(ldap_config.users_dn, search_filter, scope='SUBTREE')
    if not users:
        raise NotFoundError(f"LDAP user not found: {username}")
    return users[0]


def remove_ldap_user_by_username(client: LDAPClient, ldap_config: LDAPConfig, username: str):
    """
    Delete a user directly in LDAP, leaving any local copy untouched.

    Raises:
        NotFoundError: If no such user exists
    """
    try:
        user = find_ldap_user_by_username(client, ldap_config, username)
        client.delete_entry(user.dn)
    except NotFoundError:
        security_logger.log_user_operation('delete', username, ldap_config.provider.id, False)
        raise
    security_logger.log_user_operation('delete', username, ldap_config.provider.id, True)
    logger.info(f"Removed LDAP user {username} ({user.dn})")


def remove_all_ldap_users(client: LDAPClient, ldap_config: LDAPConfig) -> int:
    """
    Delete every user entry from the users container.

    Returns:
        Number of deleted users; 0 for an already empty container
    """
    search_filter = f"(objectClass={ldap_config.user_object_classes[0]})"
    users = client.list_children(ldap_config.users_dn, search_filter,
                                 attributes=[ldap_config.username_attribute])
    for user in users:
        client.delete_entry(user.dn)
    logger.info(f"Removed {len(users)} LDAP users from {ldap_config.users_dn}")
    return len(users)


def add_local_user(store: IdentityStore, username: str, email: str, password: str) -> LocalUser:
    """Create a local, non federated user with a password."""
    user = store.upsert_user(username, {'email': email})
    store.set_credential(username, password)
    logger.info(f"Added local user {user.username}")
    return user

"""
Creation of LDAP groups and membership edges between directory entries.

Building a hierarchy is not transactional: if one call fails, the groups and
edges created before it stay in the directory. Callers reset the container
with remove_all_ldap_groups() and build the hierarchy again.
"""

import logging
from typing import Dict, Optional, Set

from ldap_harness.errors import NotFoundError, MembershipCycleError
from ldap_harness.group_mapper import GroupMapperConfig
from ldap_harness.ldap_client import LDAPClient
from ldap_harness.models import (
    DirectoryObject, MembershipType, EMPTY_MEMBER_ATTRIBUTE_VALUE,
    build_dn, normalize_dn, parent_dn, try_normalize_dn,
)

logger = logging.getLogger(__name__)


def create_ldap_group(client: LDAPClient, mapper_config: GroupMapperConfig, name: str,
                      description_attr: Optional[str] = None,
                      description: Optional[str] = None) -> DirectoryObject:
    """
    Create a group entry in the mapper's groups container.

    Args:
        client: Connected LDAP client
        mapper_config: Group mapper bindings (container, object classes, name attribute)
        name: Group name
        description_attr: LDAP attribute holding the description, if any
        description: Description value

    Returns:
        The created group

    Raises:
        ConflictError: If a group with the same DN already exists
    """
    name_attr = mapper_config.group_name_attribute
    dn = build_dn(name_attr, name, mapper_config.groups_dn)

    attributes = {name_attr: name}
    if mapper_config.requires_member_placeholder:
        attributes[mapper_config.membership_attribute] = [EMPTY_MEMBER_ATTRIBUTE_VALUE]
    if description_attr and description:
        attributes[description_attr] = description

    group = client.create_entry(dn, mapper_config.group_object_classes, attributes)
    logger.info(f"Created LDAP group {dn}")
    return group


def resolve_member_identifier(membership_type: MembershipType, member_id_attr: str,
                              member: DirectoryObject) -> str:
    """
    Return the value stored in a group's membership attribute for a member.

    Raises:
        NotFoundError: In UID mode, if the member has no value for member_id_attr
    """
    if membership_type == MembershipType.DN:
        return member.dn

    identifier = member.get_attribute_as_string(member_id_attr)
    if not identifier:
        raise NotFoundError(f"Entry {member.dn} has no {member_id_attr} attribute for UID membership")
    return identifier


def _contains_value(values, value: str, membership_type: MembershipType) -> bool:
    if membership_type == MembershipType.DN:
        target = normalize_dn(value)
        return any(try_normalize_dn(v) == target for v in values)
    return value in values


def _ancestor_dns(client: LDAPClient, membership_attr: str, group: DirectoryObject) -> Set[str]:
    """Normalized DNs of every group that contains group, directly or transitively."""
    container = parent_dn(group.dn)
    parents_of: Dict[str, Set[str]] = {}
    for entry in client.list_children(container, attributes=[membership_attr]):
        for member in entry.get_attribute(membership_attr):
            member_key = try_normalize_dn(member)
            if member_key:
                parents_of.setdefault(member_key, set()).add(normalize_dn(entry.dn))

    ancestors = set()
    pending = [normalize_dn(group.dn)]
    while pending:
        for parent in parents_of.get(pending.pop(), set()):
            if parent not in ancestors:
                ancestors.add(parent)
                pending.append(parent)
    return ancestors


def add_member(client: LDAPClient, membership_type: MembershipType, membership_attr: str,
               member_id_attr: str, parent: DirectoryObject, child: DirectoryObject,
               replace_existing: bool) -> DirectoryObject:
    """
    Add child to the membership attribute of parent.

    With replace_existing=False the child's identifier is appended to the
    directory attribute unless it is already there. With replace_existing=True
    the directory attribute is overwritten with the membership recorded on the
    parent object, which includes the child. Either way the parent object
    records the new member.

    Args:
        client: Connected LDAP client
        membership_type: DN or UID membership
        membership_attr: Membership attribute of the parent (e.g. member, memberUid)
        member_id_attr: Attribute of the child holding its UID (UID mode only)
        parent: Parent group
        child: Group or user to add
        replace_existing: Overwrite instead of append

    Returns:
        The parent object

    Raises:
        NotFoundError: If parent or child do not exist in the directory
        MembershipCycleError: If child is parent or one of its ancestors
    """
    current_parent = client.read_entry(parent.dn)
    current_child = client.read_entry(child.dn)
    identifier = resolve_member_identifier(membership_type, member_id_attr, current_child)

    if membership_type == MembershipType.DN:
        if normalize_dn(current_parent.dn) == normalize_dn(current_child.dn):
            raise MembershipCycleError(f"Group {parent.dn} cannot be a member of itself")
        if current_child.has_attribute(membership_attr) and \
                normalize_dn(current_child.dn) in _ancestor_dns(client, membership_attr, current_parent):
            raise MembershipCycleError(f"{child.dn} is an ancestor of {parent.dn}")

    if not _contains_value(parent.get_attribute(membership_attr), identifier, membership_type):
        parent.add_attribute_value(membership_attr, identifier)
    parent.remove_attribute_value(membership_attr, EMPTY_MEMBER_ATTRIBUTE_VALUE)

    existing = current_parent.get_attribute(membership_attr)
    if replace_existing:
        client.update_attribute(parent.dn, membership_attr, parent.get_attribute(membership_attr), mode='replace')
    else:
        if not _contains_value(existing, identifier, membership_type):
            client.update_attribute(parent.dn, membership_attr, [identifier], mode='append')
        if EMPTY_MEMBER_ATTRIBUTE_VALUE in existing:
            client.update_attribute(parent.dn, membership_attr, [EMPTY_MEMBER_ATTRIBUTE_VALUE], mode='delete')

    logger.info(f"Added {identifier} to {membership_attr} of {parent.dn}"
                f"{' (replacing existing members)' if replace_existing else ''}")
    return parent


def remove_all_ldap_groups(client: LDAPClient, mapper_config: GroupMapperConfig) -> int:
    """
    Delete every group of the mapper from its container.

    Returns:
        Number of deleted groups; 0 for an already empty container
    """
    groups = client.list_children(mapper_config.groups_dn, mapper_config.group_filter,
                                  attributes=[mapper_config.group_name_attribute])
    for group in groups:
        client.delete_entry(group.dn)
    logger.info(f"Removed {len(groups)} LDAP groups from {mapper_config.groups_dn}")
    return len(groups)

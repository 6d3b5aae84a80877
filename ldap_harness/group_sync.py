"""
Synchronization of the LDAP group tree into the local identity store.

A pass first reads every group of the mapper and resolves the complete tree in
memory. Only then does it write to the local store: groups are created or
updated parents first, and local groups that came from LDAP but no longer
exist at their path are dropped. Re-running a pass without directory changes
writes nothing.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Iterable

from ldap_harness.errors import HarnessError, NotFoundError, PartialTreeError
from ldap_harness.group_mapper import GroupMapperConfig
from ldap_harness.identity_store import IdentityStore, LocalGroup, join_path, split_path
from ldap_harness.ldap_client import LDAPClient
from ldap_harness.models import (
    DirectoryObject, MembershipType, EMPTY_MEMBER_ATTRIBUTE_VALUE, normalize_dn, try_normalize_dn,
)

logger = logging.getLogger(__name__)

# Local group attribute linking a synchronized group to its LDAP entry
LDAP_ENTRY_DN = 'LDAP_ENTRY_DN'


class SynchronizationResult:
    """Counters of one synchronization pass."""

    def __init__(self):
        self.added = 0
        self.updated = 0
        self.removed = 0
        self.failed = 0
        self.start_time = datetime.now()
        self.end_time = None

    def finish(self) -> 'SynchronizationResult':
        self.end_time = datetime.now()
        return self

    @property
    def runtime_seconds(self) -> float:
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)

    def status(self) -> str:
        status = f"{self.added} imported groups, {self.updated} updated groups, {self.removed} removed groups"
        if self.failed:
            status += f", {self.failed} groups failed sync"
        return status

    def to_dict(self) -> Dict[str, object]:
        return {
            'added': self.added,
            'updated': self.updated,
            'removed': self.removed,
            'failed': self.failed,
            'runtime_seconds': round(self.runtime_seconds, 3),
        }

    def __repr__(self):
        return f"SynchronizationResult({self.status()})"


@dataclass
class GroupTreeEntry:
    """A group and its subgroups, as read from LDAP."""
    name: str
    dn: str
    attributes: Dict[str, List[str]] = field(default_factory=dict)
    children: List['GroupTreeEntry'] = field(default_factory=list)


@dataclass
class DiscoveredGroup:
    name: str
    dn: str
    attributes: Dict[str, List[str]]
    child_dns: List[str]


class GroupTreeResolver:
    """
    Build a forest of groups from flat parent/child relations.

    Raises PartialTreeError if the relations do not form a forest: a group
    with two parents, a membership cycle, or two siblings sharing a name.
    """

    def resolve_group_tree(self, groups: Iterable[DiscoveredGroup]) -> List[GroupTreeEntry]:
        by_dn = {normalize_dn(group.dn): group for group in groups}

        parents: Dict[str, str] = {}
        for parent_key, group in by_dn.items():
            for child_dn in group.child_dns:
                child_key = try_normalize_dn(child_dn)
                if child_key not in by_dn:
                    continue
                if child_key == parent_key:
                    raise PartialTreeError(f"Group {group.dn} is a member of itself")
                if child_key in parents and parents[child_key] != parent_key:
                    raise PartialTreeError(
                        f"Group {by_dn[child_key].dn} has more than one parent: "
                        f"{by_dn[parents[child_key]].dn}, {group.dn}")
                parents[child_key] = parent_key

        roots = [key for key in by_dn if key not in parents]
        visited = set()

        def build(key: str, ancestors: frozenset) -> GroupTreeEntry:
            group = by_dn[key]
            visited.add(key)
            entry = GroupTreeEntry(name=group.name, dn=group.dn, attributes=group.attributes)
            seen_names = set()
            for child_dn in group.child_dns:
                child_key = try_normalize_dn(child_dn)
                if child_key not in by_dn or child_key in visited and child_key not in ancestors:
                    continue
                if child_key in ancestors:
                    raise PartialTreeError(f"Group membership cycle detected at {by_dn[child_key].dn}")
                child_name = by_dn[child_key].name
                if child_name in seen_names:
                    raise PartialTreeError(f"Group {group.dn} has two subgroups named {child_name}")
                seen_names.add(child_name)
                entry.children.append(build(child_key, ancestors | {key}))
            return entry

        tree = []
        root_names = set()
        for key in roots:
            name = by_dn[key].name
            if name in root_names:
                raise PartialTreeError(f"More than one top level group named {name}")
            root_names.add(name)
            tree.append(build(key, frozenset()))

        unreachable = [by_dn[key].dn for key in by_dn if key not in visited]
        if unreachable:
            raise PartialTreeError(f"Group membership cycle detected among: {', '.join(sorted(unreachable))}")

        return tree


class GroupLDAPSynchronizer:
    """
    Mirrors the groups of one group mapper into the local identity store.
    """

    def __init__(self, store: IdentityStore, client: LDAPClient, mapper_config: GroupMapperConfig):
        self.store = store
        self.client = client
        self.mapper_config = mapper_config

    def discover_groups(self) -> List[DiscoveredGroup]:
        """
        Read all groups of the mapper from LDAP.

        Raises:
            PartialTreeError: If the groups cannot be read completely, including
                a connection lost while reading
        """
        config = self.mapper_config
        attributes = [config.group_name_attribute, config.membership_attribute] + config.mapped_group_attributes

        try:
            entries = self.client.search(config.groups_dn, config.group_filter, scope='SUBTREE',
                                         attributes=attributes)
        except HarnessError as e:
            raise PartialTreeError(f"Failed to read groups from {config.groups_dn}: {e}") from e

        groups = []
        for entry in entries:
            group = self._to_discovered_group(entry)
            if group is not None:
                groups.append(group)
        logger.info(f"Discovered {len(groups)} LDAP groups under {config.groups_dn}")
        return groups

    def _to_discovered_group(self, entry: DirectoryObject) -> Optional[DiscoveredGroup]:
        config = self.mapper_config
        name = entry.get_attribute_as_string(config.group_name_attribute)
        if not name or '/' in name:
            logger.warning(f"Skipping LDAP group {entry.dn}: invalid {config.group_name_attribute} {name!r}")
            return None

        attributes = {}
        for attr_name in config.mapped_group_attributes:
            values = [v for v in entry.get_attribute(attr_name) if v and v.strip()]
            if values:
                attributes[attr_name] = values
        attributes[LDAP_ENTRY_DN] = [entry.dn]

        child_dns = []
        if config.preserve_group_inheritance and config.membership_type == MembershipType.DN:
            child_dns = [v for v in entry.get_attribute(config.membership_attribute)
                         if v != EMPTY_MEMBER_ATTRIBUTE_VALUE]

        return DiscoveredGroup(name=name, dn=entry.dn, attributes=attributes, child_dns=child_dns)

    def load_group_tree(self) -> List[GroupTreeEntry]:
        """Discover the LDAP groups and resolve them into a tree."""
        return GroupTreeResolver().resolve_group_tree(self.discover_groups())

    def _flatten(self, tree: List[GroupTreeEntry]) -> Dict[str, Dict[str, List[str]]]:
        """Map every tree node to its local path, parents before children."""
        desired = {}

        def visit(entry: GroupTreeEntry, parent: str):
            path = join_path(parent, entry.name)
            desired[path] = entry.attributes
            for child in entry.children:
                visit(child, path)

        for root in tree:
            visit(root, self.mapper_config.groups_path)
        return desired

    def sync_data_from_federation_provider(self) -> SynchronizationResult:
        """
        Run one synchronization pass from LDAP into the local store.

        Returns:
            Counters of added, updated and removed local groups

        Raises:
            PartialTreeError: If the group tree cannot be read or resolved; nothing is written
            NotFoundError: If the configured parent group path does not exist locally
        """
        config = self.mapper_config
        result = SynchronizationResult()
        logger.info(f"Syncing groups from LDAP {config.groups_dn} into local path {config.groups_path}")

        desired = self._flatten(self.load_group_tree())

        if config.groups_path != '/' and self.store.get_group_by_path(config.groups_path) is None:
            raise NotFoundError(f"Parent group {config.groups_path} for LDAP groups does not exist")

        for path, attributes in desired.items():
            existed = self.store.get_group_by_path(path) is not None
            _, changed = self.store.upsert_group(path, attributes)
            if not existed:
                result.added += 1
                logger.debug(f"Imported group {path}")
            elif changed:
                result.updated += 1
                logger.debug(f"Updated group {path}")

        if config.drop_non_existing_groups:
            result.removed = self._drop_stale_groups(desired)

        result.finish()
        logger.info(f"Sync of groups from LDAP finished: {result.status()}")
        return result

    def _is_managed(self, group: LocalGroup) -> bool:
        if LDAP_ENTRY_DN not in group.attributes:
            return False
        groups_path = self.mapper_config.groups_path
        return groups_path == '/' or group.path.startswith(groups_path + '/')

    def _drop_stale_groups(self, desired: Dict[str, Dict[str, List[str]]]) -> int:
        stale = [group.path for group in self.store.groups()
                 if self._is_managed(group) and group.path not in desired]
        removed = 0
        # Deepest first, so each delete removes exactly one stale group
        for path in sorted(stale, key=lambda p: len(split_path(p)), reverse=True):
            if self.store.get_group_by_path(path) is None:
                continue
            self.store.delete_group(path)
            removed += 1
            logger.info(f"Removed local group {path}: no longer present in LDAP")
        return removed

    def assign_default_groups(self, paths: Iterable[str]) -> List[LocalGroup]:
        """
        Mark synchronized groups as default groups for new local users.

        Raises:
            NotFoundError: If a path does not name an existing local group
        """
        return [self.store.set_default_group(path) for path in paths]

"""
Local identity store.

IdentityStore is the narrow interface the harness writes to: group and user
upserts, default group assignment and credentials. InMemoryIdentityStore is the
implementation used by the harness itself and by the tests.
"""

import uuid
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Set, Tuple

from ldap_harness.errors import NotFoundError, ConflictError

logger = logging.getLogger(__name__)

PROFILE_FIELDS = {
    'email': 'email',
    'firstName': 'first_name',
    'lastName': 'last_name',
    'federationLink': 'federation_link',
}


def split_path(path: str) -> List[str]:
    """Split '/a/b' into ['a', 'b']."""
    if not isinstance(path, str) or not path.startswith('/'):
        raise ValueError(f"Group path must start with '/': {path!r}")
    return [segment for segment in path.split('/') if segment]


def normalize_path(path: str) -> str:
    return '/' + '/'.join(split_path(path))


def join_path(parent_path: str, name: str) -> str:
    if not name or '/' in name:
        raise ValueError(f"Invalid group name: {name!r}")
    parent = normalize_path(parent_path)
    return f"{parent.rstrip('/')}/{name}"


def parent_path(path: str) -> Optional[str]:
    segments = split_path(path)
    if len(segments) <= 1:
        return None
    return '/' + '/'.join(segments[:-1])


@dataclass
class LocalGroup:
    id: str
    name: str
    path: str
    parent_id: Optional[str] = None
    attributes: Dict[str, List[str]] = field(default_factory=dict)
    version: int = 0

    def get_attribute(self, name: str) -> Optional[str]:
        values = self.attributes.get(name)
        return values[0] if values else None


@dataclass
class LocalUser:
    id: str
    username: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    federation_link: Optional[str] = None
    attributes: Dict[str, List[str]] = field(default_factory=dict)
    group_ids: Set[str] = field(default_factory=set)
    credential: Optional[str] = None


def _normalize_attributes(attributes: Optional[Dict[str, Any]]) -> Dict[str, List[str]]:
    normalized = {}
    for name, values in (attributes or {}).items():
        if values is None:
            continue
        if not isinstance(values, (list, tuple, set)):
            values = [values]
        values = [str(v) for v in values if v is not None]
        if values:
            normalized[name] = values
    return normalized


class IdentityStore(ABC):
    """Interface of the local identity store consumed by the harness."""

    @abstractmethod
    def get_group_by_path(self, path: str) -> Optional[LocalGroup]:
        pass

    @abstractmethod
    def upsert_group(self, path: str, attributes: Optional[Dict[str, Any]] = None) -> Tuple[LocalGroup, bool]:
        """
        Create the group at path or update its attributes.

        Returns:
            Tuple of (group, changed); changed is False when nothing was written
        """
        pass

    @abstractmethod
    def delete_group(self, path: str):
        pass

    @abstractmethod
    def groups(self) -> List[LocalGroup]:
        pass

    @abstractmethod
    def set_default_group(self, path: str) -> LocalGroup:
        pass

    @abstractmethod
    def default_groups(self) -> List[LocalGroup]:
        pass

    @abstractmethod
    def upsert_user(self, username: str, attributes: Optional[Dict[str, Any]] = None) -> LocalUser:
        pass

    @abstractmethod
    def get_user(self, username: str) -> Optional[LocalUser]:
        pass

    @abstractmethod
    def set_credential(self, username: str, secret: str):
        pass


class InMemoryIdentityStore(IdentityStore):
    """Identity store holding groups and users in process memory."""

    def __init__(self):
        self._groups = {}
        self._groups_by_path = {}
        self._users = {}
        self._default_group_ids = []

    # Groups

    def get_group_by_path(self, path: str) -> Optional[LocalGroup]:
        group_id = self._groups_by_path.get(normalize_path(path))
        return self._groups[group_id] if group_id else None

    def find_group_by_path(self, path: str) -> LocalGroup:
        """Like get_group_by_path, but raises NotFoundError."""
        group = self.get_group_by_path(path)
        if group is None:
            raise NotFoundError(f"Local group not found: {path}")
        return group

    def get_group(self, group_id: str) -> Optional[LocalGroup]:
        return self._groups.get(group_id)

    def upsert_group(self, path: str, attributes: Optional[Dict[str, Any]] = None) -> Tuple[LocalGroup, bool]:
        path = normalize_path(path)
        segments = split_path(path)
        if not segments:
            raise ValueError("Cannot upsert the root path")
        attributes = _normalize_attributes(attributes)

        existing = self.get_group_by_path(path)
        if existing is not None:
            if existing.attributes == attributes:
                return existing, False
            existing.attributes = attributes
            existing.version += 1
            logger.debug(f"Updated local group {path}")
            return existing, True

        parent_id = None
        parent = parent_path(path)
        if parent is not None:
            parent_group = self.get_group_by_path(parent)
            if parent_group is None:
                raise NotFoundError(f"Parent group {parent} of {path} does not exist")
            parent_id = parent_group.id

        group = LocalGroup(
            id=str(uuid.uuid4()),
            name=segments[-1],
            path=path,
            parent_id=parent_id,
            attributes=attributes,
        )
        self._groups[group.id] = group
        self._groups_by_path[path] = group.id
        logger.debug(f"Created local group {path}")
        return group, True

    def delete_group(self, path: str):
        """Delete a group and its whole subtree."""
        group = self.find_group_by_path(path)
        doomed = [g for g in self._groups.values()
                  if g.path == group.path or g.path.startswith(group.path + '/')]
        doomed_ids = {g.id for g in doomed}
        for doomed_group in doomed:
            del self._groups[doomed_group.id]
            del self._groups_by_path[doomed_group.path]
        self._default_group_ids = [gid for gid in self._default_group_ids if gid not in doomed_ids]
        for user in self._users.values():
            user.group_ids -= doomed_ids
        logger.debug(f"Deleted local group {group.path} ({len(doomed)} groups removed)")

    def groups(self) -> List[LocalGroup]:
        return sorted(self._groups.values(), key=lambda g: g.path)

    def subgroups(self, path: str) -> List[LocalGroup]:
        group = self.find_group_by_path(path)
        return [g for g in self.groups() if g.parent_id == group.id]

    def set_default_group(self, path: str) -> LocalGroup:
        group = self.find_group_by_path(path)
        if group.id not in self._default_group_ids:
            self._default_group_ids.append(group.id)
            logger.info(f"Group {group.path} is now a default group")
        return group

    def default_groups(self) -> List[LocalGroup]:
        return [self._groups[gid] for gid in self._default_group_ids]

    # Users

    def upsert_user(self, username: str, attributes: Optional[Dict[str, Any]] = None) -> LocalUser:
        """
        Create or update a user.

        New users join every default group; existing users keep their groups.
        Recognised profile keys are email, firstName, lastName and federationLink;
        everything else is stored as a user attribute.
        """
        if not username:
            raise ValueError("Username must not be empty")
        key = username.lower()
        attributes = dict(attributes or {})
        profile = {PROFILE_FIELDS[name]: attributes.pop(name) for name in list(attributes) if name in PROFILE_FIELDS}

        email = profile.get('email')
        if email:
            for other in self._users.values():
                if other.username != key and other.email and other.email.lower() == email.lower():
                    raise ConflictError(f"Email {email} is already used by {other.username}")

        user = self._users.get(key)
        if user is None:
            user = LocalUser(id=str(uuid.uuid4()), username=key)
            user.group_ids = set(self._default_group_ids)
            self._users[key] = user
            logger.debug(f"Created local user {key} with {len(user.group_ids)} default groups")

        for attr, value in profile.items():
            setattr(user, attr, value)
        user.attributes.update(_normalize_attributes(attributes))
        return user

    def get_user(self, username: str) -> Optional[LocalUser]:
        return self._users.get(username.lower())

    def users(self) -> List[LocalUser]:
        return sorted(self._users.values(), key=lambda u: u.username)

    def set_credential(self, username: str, secret: str):
        user = self.get_user(username)
        if user is None:
            raise NotFoundError(f"Local user not found: {username}")
        user.credential = secret
        logger.debug(f"Credential set for local user {user.username}")

    def join_group(self, username: str, path: str):
        user = self.get_user(username)
        if user is None:
            raise NotFoundError(f"Local user not found: {username}")
        user.group_ids.add(self.find_group_by_path(path).id)

    def user_group_paths(self, username: str) -> List[str]:
        user = self.get_user(username)
        if user is None:
            raise NotFoundError(f"Local user not found: {username}")
        return sorted(self._groups[gid].path for gid in user.group_ids if gid in self._groups)

    def group_members(self, path: str) -> List[str]:
        group = self.find_group_by_path(path)
        return sorted(u.username for u in self._users.values() if group.id in u.group_ids)

"""
In-memory representation of directory entries.

A DirectoryObject carries a distinguished name, its object classes and a
multi-valued attribute map. Attribute names are matched case-insensitively,
as they are by LDAP servers.
"""

from enum import Enum
from typing import Dict, List, Any, Iterable, Optional, Tuple
from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.dn import escape_rdn, parse_dn

# groupOfNames requires at least one member, so empty groups carry this value
EMPTY_MEMBER_ATTRIBUTE_VALUE = 'cn=empty-membership-placeholder'

MEMBER = 'member'
MEMBER_UID = 'memberUid'
OBJECT_CLASS = 'objectClass'


class MembershipType(Enum):
    """How a group references its members."""
    DN = 'DN'
    UID = 'UID'


class DirectoryObject:
    """A single directory entry."""

    def __init__(self, dn: str, object_classes: Optional[Iterable[str]] = None,
                 attributes: Optional[Dict[str, Any]] = None,
                 rdn_attribute_name: Optional[str] = None):
        self.dn = dn
        self.object_classes = []
        self.attributes = {}
        self.read_only_attribute_names = set()
        self.rdn_attribute_name = rdn_attribute_name or parse_rdn(dn)[0]

        for object_class in object_classes or []:
            if object_class.lower() not in (oc.lower() for oc in self.object_classes):
                self.object_classes.append(object_class)

        for name, values in (attributes or {}).items():
            if name.lower() == OBJECT_CLASS.lower():
                for object_class in _as_list(values):
                    if object_class.lower() not in (oc.lower() for oc in self.object_classes):
                        self.object_classes.append(object_class)
                continue
            self.set_attribute(name, values)

    def _key(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key in self.attributes:
            if key.lower() == lowered:
                return key
        return None

    def has_attribute(self, name: str) -> bool:
        return self._key(name) is not None

    def get_attribute(self, name: str) -> List[str]:
        """Return all values of an attribute, or an empty list."""
        key = self._key(name)
        return list(self.attributes[key]) if key else []

    def get_attribute_as_string(self, name: str) -> Optional[str]:
        """Return the first value of an attribute, or None when unset."""
        values = self.get_attribute(name)
        return values[0] if values else None

    def set_attribute(self, name: str, values: Any):
        key = self._key(name) or name
        self.attributes[key] = [str(v) for v in _as_list(values)]

    def set_single_attribute(self, name: str, value: Any):
        self.set_attribute(name, [value])

    def add_attribute_value(self, name: str, value: Any) -> bool:
        """
        Append a value to an attribute unless it is already present.

        Returns:
            True if the value was added
        """
        key = self._key(name) or name
        values = self.attributes.setdefault(key, [])
        if str(value) in values:
            return False
        values.append(str(value))
        return True

    def remove_attribute_value(self, name: str, value: Any) -> bool:
        key = self._key(name)
        if not key or str(value) not in self.attributes[key]:
            return False
        self.attributes[key].remove(str(value))
        return True

    def has_object_class(self, object_class: str) -> bool:
        return object_class.lower() in (oc.lower() for oc in self.object_classes)

    def to_ldap_attributes(self) -> Dict[str, List[str]]:
        """Attributes suitable for an LDAP add request (object classes excluded)."""
        return {
            name: list(values) for name, values in self.attributes.items()
            if values and name not in self.read_only_attribute_names
        }

    def __eq__(self, other):
        if not isinstance(other, DirectoryObject):
            return NotImplemented
        return normalize_dn(self.dn) == normalize_dn(other.dn)

    def __hash__(self):
        return hash(normalize_dn(self.dn))

    def __repr__(self):
        return f"DirectoryObject(dn={self.dn!r}, object_classes={self.object_classes!r})"


def _as_list(values: Any) -> List[Any]:
    if values is None:
        return []
    if isinstance(values, (list, tuple, set)):
        return [v for v in values if v is not None]
    return [values]


def _parse_rdns(dn: str) -> List[List[Tuple[str, str]]]:
    """Parse a DN into RDNs, each a list of (attribute name, raw value) pairs."""
    try:
        components = parse_dn(dn, escape=False, strip=True)
    except LDAPInvalidDnError as e:
        raise ValueError(f"Invalid DN: {dn}") from e

    rdns = []
    current = []
    for name, value, separator in components:
        current.append((name, value))
        if separator != '+':
            rdns.append(current)
            current = []
    if current:
        rdns.append(current)
    return rdns


def unescape_dn_value(value: str) -> str:
    """Decode backslash and hex pair escapes of an attribute value."""
    decoded = bytearray()
    i = 0
    while i < len(value):
        char = value[i]
        if char == '\\' and i + 1 < len(value):
            pair = value[i + 1:i + 3]
            if len(pair) == 2 and all(c in '0123456789abcdefABCDEF' for c in pair):
                decoded.append(int(pair, 16))
                i += 3
                continue
            decoded.extend(value[i + 1].encode('utf-8'))
            i += 2
            continue
        decoded.extend(char.encode('utf-8'))
        i += 1
    return decoded.decode('utf-8', errors='replace')


def parse_rdn(dn: str) -> tuple:
    """
    Return (attribute name, value) of the first RDN of a DN.

    The value is unescaped. For a multi-valued RDN the first pair is returned.
    """
    rdns = _parse_rdns(dn)
    if not rdns:
        raise ValueError(f"Invalid DN: {dn}")
    name, value = rdns[0][0]
    return name, unescape_dn_value(value)


def split_dn(dn: str) -> List[str]:
    """Split a DN into its RDN components, keeping escapes as written."""
    return ['+'.join(f"{name}={value}" for name, value in rdn) for rdn in _parse_rdns(dn)]


def parent_dn(dn: str) -> str:
    return ','.join(split_dn(dn)[1:])


def normalize_dn(dn: str) -> str:
    """
    Canonical form of a DN for comparisons.

    Names and values are lowercased, escapes are decoded and re-escaped one
    way, and the pairs of a multi-valued RDN are sorted.
    """
    normalized = []
    for rdn in _parse_rdns(dn):
        pairs = sorted(f"{name.lower()}={escape_rdn(unescape_dn_value(value)).lower()}" for name, value in rdn)
        normalized.append('+'.join(pairs))
    return ','.join(normalized)


def build_dn(rdn_attribute: str, rdn_value: str, base_dn: str) -> str:
    return f"{rdn_attribute}={escape_rdn(rdn_value)},{base_dn}"


def try_normalize_dn(value: str) -> Optional[str]:
    """normalize_dn for membership values that may not be DNs; None if unparsable."""
    try:
        return normalize_dn(value)
    except ValueError:
        return None

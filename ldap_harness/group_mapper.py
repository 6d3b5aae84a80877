"""
Group mapper configuration and resolution.

A group mapper tells the synchronizer where LDAP groups live, which attributes
carry their names and descriptions, and how membership is expressed.
"""

import logging
from enum import Enum
from typing import Dict, List, Optional

from ldap_harness.config import ConfigurationError
from ldap_harness.ldap_config import LDAPConfig, VENDOR_RHDS
from ldap_harness.models import MembershipType, MEMBER, MEMBER_UID
from ldap_harness.providers import ProviderRegistry, ProviderConfig, MapperConfig

logger = logging.getLogger(__name__)

GROUP_MAPPER_TYPE = 'group-ldap-mapper'
GROUPS_MAPPER_NAME = 'groupsMapper'

GROUPS_DN = 'groups.dn'
GROUP_NAME_LDAP_ATTRIBUTE = 'group.name.ldap.attribute'
GROUP_OBJECT_CLASSES = 'group.object.classes'
PRESERVE_GROUP_INHERITANCE = 'preserve.group.inheritance'
MEMBERSHIP_LDAP_ATTRIBUTE = 'membership.ldap.attribute'
MEMBERSHIP_ATTRIBUTE_TYPE = 'membership.attribute.type'
MEMBERSHIP_USER_LDAP_ATTRIBUTE = 'membership.user.ldap.attribute'
GROUPS_LDAP_FILTER = 'groups.ldap.filter'
MAPPED_GROUP_ATTRIBUTES = 'mapped.group.attributes'
DROP_NON_EXISTING_GROUPS_DURING_SYNC = 'drop.non.existing.groups.during.sync'
GROUPS_PATH = 'groups.path'
MODE = 'mode'


class GroupMapperMode(Enum):
    """All modes treat LDAP as the source of the group tree."""
    LDAP_ONLY = 'LDAP_ONLY'
    IMPORT = 'IMPORT'
    READ_ONLY = 'READ_ONLY'


def get_group_description_attr_name(ldap_config: LDAPConfig) -> str:
    """Return the LDAP attribute holding group descriptions for the provider vendor."""
    return 'street' if ldap_config.vendor == VENDOR_RHDS else 'description'


def _parse_bool(value: Optional[str], key: str, default: bool) -> bool:
    if value is None or value == '':
        return default
    if value.lower() in ('true', 'false'):
        return value.lower() == 'true'
    raise ConfigurationError(f"Invalid boolean for {key}: {value}")


def _split(value: Optional[str]) -> List[str]:
    return [item.strip() for item in (value or '').split(',') if item.strip()]


class GroupMapperConfig:
    """
    Typed bindings of a group mapper.

    Raises ConfigurationError on construction if the mapper settings are
    inconsistent.
    """

    def __init__(self, mapper: MapperConfig):
        self.mapper = mapper

        self.groups_dn = mapper.get(GROUPS_DN)
        if not self.groups_dn:
            raise ConfigurationError(f"Group mapper {mapper.name} has no {GROUPS_DN}")

        self.group_name_attribute = mapper.get(GROUP_NAME_LDAP_ATTRIBUTE) or 'cn'
        self.group_object_classes = _split(mapper.get(GROUP_OBJECT_CLASSES)) or ['groupOfNames']
        self.preserve_group_inheritance = _parse_bool(
            mapper.get(PRESERVE_GROUP_INHERITANCE), PRESERVE_GROUP_INHERITANCE, True)

        try:
            self.membership_type = MembershipType(
                (mapper.get(MEMBERSHIP_ATTRIBUTE_TYPE) or MembershipType.DN.value).upper())
        except ValueError:
            raise ConfigurationError(
                f"Invalid {MEMBERSHIP_ATTRIBUTE_TYPE}: {mapper.get(MEMBERSHIP_ATTRIBUTE_TYPE)}")

        default_membership_attr = MEMBER if self.membership_type == MembershipType.DN else MEMBER_UID
        self.membership_attribute = mapper.get(MEMBERSHIP_LDAP_ATTRIBUTE) or default_membership_attr
        self.membership_user_attribute = mapper.get(MEMBERSHIP_USER_LDAP_ATTRIBUTE) or 'uid'
        self.custom_filter = mapper.get(GROUPS_LDAP_FILTER)
        self.mapped_group_attributes = _split(mapper.get(MAPPED_GROUP_ATTRIBUTES))
        self.drop_non_existing_groups = _parse_bool(
            mapper.get(DROP_NON_EXISTING_GROUPS_DURING_SYNC), DROP_NON_EXISTING_GROUPS_DURING_SYNC, True)

        self.groups_path = mapper.get(GROUPS_PATH) or '/'
        if not self.groups_path.startswith('/'):
            raise ConfigurationError(f"{GROUPS_PATH} must start with '/': {self.groups_path}")
        if len(self.groups_path) > 1:
            self.groups_path = self.groups_path.rstrip('/')

        try:
            self.mode = GroupMapperMode(mapper.get(MODE) or GroupMapperMode.READ_ONLY.value)
        except ValueError:
            raise ConfigurationError(f"Invalid group mapper mode: {mapper.get(MODE)}")

        if self.membership_type == MembershipType.UID and self.preserve_group_inheritance:
            raise ConfigurationError(
                "Group inheritance cannot be preserved with UID membership; "
                f"set {PRESERVE_GROUP_INHERITANCE} to false")

    @property
    def group_filter(self) -> str:
        """LDAP filter matching the groups of this mapper."""
        parts = [f"(objectClass={oc})" for oc in self.group_object_classes]
        if self.custom_filter:
            custom = self.custom_filter.strip()
            parts.append(custom if custom.startswith('(') else f"({custom})")
        return parts[0] if len(parts) == 1 else f"(&{''.join(parts)})"

    @property
    def requires_member_placeholder(self) -> bool:
        """groupOfNames and groupOfUniqueNames must always have a member."""
        return self.membership_type == MembershipType.DN and any(
            oc.lower() in ('groupofnames', 'groupofuniquenames') for oc in self.group_object_classes)


def add_or_update_group_mapper(registry: ProviderRegistry, provider: ProviderConfig,
                               mode: GroupMapperMode, description_attr_name: Optional[str] = None,
                               overrides: Optional[Dict[str, str]] = None) -> MapperConfig:
    """
    Register the groups mapper of a provider, replacing an existing one.

    Args:
        registry: Provider registry
        provider: LDAP provider the mapper belongs to
        mode: Group mapper mode
        description_attr_name: LDAP attribute copied into the local group, if any
        overrides: Additional mapper settings keyed by setting name

    Returns:
        The registered mapper
    """
    ldap_config = LDAPConfig(provider)
    config = {
        GROUPS_DN: ldap_config.groups_dn,
        GROUP_NAME_LDAP_ATTRIBUTE: 'cn',
        GROUP_OBJECT_CLASSES: 'groupOfNames',
        PRESERVE_GROUP_INHERITANCE: 'true',
        MEMBERSHIP_LDAP_ATTRIBUTE: MEMBER,
        MEMBERSHIP_ATTRIBUTE_TYPE: MembershipType.DN.value,
        MEMBERSHIP_USER_LDAP_ATTRIBUTE: ldap_config.username_attribute,
        MAPPED_GROUP_ATTRIBUTES: description_attr_name or '',
        DROP_NON_EXISTING_GROUPS_DURING_SYNC: 'true',
        GROUPS_PATH: '/',
        MODE: mode.value,
    }
    config.update(overrides or {})

    multivalued = {key: (str(value),) for key, value in config.items()}
    GroupMapperConfig(MapperConfig(GROUPS_MAPPER_NAME, provider.id, GROUP_MAPPER_TYPE, multivalued))
    mapper = registry.add_or_update_mapper(provider.id, GROUPS_MAPPER_NAME, GROUP_MAPPER_TYPE, multivalued)
    logger.info(f"Group mapper {GROUPS_MAPPER_NAME} configured for provider {provider.id} in {mode.value} mode")
    return mapper


def resolve_group_mapper(registry: ProviderRegistry, provider_id: str,
                         mapper_name: str = GROUPS_MAPPER_NAME) -> GroupMapperConfig:
    """Look up a provider's group mapper and return its typed bindings."""
    mapper = registry.get_mapper(provider_id, mapper_name)
    if mapper.provider_type != GROUP_MAPPER_TYPE:
        raise ConfigurationError(f"Mapper {mapper_name} is not a group mapper ({mapper.provider_type})")
    return GroupMapperConfig(mapper)

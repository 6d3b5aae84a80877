"""
Typed view over the settings of a registered LDAP provider.
"""

import logging
from typing import Dict, Any, List, Optional

from ldap_harness.config import ConfigurationError
from ldap_harness.providers import ProviderConfig, EditMode

logger = logging.getLogger(__name__)

VENDOR_ACTIVE_DIRECTORY = 'ad'
VENDOR_RHDS = 'rhds'
VENDOR_OTHER = 'other'

CONNECTION_URL = 'connectionUrl'
BIND_DN = 'bindDn'
BIND_CREDENTIAL = 'bindCredential'
BASE_DN = 'baseDn'
USERS_DN = 'usersDn'
GROUPS_DN = 'groupsDn'
VENDOR = 'vendor'
USERNAME_LDAP_ATTRIBUTE = 'usernameLDAPAttribute'
RDN_LDAP_ATTRIBUTE = 'rdnLDAPAttribute'
UUID_LDAP_ATTRIBUTE = 'uuidLDAPAttribute'
USER_OBJECT_CLASSES = 'userObjectClasses'
START_TLS = 'startTls'
CONNECTION_TIMEOUT = 'connectionTimeout'
READ_TIMEOUT = 'readTimeout'


class LDAPConfig:
    """LDAP settings of one provider, with vendor specific defaults."""

    def __init__(self, provider: ProviderConfig):
        self.provider = provider

    def _get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.provider.get(key)
        return value if value not in (None, '') else default

    @property
    def connection_url(self) -> Optional[str]:
        return self._get(CONNECTION_URL)

    @property
    def bind_dn(self) -> Optional[str]:
        return self._get(BIND_DN)

    @property
    def bind_credential(self) -> str:
        return self._get(BIND_CREDENTIAL, '')

    @property
    def vendor(self) -> str:
        return self._get(VENDOR, VENDOR_OTHER).lower()

    @property
    def is_active_directory(self) -> bool:
        return self.vendor == VENDOR_ACTIVE_DIRECTORY

    @property
    def base_dn(self) -> str:
        base_dn = self._get(BASE_DN)
        if not base_dn:
            raise ConfigurationError(f"Provider {self.provider.id} has no {BASE_DN} configured")
        return base_dn

    @property
    def users_dn(self) -> str:
        return self._get(USERS_DN) or f"ou=People,{self.base_dn}"

    @property
    def groups_dn(self) -> str:
        return self._get(GROUPS_DN) or f"ou=Groups,{self.base_dn}"

    @property
    def username_attribute(self) -> str:
        return self._get(USERNAME_LDAP_ATTRIBUTE, 'cn' if self.is_active_directory else 'uid')

    @property
    def rdn_attribute(self) -> str:
        return self._get(RDN_LDAP_ATTRIBUTE, self.username_attribute)

    @property
    def uuid_attribute(self) -> str:
        return self._get(UUID_LDAP_ATTRIBUTE, 'objectGUID' if self.is_active_directory else 'entryUUID')

    @property
    def user_object_classes(self) -> List[str]:
        default = 'person, organizationalPerson, user' if self.is_active_directory \
            else 'inetOrgPerson, organizationalPerson'
        value = self._get(USER_OBJECT_CLASSES, default)
        return [oc.strip() for oc in value.split(',') if oc.strip()]

    @property
    def edit_mode(self) -> Optional[EditMode]:
        return self.provider.edit_mode

    def to_client_config(self, error_handling: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Build the configuration dictionary consumed by LDAPClient.

        Raises:
            ConfigurationError: If connection parameters are missing
        """
        missing = [key for key in (CONNECTION_URL, BIND_DN) if not self._get(key)]
        if missing:
            raise ConfigurationError(
                f"Provider {self.provider.id} is missing connection settings: {', '.join(missing)}")

        client_config = {
            'server_url': self.connection_url,
            'bind_dn': self.bind_dn,
            'bind_password': self.bind_credential,
            'start_tls': (self._get(START_TLS, 'false')).lower() == 'true',
            'error_handling': dict(error_handling or {}),
        }
        for key, client_key in ((CONNECTION_TIMEOUT, 'connection_timeout'), (READ_TIMEOUT, 'receive_timeout')):
            value = self._get(key)
            if value is None:
                continue
            try:
                # Timeouts are configured in milliseconds
                client_config[client_key] = max(1, int(value) // 1000)
            except ValueError:
                raise ConfigurationError(f"Invalid {key} value: {value}")
        return client_config

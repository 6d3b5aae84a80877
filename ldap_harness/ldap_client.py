"""
LDAP client for connecting to and modifying LDAP directories.

This module provides the directory operations the harness needs: creating,
reading, updating and deleting entries, and listing the entries of a container.
"""

import logging
import ssl
from typing import Dict, List, Any, Optional, Iterable
from ldap3 import (
    Server, Connection, Tls, ALL, BASE, LEVEL, SUBTREE,
    MODIFY_ADD, MODIFY_DELETE, MODIFY_REPLACE,
)
from ldap3.core.exceptions import (
    LDAPException, LDAPBindError, LDAPSocketOpenError, LDAPCommunicationError,
)
from ldap3.core.results import (
    RESULT_SUCCESS, RESULT_NO_SUCH_OBJECT, RESULT_ENTRY_ALREADY_EXISTS, RESULT_ATTRIBUTE_OR_VALUE_EXISTS,
)

from ldap_harness.errors import HarnessError, NotFoundError, ConflictError
from ldap_harness.models import DirectoryObject
from ldap_harness.retry import retry_call, create_retry_callback, is_retryable_error, MaxRetriesExceeded

logger = logging.getLogger(__name__)

PAGED_RESULTS_CONTROL = '1.2.840.113556.1.4.319'

SCOPES = {
    'BASE': BASE,
    'LEVEL': LEVEL,
    'SUBTREE': SUBTREE,
}

MODIFY_MODES = {
    'replace': MODIFY_REPLACE,
    'append': MODIFY_ADD,
    'delete': MODIFY_DELETE,
}


class LDAPConnectionError(HarnessError):
    """Raised when the directory is unreachable or the bind fails."""
    pass


class LDAPQueryError(HarnessError):
    """Raised when an LDAP operation fails for a reason other than a missing or duplicate entry."""
    pass


class LDAPClient:
    """
    LDAP client for provisioning and reading directory entries.

    An already bound ldap3 connection can be passed in; otherwise connect()
    opens one from the configuration.
    """

    def __init__(self, config: Dict[str, Any], connection: Optional[Connection] = None):
        """
        Initialize LDAP client with configuration.

        Args:
            config: LDAP configuration dictionary
            connection: Optional bound ldap3 connection to reuse
        """
        self.config = config
        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config.get('bind_password', '')

        # SSL/TLS configuration
        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')
        self.cert_file = config.get('cert_file')
        self.key_file = config.get('key_file')

        # Connection settings
        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)
        self.page_size = config.get('page_size', 1000)

        # Retry settings from error_handling config
        error_config = config.get('error_handling', {})
        self.max_retries = error_config.get('max_retries', 3)
        self.retry_wait = error_config.get('retry_wait_seconds', 5)

        self.server = None
        self.connection = connection
        self._connected = connection is not None

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self, max_retries: Optional[int] = None, retry_wait: Optional[int] = None) -> bool:
        """
        Establish connection to LDAP server with retry logic.

        Args:
            max_retries: Maximum number of connection attempts (uses config default if None)
            retry_wait: Seconds to wait between retries (uses config default if None)

        Returns:
            True if connection successful

        Raises:
            LDAPConnectionError: If connection fails after all retries
        """
        if self._connected:
            return True

        max_retries = max_retries or self.max_retries
        retry_wait = retry_wait if retry_wait is not None else self.retry_wait

        try:
            tls_config = self._create_tls_config()
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=tls_config,
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
            logger.debug(f"Created LDAP server object for {self.server_url} (SSL: {self.use_ssl}, StartTLS: {self.start_tls})")
        except LDAPConnectionError:
            raise
        except Exception as e:
            raise LDAPConnectionError(f"Failed to create LDAP server: {e}")

        try:
            retry_call(
                self._open_and_bind,
                max_attempts=max_retries,
                delay=retry_wait,
                exceptions=(LDAPSocketOpenError, LDAPBindError, LDAPCommunicationError),
                on_retry=create_retry_callback(f"LDAP connection to {self.server_url}")
            )
        except MaxRetriesExceeded as e:
            raise LDAPConnectionError(
                f"Failed to connect to LDAP after {e.attempts} attempts: {e.last_exception}")
        except LDAPException as e:
            raise LDAPConnectionError(f"Failed to connect to LDAP: {e}")

        self._connected = True
        logger.info(f"Successfully connected and bound to LDAP server {self.server_url}")
        return True

    def _open_and_bind(self):
        """Open, optionally secure and bind a single connection."""
        self.connection = Connection(
            self.server,
            user=self.bind_dn,
            password=self.bind_password,
            auto_bind=False,
            receive_timeout=self.receive_timeout
        )
        try:
            if not self.connection.open():
                raise LDAPSocketOpenError(f"Failed to open connection: {self.connection.result}")

            if self.start_tls and not self.use_ssl:
                if not self.connection.start_tls():
                    raise LDAPSocketOpenError(f"Failed to start TLS: {self.connection.result}")
                logger.debug("StartTLS negotiation successful")

            if not self.connection.bind():
                raise LDAPBindError(f"Bind failed: {self.connection.result}")
        except LDAPException:
            self._discard_connection()
            raise

    def _discard_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring error while discarding connection: {e}")
            self.connection = None

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for LDAP connection.

        Returns:
            Tls configuration object or None if not needed
        """
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {}

        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file
            logger.debug(f"Using CA certificate file: {self.ca_cert_file}")

        if self.cert_file and self.key_file:
            tls_config['local_certificate_file'] = self.cert_file
            tls_config['local_private_key_file'] = self.key_file
            logger.debug("Client certificate configured for mutual TLS")

        try:
            return Tls(**tls_config)
        except Exception as e:
            raise LDAPConnectionError(f"Failed to create TLS configuration: {e}")

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except Exception as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def _require_connection(self):
        if not self._connected or self.connection is None:
            raise LDAPQueryError("Not connected to LDAP server")

    def _execute(self, operation: str, dn: str, request):
        """
        Run a single LDAP request and translate its outcome.

        Raises:
            NotFoundError: If the target entry does not exist
            ConflictError: If the entry or value already exists
            LDAPConnectionError: If the connection to the directory is lost
            LDAPQueryError: For any other failure
        """
        self._require_connection()
        try:
            success = request()
        except LDAPCommunicationError as e:
            self._connected = False
            raise LDAPConnectionError(f"Lost connection to LDAP during {operation} of {dn}: {e}")
        except LDAPException as e:
            if is_retryable_error(e):
                self._connected = False
                raise LDAPConnectionError(f"LDAP {operation} of {dn} failed: {e}")
            raise LDAPQueryError(f"LDAP {operation} of {dn} failed: {e}")

        if not success:
            result = self.connection.result or {}
            code = result.get('result')
            if code == RESULT_SUCCESS:
                # ldap3 reports a search without matches as False with a success result
                return
            description = result.get('description', 'unknown')
            message = result.get('message', '')
            error_msg = f"LDAP {operation} of {dn} failed: {description} {message}".strip()
            if code == RESULT_NO_SUCH_OBJECT:
                raise NotFoundError(error_msg)
            if code in (RESULT_ENTRY_ALREADY_EXISTS, RESULT_ATTRIBUTE_OR_VALUE_EXISTS):
                raise ConflictError(error_msg)
            raise LDAPQueryError(error_msg)

    def create_entry(self, dn: str, object_classes: Iterable[str],
                     attributes: Dict[str, Any]) -> DirectoryObject:
        """
        Add a new entry to the directory.

        Args:
            dn: Distinguished name of the new entry
            object_classes: Object classes of the entry
            attributes: Attribute map; single values or lists

        Returns:
            DirectoryObject describing the created entry

        Raises:
            ConflictError: If an entry with the same DN already exists
        """
        entry = DirectoryObject(dn, object_classes, attributes)
        self._execute(
            'add', dn,
            lambda: self.connection.add(dn, entry.object_classes, entry.to_ldap_attributes())
        )
        logger.debug(f"Created LDAP entry {dn}")
        return entry

    def read_entry(self, dn: str, attributes: Optional[List[str]] = None) -> DirectoryObject:
        """
        Read a single entry.

        Raises:
            NotFoundError: If no entry exists at the DN
        """
        entries = self.search(dn, '(objectClass=*)', scope='BASE', attributes=attributes)
        if not entries:
            raise NotFoundError(f"LDAP entry not found: {dn}")
        return entries[0]

    def entry_exists(self, dn: str) -> bool:
        try:
            self.read_entry(dn, attributes=['objectClass'])
            return True
        except NotFoundError:
            return False

    def update_attribute(self, dn: str, name: str, values: Any, mode: str = 'replace'):
        """
        Modify one attribute of an entry.

        Args:
            dn: Entry to modify
            name: Attribute name
            values: New value(s)
            mode: 'replace', 'append' or 'delete'
        """
        if mode not in MODIFY_MODES:
            raise ValueError(f"Unknown modify mode: {mode}")
        if not isinstance(values, (list, tuple, set)):
            values = [values] if values is not None else []
        changes = {name: [(MODIFY_MODES[mode], [str(v) for v in values])]}
        self._execute('modify', dn, lambda: self.connection.modify(dn, changes))
        logger.debug(f"Modified {name} of {dn} ({mode}, {len(values)} values)")

    def delete_entry(self, dn: str):
        """
        Delete a single entry.

        Raises:
            NotFoundError: If the entry does not exist
        """
        self._execute('delete', dn, lambda: self.connection.delete(dn))
        logger.debug(f"Deleted LDAP entry {dn}")

    def modify_password(self, dn: str, password: str, active_directory: bool = False):
        """Set the password of an entry. The password itself is never logged."""
        if active_directory:
            self._execute(
                'password change', dn,
                lambda: self.connection.extend.microsoft.modify_password(dn, password)
            )
        else:
            changes = {'userPassword': [(MODIFY_REPLACE, [password])]}
            self._execute('password change', dn, lambda: self.connection.modify(dn, changes))
        logger.debug(f"Password updated for {dn}")

    def list_children(self, base_dn: str, search_filter: str = '(objectClass=*)',
                      attributes: Optional[List[str]] = None) -> List[DirectoryObject]:
        """Return the entries directly below a container."""
        return self.search(base_dn, search_filter, scope='LEVEL', attributes=attributes)

    def search(self, base_dn: str, search_filter: str, scope: str = 'SUBTREE',
               attributes: Optional[List[str]] = None) -> List[DirectoryObject]:
        """
        Search the directory with paging.

        Args:
            base_dn: Search base
            search_filter: LDAP filter
            scope: 'BASE', 'LEVEL' or 'SUBTREE'
            attributes: Attributes to return, all user attributes if None

        Returns:
            List of DirectoryObject

        Raises:
            NotFoundError: If the search base does not exist
        """
        search_attributes = attributes or ['*']
        if 'objectClass' not in search_attributes and '*' not in search_attributes:
            search_attributes = list(search_attributes) + ['objectClass']

        logger.debug(f"Searching with filter: {search_filter} in base: {base_dn} ({scope})")

        entries = []
        page_count = 0
        cookie = None
        while True:
            kwargs = {
                'search_base': base_dn,
                'search_filter': search_filter,
                'search_scope': SCOPES[scope],
                'attributes': search_attributes,
            }
            if scope != 'BASE':
                kwargs['paged_size'] = self.page_size
                if cookie:
                    kwargs['paged_cookie'] = cookie

            self._execute('search', base_dn, lambda: self.connection.search(**kwargs))
            page_count += 1
            entries.extend(self._process_search_results())

            cookie = self._next_page_cookie()
            if not cookie:
                break

        logger.debug(f"Retrieved {len(entries)} entries across {page_count} pages")
        return entries

    def _next_page_cookie(self):
        controls = (self.connection.result or {}).get('controls') or {}
        if not isinstance(controls, dict):
            return None
        control = controls.get(PAGED_RESULTS_CONTROL) or {}
        return (control.get('value') or {}).get('cookie')

    def _process_search_results(self) -> List[DirectoryObject]:
        """Convert the raw search response into DirectoryObjects."""
        entries = []
        for item in self.connection.response or []:
            if item.get('type') not in (None, 'searchResEntry'):
                continue
            attributes = {
                name: [_to_text(v) for v in (values if isinstance(values, list) else [values])]
                for name, values in (item.get('attributes') or {}).items()
            }
            entries.append(DirectoryObject(item['dn'], attributes=attributes))
        return entries

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()


def _to_text(value: Any) -> str:
    if isinstance(value, bytes):
        try:
            return value.decode('utf-8')
        except UnicodeDecodeError:
            return value.hex()
    return str(value)

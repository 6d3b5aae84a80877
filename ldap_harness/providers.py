"""
Identity provider registration.

Provider configurations are immutable once registered. The ProviderRegistry
holds the registered providers and their mappers and is passed explicitly to
every component that needs it, so several independent fixtures can live in one
process.
"""

import uuid
import logging
import dataclasses
from types import MappingProxyType
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional, Tuple

from ldap_harness.config import ConfigurationError
from ldap_harness.errors import NotFoundError

logger = logging.getLogger(__name__)

PROVIDER_NAME = 'ldap'
DISPLAY_NAME = 'test-ldap'

SYNC_REGISTRATIONS = 'syncRegistrations'
EDIT_MODE = 'editMode'

MAX_LIFESPAN_MS = 600000  # 10 minutes
SYNC_PERIOD_DISABLED = -1

MultivaluedConfig = Mapping[str, Tuple[str, ...]]


class CachePolicy(Enum):
    NO_CACHE = 'NO_CACHE'
    MAX_LIFESPAN = 'MAX_LIFESPAN'


class EditMode(Enum):
    READ_ONLY = 'READ_ONLY'
    WRITABLE = 'WRITABLE'
    UNSYNCED = 'UNSYNCED'


def get_first(config: Mapping[str, Tuple[str, ...]], key: str, default: Optional[str] = None) -> Optional[str]:
    """Return the first value of a multi-valued setting."""
    values = config.get(key)
    return values[0] if values else default


def to_multivalued(settings: Mapping[str, str]) -> MultivaluedConfig:
    """
    Convert flat string settings into the multi-valued form.

    Raises:
        ConfigurationError: If settings is not a mapping of strings to strings
    """
    if not isinstance(settings, Mapping):
        raise ConfigurationError("Provider settings must be a mapping of strings")

    config = {}
    for key, value in settings.items():
        if not isinstance(key, str) or not key:
            raise ConfigurationError(f"Invalid provider setting name: {key!r}")
        if isinstance(value, (list, tuple)):
            values = tuple(value)
        else:
            values = (value,)
        for item in values:
            if not isinstance(item, str):
                raise ConfigurationError(f"Provider setting {key} must be a string, got {type(item).__name__}")
        config[key] = values
    return config


@dataclass(frozen=True)
class ProviderConfig:
    """A registered directory connection."""
    name: str
    provider_id: str
    config: MultivaluedConfig
    import_enabled: bool = True
    cache_policy: CachePolicy = CachePolicy.NO_CACHE
    max_lifespan: int = -1
    priority: int = 0
    changed_sync_period: int = SYNC_PERIOD_DISABLED
    full_sync_period: int = SYNC_PERIOD_DISABLED
    last_sync: int = 0
    id: Optional[str] = None

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return get_first(self.config, key, default)

    @property
    def sync_registrations(self) -> bool:
        return (self.get(SYNC_REGISTRATIONS) or 'false').lower() == 'true'

    @property
    def edit_mode(self) -> Optional[EditMode]:
        value = self.get(EDIT_MODE)
        return EditMode(value) if value else None


@dataclass(frozen=True)
class MapperConfig:
    """A mapper sub-component bound to a provider."""
    name: str
    parent_id: str
    provider_type: str
    config: MultivaluedConfig = field(default_factory=dict)
    id: Optional[str] = None

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return get_first(self.config, key, default)


class ProviderRegistry:
    """Registered providers and mappers for one harness context."""

    def __init__(self):
        self._providers = {}
        self._mappers = {}

    def add_provider(self, model: ProviderConfig) -> ProviderConfig:
        """
        Register a provider and assign its id.

        Returns:
            The registered, immutable configuration
        """
        if model.id is not None:
            raise ConfigurationError(f"Provider {model.name} is already registered with id {model.id}")
        registered = dataclasses.replace(
            model, id=str(uuid.uuid4()), config=MappingProxyType(dict(model.config)))
        self._providers[registered.id] = registered
        self._mappers[registered.id] = {}
        logger.info(f"Registered provider {registered.name} ({registered.provider_id}) with id {registered.id}")
        return registered

    def get_provider(self, provider_id: str) -> ProviderConfig:
        try:
            return self._providers[provider_id]
        except KeyError:
            raise NotFoundError(f"Provider not found: {provider_id}")

    def providers(self) -> List[ProviderConfig]:
        return sorted(self._providers.values(), key=lambda p: p.priority)

    def get_ldap_provider(self) -> ProviderConfig:
        """Return the LDAP provider with the lowest priority value."""
        for provider in self.providers():
            if provider.provider_id == PROVIDER_NAME:
                return provider
        raise NotFoundError("No LDAP provider registered")

    def add_or_update_mapper(self, provider_id: str, name: str, provider_type: str,
                             config: MultivaluedConfig) -> MapperConfig:
        """Register a mapper, keeping the id of an existing mapper with the same name."""
        self.get_provider(provider_id)
        existing = self._mappers[provider_id].get(name)
        mapper = MapperConfig(
            name=name,
            parent_id=provider_id,
            provider_type=provider_type,
            config=MappingProxyType(dict(config)),
            id=existing.id if existing else str(uuid.uuid4()),
        )
        self._mappers[provider_id][name] = mapper
        logger.debug(f"{'Updated' if existing else 'Added'} mapper {name} for provider {provider_id}")
        return mapper

    def get_mapper(self, provider_id: str, name: str) -> MapperConfig:
        self.get_provider(provider_id)
        try:
            return self._mappers[provider_id][name]
        except KeyError:
            raise NotFoundError(f"Mapper {name} not found for provider {provider_id}")

    def mappers(self, provider_id: str) -> List[MapperConfig]:
        self.get_provider(provider_id)
        return list(self._mappers[provider_id].values())

    def remove_mapper(self, provider_id: str, name: str):
        self.get_mapper(provider_id, name)
        del self._mappers[provider_id][name]


def create_ldap_provider(registry: ProviderRegistry, settings: Mapping[str, str],
                         import_enabled: bool) -> str:
    """
    Register an LDAP provider for provisioning tests.

    Registrations are always synced to LDAP and the provider is always
    writable, whatever the settings say.

    Args:
        registry: Registry to add the provider to
        settings: LDAP connection settings
        import_enabled: Whether users are imported into the local store

    Returns:
        ID of the newly registered provider

    Raises:
        ConfigurationError: If the settings are malformed
    """
    config = to_multivalued(settings)
    config[SYNC_REGISTRATIONS] = ('true',)
    config[EDIT_MODE] = (EditMode.WRITABLE.value,)

    model = ProviderConfig(
        name=DISPLAY_NAME,
        provider_id=PROVIDER_NAME,
        config=config,
        import_enabled=bool(import_enabled),
        cache_policy=CachePolicy.MAX_LIFESPAN,
        max_lifespan=MAX_LIFESPAN_MS,
        priority=0,
        changed_sync_period=SYNC_PERIOD_DISABLED,
        full_sync_period=SYNC_PERIOD_DISABLED,
        last_sync=0,
    )
    return registry.add_provider(model).id

"""Service container for dependency injection."""

import logging
import threading
from typing import Any, Dict

from flask import current_app

from passkey_mapper.errors import ConfigurationError

logger = logging.getLogger(__name__)

EXTENSION_KEY = "passkey_mapper.services"


class ServiceContainer:
    """Container for application services.

    Services are created on first use by the matching `_init_<name>` method
    and then shared for the lifetime of the application, so the in-memory
    stores they hold are process-wide. Creation is serialized so concurrent
    first requests never build two copies of a store.
    """

    def __init__(self, config):
        """Initialize the service container."""
        self.config = config
        self._services: Dict[str, Any] = {}
        self._lock = threading.RLock()

    def register(self, name: str, service: Any) -> None:
        """Register a service in the container.

        Args:
            name: Name of the service
            service: The service instance
        """
        with self._lock:
            self._services[name] = service

    def get(self, name: str) -> Any:
        """Get a service from the container by name.

        Args:
            name: Name of the service

        Returns:
            The service instance

        Raises:
            KeyError: if no service by that name can be built
        """
        with self._lock:
            if name in self._services:
                return self._services[name]

            init_method = getattr(self, f"_init_{name}", None)
            if init_method is None:
                raise KeyError(f"Unknown service: {name}")

            service = init_method()
            self._services[name] = service
            logger.debug(f"Service {name} created")
            return service

    def _init_credential_repository(self):
        """Initialize the credential repository."""
        backend = self.config.get('CREDENTIAL_BACKEND', 'memory')
        if backend == 'memory':
            from passkey_mapper.models.credential_repository import InMemoryCredentialRepository
            return InMemoryCredentialRepository()
        if backend == 'sqlalchemy':
            from passkey_mapper.models.credential_repository import SqlAlchemyCredentialRepository
            from passkey_mapper.extensions import db
            return SqlAlchemyCredentialRepository(db)
        raise ConfigurationError(f"Unknown CREDENTIAL_BACKEND: {backend}")

    def _init_challenge_repository(self):
        """Initialize the pending challenge repository."""
        from passkey_mapper.models.challenge_repository import InMemoryChallengeRepository
        return InMemoryChallengeRepository()

    def _init_mapping_codec(self):
        """Initialize the mapping codec from the configured key."""
        from passkey_mapper.services.mapping_codec import MappingCodec
        return MappingCodec.from_config(self.config)

    def _init_ledger_gateway(self):
        """Initialize the ledger gateway."""
        from passkey_mapper.services.ledger_gateway import create_ledger_gateway
        return create_ledger_gateway(self.config)

    def _init_ceremony_service(self):
        """Initialize the ceremony service."""
        from passkey_mapper.services.ceremony_service import CeremonyService
        return CeremonyService.from_config(
            self.config,
            self.get('credential_repository'),
            self.get('challenge_repository'),
        )

    def _init_binding_service(self):
        """Initialize the binding service."""
        from passkey_mapper.services.binding_service import BindingService
        return BindingService(
            self.get('mapping_codec'),
            self.get('ledger_gateway'),
            app_identifier=self.config.get('APP_IDENTIFIER', 'PasskeyArweaveMapper'),
        )


def init_container(app):
    """Create the application's container and build the services that validate configuration."""
    services = ServiceContainer(app.config)
    app.extensions[EXTENSION_KEY] = services

    # Fail at startup, not on first request, when the key or ledger is misconfigured,
    # and create the shared stores before any request thread can race for them
    for name in ("mapping_codec", "ledger_gateway", "ceremony_service", "binding_service"):
        services.get(name)
    return services


def container():
    """Get the service container for the current application.

    Returns:
        ServiceContainer: The service container instance
    """
    return current_app.extensions[EXTENSION_KEY]

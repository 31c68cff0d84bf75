"""
Service registry for service servers.

The registry knows service server classes by type name, builds instances
from a settings context, and keeps them by (type name, hash). Types are
registered by hand with add_service_type() or discovered from the
serviceserver.types entry point namespace with stevedore.
"""
import inspect
from typing import Any, Dict, Optional

from stevedore import extension

from .config import LOG_DEBUG, LOG_PRINT, LOG_VERBOSE

SERVICE_NAMESPACE = 'serviceserver.types'


class ServiceManager:
    """Registry that instantiates service servers by type name.

    Attributes:
        service_types: Type name -> service server class
        services_map: Type name -> {hash: instance}
        services: Type name -> default instance (the first one built,
            unless changed with set_default_service)
    """

    def __init__(self, config: Any, log: Any = None):
        self.config = config
        self.log = log if log is not None else config.logger

        self.service_types: Dict[str, type] = {}
        self.services_map: Dict[str, Dict[str, Any]] = {}
        self.services: Dict[str, Any] = {}

    def add_service_type(self, service_type: str, service_class: Any) -> bool:
        """Register a service server class under a type name.

        Returns:
            True if registered, False for an empty name or a non-class
        """
        if not isinstance(service_type, str) or not service_type:
            self.log.error('ServiceManager add_service_type failed -- type name was '
                           '{0!r}.'.format(service_type))
            return False
        if not inspect.isclass(service_class):
            self.log.error('ServiceManager add_service_type failed for [{0}] -- expected '
                           'a class but got {1}.'.format(service_type,
                                                         type(service_class).__name__))
            return False

        self.service_types[service_type] = service_class
        self.services_map.setdefault(service_type, {})
        self.log.log(LOG_DEBUG, 'ServiceManager: registered service type', service_type)
        return True

    def _on_load_failure(self, manager, entry_point, err):
        self.log.error('ServiceManager: failed to load service type {0}: {1}'.format(
            entry_point, err))

    def load_service_types(self, extension_manager: Any = None) -> int:
        """Register every service server class found in the entry point namespace.

        Args:
            extension_manager: A stevedore ExtensionManager to read instead of
                scanning SERVICE_NAMESPACE

        Returns:
            The number of service types registered
        """
        if extension_manager is None:
            self.log.log(LOG_DEBUG, 'ServiceManager: searching namespace:', SERVICE_NAMESPACE)
            extension_manager = extension.ExtensionManager(
                namespace=SERVICE_NAMESPACE,
                invoke_on_load=False,
                on_load_failure_callback=self._on_load_failure,
            )

        count = 0
        for ext in extension_manager:
            if self.add_service_type(ext.name, ext.plugin):
                count += 1
        self.log.log(LOG_VERBOSE, 'ServiceManager: loaded {0} service types'.format(count))
        return count

    def instantiate_service_provider(self, service_type: str,
                                     options: Optional[Dict[str, Any]] = None,
                                     service_hash: Optional[str] = None) -> Any:
        """Build a service server of a registered type and keep it.

        Returns:
            The new instance, or None if the type is unknown
        """
        service_class = self.service_types.get(service_type)
        if service_class is None:
            self.log.error('ServiceManager could not instantiate [{0}] -- service type '
                           'is not registered (known: {1}).'.format(
                               service_type, ', '.join(sorted(self.service_types)) or 'none'))
            return None

        service = service_class(self.config, options, service_hash, log=self.log)
        self.services_map[service_type][service.hash] = service
        if service_type not in self.services:
            self.services[service_type] = service
        self.log.log(LOG_PRINT, 'ServiceManager: instantiated {0} service [{1}]'.format(
            service_type, service.hash))
        return service

    def get_service(self, service_type: str, service_hash: Optional[str] = None) -> Any:
        """Return a service by hash, or the default service of the type."""
        if service_hash is None:
            return self.services.get(service_type)
        return self.services_map.get(service_type, {}).get(service_hash)

    def set_default_service(self, service_type: str, service_hash: str) -> bool:
        service = self.get_service(service_type, service_hash)
        if service is None:
            self.log.error('ServiceManager could not set default [{0}] service -- no '
                           'service with hash [{1}].'.format(service_type, service_hash))
            return False
        self.services[service_type] = service
        return True

    def stop_all(self) -> None:
        """Stop every active service."""
        for service_type, instances in self.services_map.items():
            for service_hash, service in instances.items():
                if not service.active:
                    continue
                self.log.log(LOG_VERBOSE, 'ServiceManager: stopping {0} service [{1}]'.format(
                    service_type, service_hash))
                try:
                    service.stop()
                except Exception as e:
                    self.log.error('ServiceManager: error stopping {0} service [{1}]: '
                                   '{2}'.format(service_type, service_hash, e))

"""In-process lookup of executable services by id."""

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from autobot.services.types import Service

logger = logging.getLogger(__name__)


class ServiceNotFoundError(LookupError):
    """No service is registered under the given id."""

    def __init__(self, service_id: str) -> None:
        super().__init__(f"Service not found: {service_id}")
        self.service_id = service_id


class ServiceRegistry:
    def __init__(self) -> None:
        self._services: "dict[str, Service]" = {}

    def register(self, service: "Service") -> None:
        service_id = service.info.id
        if service_id in self._services:
            logger.warning("service_replaced", extra={"service.id": service_id})
        self._services[service_id] = service

    def unregister(self, service_id: str) -> None:
        self._services.pop(service_id, None)

    def has(self, service_id: str) -> bool:
        return service_id in self._services

    def get(self, service_id: str) -> "Service | None":
        return self._services.get(service_id)

    def require(self, service_id: str) -> "Service":
        service = self._services.get(service_id)
        if service is None:
            raise ServiceNotFoundError(service_id)
        return service

    def list(self) -> "list[Service]":
        return list(self._services.values())

    def __contains__(self, service_id: object) -> bool:
        return service_id in self._services

    def __len__(self) -> int:
        return len(self._services)

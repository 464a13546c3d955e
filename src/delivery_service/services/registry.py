"""Endpoint registration, updates and secrets."""
from __future__ import annotations

from typing import Any, List, Mapping
from uuid import UUID

import structlog

from delivery_service.core.exceptions import EndpointNotFoundError
from delivery_service.domain.dto import EndpointCreateDTO, EndpointUpdateDTO, validate_config
from delivery_service.domain.models import Endpoint
from delivery_service.repositories.endpoints import EndpointRepository

logger = structlog.get_logger(__name__)

_CONFIG_FIELDS = tuple(EndpointCreateDTO.model_fields)


class EndpointRegistry:
    def __init__(self, endpoints: EndpointRepository):
        self._endpoints = endpoints

    async def register(self, config: EndpointCreateDTO | Mapping[str, Any]) -> Endpoint:
        """Validate and persist a new endpoint.

        Raises ``InvalidConfigurationError`` (``EndpointAlreadyExistsError`` for
        a taken name); nothing is written on failure.
        """
        data = config
        if not isinstance(data, EndpointCreateDTO):
            data = validate_config(EndpointCreateDTO, config)
        endpoint = await self._endpoints.create(data)
        logger.info(
            "endpoint registered",
            endpoint_id=str(endpoint.id),
            endpoint=endpoint.name,
            transport_mode=endpoint.transport_mode.value,
        )
        return endpoint

    async def update(
        self, endpoint_id: UUID, changes: EndpointUpdateDTO | Mapping[str, Any]
    ) -> bool:
        """Apply the provided fields only; the merged config is re-validated.

        Returns False when the endpoint does not exist.
        """
        patch = changes
        if not isinstance(patch, EndpointUpdateDTO):
            patch = validate_config(EndpointUpdateDTO, changes)
        fields = patch.model_dump(exclude_unset=True)
        try:
            current = await self._endpoints.get(endpoint_id)
        except EndpointNotFoundError:
            return False
        merged = {name: getattr(current, name) for name in _CONFIG_FIELDS}
        merged.update(fields)
        validated = validate_config(EndpointCreateDTO, merged)
        to_write = validated.model_dump(mode="json", include=set(fields))
        try:
            await self._endpoints.update(endpoint_id, to_write)
        except EndpointNotFoundError:
            return False
        logger.info("endpoint updated", endpoint_id=str(endpoint_id), fields=sorted(to_write))
        return True

    async def delete(self, endpoint_id: UUID) -> bool:
        deleted = await self._endpoints.delete_cascade(endpoint_id)
        if deleted:
            logger.info("endpoint deleted", endpoint_id=str(endpoint_id))
        return deleted

    async def get(self, endpoint_id: UUID) -> Endpoint:
        return await self._endpoints.get(endpoint_id)

    async def list(
        self, *, enabled_only: bool = False, limit: int = 50, offset: int = 0
    ) -> tuple[List[Endpoint], int]:
        return await self._endpoints.list(enabled_only=enabled_only, limit=limit, offset=offset)

    async def set_secret(self, endpoint_id: UUID, name: str, value: str) -> None:
        await self._endpoints.get(endpoint_id)
        await self._endpoints.set_secret(endpoint_id, name, value)
        logger.info("endpoint secret stored", endpoint_id=str(endpoint_id), secret=name)

    async def get_secret(self, endpoint_id: UUID, name: str) -> str | None:
        return await self._endpoints.get_secret(endpoint_id, name)

    async def delete_secret(self, endpoint_id: UUID, name: str) -> bool:
        return await self._endpoints.delete_secret(endpoint_id, name)

    async def list_secret_names(self, endpoint_id: UUID) -> list[str]:
        await self._endpoints.get(endpoint_id)
        return await self._endpoints.list_secret_names(endpoint_id)

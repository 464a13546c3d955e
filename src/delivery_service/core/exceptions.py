"""Common exceptions for domain, repository and transport layers."""
from __future__ import annotations


class DeliveryServiceError(Exception):
    """Base error for service layer."""


class RepositoryError(DeliveryServiceError):
    """Raised when repository operations fail."""


class NotFoundError(RepositoryError):
    """Raised when requested entity is missing."""


class EndpointNotFoundError(NotFoundError):
    """Raised when a webhook endpoint id does not resolve."""


class DeliveryNotFoundError(NotFoundError):
    """Raised when a delivery attempt (call id) does not exist."""


class StreamConfigNotFoundError(NotFoundError):
    """Raised when a named stream configuration does not exist."""


class InvalidConfigurationError(DeliveryServiceError):
    """Raised when endpoint or stream configuration fails validation."""

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []


class EndpointAlreadyExistsError(InvalidConfigurationError):
    """Raised when registering an endpoint under a taken name."""


class NoSubjectConfiguredError(InvalidConfigurationError):
    """Raised when a stream publish has neither a configured nor an override subject."""


class EndpointDisabledError(DeliveryServiceError):
    """Raised when publishing to an endpoint whose ``enabled`` flag is off."""


class PoolExhaustedError(DeliveryServiceError):
    """Raised when every connection in a stream pool is dead."""


class TransportFailureError(DeliveryServiceError):
    """Raised when a transport rejects or fails to carry a message."""


class StreamPublishError(TransportFailureError):
    """Raised when a JetStream publish fails or times out."""


class InvalidStatusTransitionError(DeliveryServiceError):
    """Raised when a delivery attempts an unsupported status change."""

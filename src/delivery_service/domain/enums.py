"""Domain enums for endpoints, deliveries and stream configuration."""
from __future__ import annotations

from enum import Enum


class DeliveryStatus(str, Enum):
    """Delivery attempt lifecycle states.

    A ``pending`` row with a non-null ``locked_at`` is in flight.
    """

    PENDING = "pending"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.SUCCESS, DeliveryStatus.FAILED)


class TransportMode(str, Enum):
    """Which transport(s) an endpoint publishes on."""

    QUEUE = "queue"
    STREAM = "stream"
    BOTH = "both"

    @property
    def uses_stream(self) -> bool:
        return self in (TransportMode.STREAM, TransportMode.BOTH)


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class AuthMode(str, Enum):
    """NATS authentication modes."""

    NONE = "none"
    TOKEN = "token"
    NKEY = "nkey"
    CREDENTIALS = "credentials"

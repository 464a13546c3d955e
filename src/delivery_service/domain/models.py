"""Pydantic models representing key domain entities."""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from delivery_service.domain.enums import (
    AuthMode,
    DeliveryStatus,
    HttpMethod,
    TransportMode,
)

DEFAULT_STREAM_CONFIG = "default"


class Endpoint(BaseModel):
    id: UUID
    name: str
    description: str | None = None
    url: str
    method: HttpMethod = HttpMethod.POST
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_ms: int = 5000
    max_retries: int = 3
    retry_delay_ms: int = 1000
    enabled: bool = True
    transport_mode: TransportMode = TransportMode.QUEUE
    stream_subject: str | None = None
    stream_config: str = DEFAULT_STREAM_CONFIG
    created_at: datetime
    updated_at: datetime

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


class DeliveryAttempt(BaseModel):
    id: UUID
    endpoint_id: UUID
    payload: Any = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    retry_count: int = 0
    next_retry_at: datetime | None = None
    last_error: str | None = None
    latency_ms: int | None = None
    response_code: int | None = None
    response_body: str | None = None
    source: str | None = None
    locked_at: datetime | None = None
    claim_id: UUID | None = Field(default=None, exclude=True)
    scheduled_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def in_flight(self) -> bool:
        return self.status == DeliveryStatus.PENDING and self.locked_at is not None


class AttemptHistoryEntry(BaseModel):
    id: UUID
    delivery_id: UUID
    attempt_number: int
    success: bool
    response_code: int | None = None
    error: str | None = None
    latency_ms: int | None = None
    started_at: datetime | None = None
    completed_at: datetime


class StreamConfig(BaseModel):
    name: str
    servers: list[str] = Field(default_factory=lambda: ["nats://localhost:4222"])
    auth_mode: AuthMode = AuthMode.NONE
    auth_token: str | None = None
    nkey_seed: str | None = None
    credentials_file: str | None = None
    stream_name: str = "WEBHOOKS"
    subject_prefix: str = "webhooks"
    pool_size: int = 10
    connect_timeout_ms: int = 5000
    enabled: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PublishRecord(BaseModel):
    id: UUID
    endpoint_id: UUID
    subject: str
    payload: Any = None
    success: bool
    latency_ms: int | None = None
    error: str | None = None
    stream_name: str | None = None
    stream_sequence: int | None = None
    message_id: str | None = None
    published_at: datetime


class Outcome(BaseModel):
    """Classified result of one outbound HTTP attempt."""

    success: bool
    retryable: bool = False
    response_code: int | None = None
    latency_ms: int | None = None
    error: str | None = None
    response_body: str | None = None


class StreamPublishResult(BaseModel):
    success: bool
    subject: str
    stream: str | None = None
    sequence: int | None = None
    duplicate: bool = False
    latency_ms: int | None = None
    error: str | None = None


class PublishResult(BaseModel):
    accepted: bool
    mode: TransportMode
    delivery_id: UUID | None = None
    stream_result: StreamPublishResult | None = None
    queue_error: str | None = None


class PoolStats(BaseModel):
    config_name: str
    total_connections: int
    healthy_connections: int
    requests_served: int
    health_percentage: float
    healthy: bool


class EndpointStats(BaseModel):
    endpoint_id: UUID
    name: str
    enabled: bool
    transport_mode: TransportMode
    total: int = 0
    pending: int = 0
    in_flight: int = 0
    retrying: int = 0
    succeeded: int = 0
    failed: int = 0
    success_rate: float | None = None
    avg_latency_ms: float | None = None
    last_attempt_at: datetime | None = None


class BacklogStats(BaseModel):
    pending: int = 0
    in_flight: int = 0
    retrying: int = 0
    oldest_pending_at: datetime | None = None


class FailureEntry(BaseModel):
    delivery_id: UUID
    endpoint_id: UUID
    endpoint_name: str
    retry_count: int
    last_error: str | None = None
    response_code: int | None = None
    updated_at: datetime


class StreamPublishStats(BaseModel):
    endpoint_id: UUID
    endpoint_name: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    success_rate: float | None = None
    avg_latency_ms: float | None = None
    p50_latency_ms: float | None = None
    p95_latency_ms: float | None = None
    p99_latency_ms: float | None = None
    last_published_at: datetime | None = None

"""Pydantic DTOs for the registry, stream config and publish operations."""
from __future__ import annotations

from typing import Any, TypeVar
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from delivery_service.core.exceptions import InvalidConfigurationError
from delivery_service.domain.enums import AuthMode, HttpMethod, TransportMode
from delivery_service.domain.models import DEFAULT_STREAM_CONFIG

MAX_TIMEOUT_MS = 60_000
MAX_RETRIES = 10
MAX_RETRY_DELAY_MS = 3_600_000

_DTO = TypeVar("_DTO", bound=BaseModel)


def _check_http_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError("url must be an absolute http(s) URL with a host")
    return value


class EndpointCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    url: str
    method: HttpMethod = HttpMethod.POST
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_ms: int = Field(default=5000, ge=1, le=MAX_TIMEOUT_MS)
    max_retries: int = Field(default=3, ge=0, le=MAX_RETRIES)
    retry_delay_ms: int = Field(default=1000, ge=0, le=MAX_RETRY_DELAY_MS)
    enabled: bool = True
    transport_mode: TransportMode = TransportMode.QUEUE
    stream_subject: str | None = None
    stream_config: str = DEFAULT_STREAM_CONFIG

    @field_validator("method", mode="before")
    @classmethod
    def _normalize_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        return _check_http_url(value)

    @model_validator(mode="after")
    def _subject_required_for_stream(self) -> "EndpointCreateDTO":
        if self.transport_mode.uses_stream and not (self.stream_subject or "").strip():
            raise ValueError(
                f"stream_subject is required for transport_mode={self.transport_mode.value}"
            )
        return self


class EndpointUpdateDTO(BaseModel):
    """Partial update; only fields explicitly set are applied."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    url: str | None = None
    method: HttpMethod | None = None
    headers: dict[str, str] | None = None
    timeout_ms: int | None = None
    max_retries: int | None = None
    retry_delay_ms: int | None = None
    enabled: bool | None = None
    transport_mode: TransportMode | None = None
    stream_subject: str | None = None
    stream_config: str | None = None

    @field_validator("method", mode="before")
    @classmethod
    def _normalize_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class StreamConfigDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    servers: list[str] = Field(default_factory=lambda: ["nats://localhost:4222"], min_length=1)
    auth_mode: AuthMode = AuthMode.NONE
    auth_token: str | None = None
    nkey_seed: str | None = None
    credentials_file: str | None = None
    stream_name: str = Field(default="WEBHOOKS", min_length=1)
    subject_prefix: str = "webhooks"
    pool_size: int = Field(default=10, gt=0, le=100)
    connect_timeout_ms: int = Field(default=5000, ge=1, le=MAX_TIMEOUT_MS)
    enabled: bool = True

    @field_validator("servers")
    @classmethod
    def _validate_servers(cls, value: list[str]) -> list[str]:
        for server in value:
            parsed = urlparse(server)
            if parsed.scheme not in ("nats", "tls") or not parsed.hostname:
                raise ValueError(f"invalid NATS server URL {server!r}: expected nats:// or tls://")
        return value

    @model_validator(mode="after")
    def _credentials_match_auth_mode(self) -> "StreamConfigDTO":
        required = {
            AuthMode.TOKEN: "auth_token",
            AuthMode.NKEY: "nkey_seed",
            AuthMode.CREDENTIALS: "credentials_file",
        }.get(self.auth_mode)
        if required and not getattr(self, required):
            raise ValueError(f"{required} is required for auth_mode={self.auth_mode.value}")
        return self


class PublishRequestDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    payload: Any
    transport: TransportMode | None = None
    subject: str | None = None
    message_id: str | None = None
    source: str | None = None


def validate_config(model: type[_DTO], data: Any) -> _DTO:
    """Validate *data* into *model*, raising ``InvalidConfigurationError`` on failure."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False, include_input=False)
        message = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in errors
        )
        raise InvalidConfigurationError(message, errors=errors) from exc

"""Publishes payloads to an endpoint's queue and/or stream transport."""
from __future__ import annotations

import asyncio
import time
from typing import Any
from uuid import UUID

import structlog

from delivery_service.core.exceptions import (
    EndpointDisabledError,
    InvalidConfigurationError,
    NoSubjectConfiguredError,
    PoolExhaustedError,
    StreamConfigNotFoundError,
    StreamPublishError,
)
from delivery_service.domain.enums import TransportMode
from delivery_service.domain.models import Endpoint, PublishResult, StreamPublishResult
from delivery_service.otel import get_tracer
from delivery_service.repositories.deliveries import DeliveryAttemptRepository
from delivery_service.repositories.endpoints import EndpointRepository
from delivery_service.repositories.publish_records import PublishRecordRepository
from delivery_service.services.executor import encode_payload
from delivery_service.stream.pool import PoolLease, StreamConnectionPool, StreamPoolRegistry

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

MESSAGE_ID_HEADER = "Nats-Msg-Id"


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class Publisher:
    def __init__(
        self,
        endpoints: EndpointRepository,
        deliveries: DeliveryAttemptRepository,
        publish_records: PublishRecordRepository,
        stream_pools: StreamPoolRegistry,
    ):
        self._endpoints = endpoints
        self._deliveries = deliveries
        self._records = publish_records
        self._pools = stream_pools

    async def publish(
        self,
        endpoint_id: UUID,
        payload: Any,
        *,
        transport: TransportMode | None = None,
        subject: str | None = None,
        message_id: str | None = None,
        source: str | None = None,
    ) -> PublishResult:
        """Emit *payload* on the endpoint's transport(s).

        Lookup and configuration errors are raised before anything is written.
        In ``stream`` mode pool exhaustion and publish failures propagate; in
        ``both`` mode the two transports are independent and each outcome is
        reported in the result. Waiting for a pool connection and the publish
        itself share the endpoint timeout.
        """
        endpoint = await self._endpoints.get(endpoint_id)
        if not endpoint.enabled:
            raise EndpointDisabledError(f"Endpoint {endpoint.name!r} is disabled")
        mode = transport or endpoint.transport_mode
        resolved_subject: str | None = None
        if mode.uses_stream:
            resolved_subject = (subject or endpoint.stream_subject or "").strip()
            if not resolved_subject:
                raise NoSubjectConfiguredError(
                    f"Endpoint {endpoint.name!r} has no stream subject configured"
                )

        with tracer.start_as_current_span("delivery.publish") as span:
            span.set_attribute("delivery.endpoint", endpoint.name)
            span.set_attribute("delivery.mode", mode.value)

            if mode == TransportMode.QUEUE:
                delivery = await self._deliveries.enqueue(
                    endpoint_id=endpoint.id, payload=payload, source=source
                )
                logger.info("delivery queued", endpoint=endpoint.name, delivery_id=str(delivery.id))
                return PublishResult(accepted=True, mode=mode, delivery_id=delivery.id)

            if mode == TransportMode.STREAM:
                assert resolved_subject is not None
                stream_result = await self._publish_stream(
                    endpoint, resolved_subject, payload, message_id, raise_errors=True
                )
                return PublishResult(accepted=True, mode=mode, stream_result=stream_result)

            assert mode == TransportMode.BOTH and resolved_subject is not None
            delivery_id: UUID | None = None
            queue_error: str | None = None
            try:
                delivery = await self._deliveries.enqueue(
                    endpoint_id=endpoint.id, payload=payload, source=source
                )
                delivery_id = delivery.id
            except Exception as exc:
                logger.exception("queue enqueue failed", endpoint=endpoint.name)
                queue_error = str(exc)
            stream_result = await self._publish_stream(
                endpoint, resolved_subject, payload, message_id, raise_errors=False
            )
            accepted = delivery_id is not None or stream_result.success
            span.set_attribute("delivery.accepted", accepted)
            return PublishResult(
                accepted=accepted,
                mode=mode,
                delivery_id=delivery_id,
                stream_result=stream_result,
                queue_error=queue_error,
            )

    async def _publish_stream(
        self,
        endpoint: Endpoint,
        subject: str,
        payload: Any,
        message_id: str | None,
        *,
        raise_errors: bool,
    ) -> StreamPublishResult:
        started = time.monotonic()
        try:
            try:
                pool, lease = await asyncio.wait_for(
                    self._lease(endpoint), timeout=endpoint.timeout_seconds
                )
            except asyncio.TimeoutError as exc:
                raise PoolExhaustedError(
                    f"No live NATS connection for {endpoint.stream_config!r} "
                    f"within {endpoint.timeout_ms} ms"
                ) from exc
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            await self._record(endpoint, subject, payload, message_id, started, error=error)
            if not isinstance(
                exc, (PoolExhaustedError, InvalidConfigurationError, StreamConfigNotFoundError)
            ):
                logger.exception("stream pool unavailable", endpoint=endpoint.name)
            if raise_errors:
                raise
            return StreamPublishResult(
                success=False, subject=subject, latency_ms=_elapsed_ms(started), error=error
            )

        stream_name = pool.config.stream_name
        remaining = max(endpoint.timeout_seconds - (time.monotonic() - started), 0.001)
        headers = {MESSAGE_ID_HEADER: message_id} if message_id else None
        try:
            ack = await asyncio.wait_for(
                lease.connection.publish(
                    subject,
                    encode_payload(payload),
                    stream=stream_name,
                    timeout=remaining,
                    headers=headers,
                ),
                timeout=remaining,
            )
        except Exception as exc:
            if not lease.connection.is_connected:
                pool.mark_dead(lease)
            if isinstance(exc, asyncio.TimeoutError):
                error = f"timeout after {endpoint.timeout_ms} ms"
            else:
                error = str(exc) or type(exc).__name__
            await self._record(
                endpoint, subject, payload, message_id, started, error=error, stream_name=stream_name
            )
            logger.warning(
                "stream publish failed", endpoint=endpoint.name, subject=subject, error=error
            )
            if raise_errors:
                raise StreamPublishError(error) from exc
            return StreamPublishResult(
                success=False,
                subject=subject,
                stream=stream_name,
                latency_ms=_elapsed_ms(started),
                error=error,
            )
        finally:
            pool.release(lease)

        latency_ms = _elapsed_ms(started)
        await self._record(
            endpoint,
            subject,
            payload,
            message_id,
            started,
            stream_name=ack.stream,
            sequence=ack.seq,
        )
        logger.info(
            "stream published",
            endpoint=endpoint.name,
            subject=subject,
            stream=ack.stream,
            sequence=ack.seq,
            duplicate=bool(ack.duplicate),
            latency_ms=latency_ms,
        )
        return StreamPublishResult(
            success=True,
            subject=subject,
            stream=ack.stream,
            sequence=ack.seq,
            duplicate=bool(ack.duplicate),
            latency_ms=latency_ms,
        )

    async def _lease(self, endpoint: Endpoint) -> tuple[StreamConnectionPool, PoolLease]:
        pool = await self._pools.get(endpoint.stream_config)
        await pool.wait_ready()
        return pool, pool.acquire()

    async def _record(
        self,
        endpoint: Endpoint,
        subject: str,
        payload: Any,
        message_id: str | None,
        started: float,
        *,
        error: str | None = None,
        stream_name: str | None = None,
        sequence: int | None = None,
    ) -> None:
        try:
            await self._records.record(
                endpoint_id=endpoint.id,
                subject=subject,
                payload=payload,
                success=error is None,
                latency_ms=_elapsed_ms(started),
                error=error,
                stream_name=stream_name,
                stream_sequence=sequence,
                message_id=message_id,
            )
        except Exception:
            logger.exception("publish record write failed", endpoint=endpoint.name, subject=subject)

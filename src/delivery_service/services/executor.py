"""Outbound HTTP execution of queued deliveries."""
from __future__ import annotations

import asyncio
import hmac
import json
import time
from datetime import datetime, timezone
from hashlib import sha256
from typing import Any
from urllib.parse import urlparse
from uuid import UUID

import structlog
from aiohttp import ClientError, ClientSession, ClientTimeout

from delivery_service.domain.models import DeliveryAttempt, Endpoint, Outcome
from delivery_service.otel import get_tracer
from delivery_service.repositories.deliveries import DeliveryAttemptRepository
from delivery_service.repositories.endpoints import EndpointRepository
from delivery_service.services.state_machine import BackoffPolicy, next_transition

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

SIGNING_SECRET_NAME = "signing_secret"
DELIVERY_ID_HEADER = "X-Webhook-Delivery-Id"
SIGNATURE_HEADER = "X-Webhook-Signature"
RESPONSE_BODY_LIMIT = 2000


def _signature(secret: str, body_bytes: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body_bytes, sha256).hexdigest()
    return f"sha256={digest}"


def encode_payload(payload: Any) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _config_error(endpoint: Endpoint) -> str | None:
    parsed = urlparse(endpoint.url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return f"malformed endpoint URL: {endpoint.url!r}"
    if endpoint.timeout_ms <= 0:
        return f"invalid timeout_ms: {endpoint.timeout_ms}"
    return None


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class TransportExecutor:
    """Performs the HTTP call for a delivery and persists its outcome."""

    def __init__(
        self,
        session: ClientSession,
        deliveries: DeliveryAttemptRepository,
        endpoints: EndpointRepository,
        *,
        max_retry_delay_seconds: float = 3600.0,
    ):
        self._session = session
        self._deliveries = deliveries
        self._endpoints = endpoints
        self._max_retry_delay = max_retry_delay_seconds

    async def execute(
        self,
        endpoint: Endpoint,
        payload: Any,
        *,
        delivery_id: UUID | None = None,
        signing_secret: str | None = None,
    ) -> Outcome:
        """Send *payload* to *endpoint* and classify the result.

        Timeouts, connection errors and non-2xx responses are retryable. A
        disabled endpoint or malformed configuration fails without retry.
        """
        if not endpoint.enabled:
            return Outcome(success=False, retryable=False, error="endpoint is disabled")
        config_error = _config_error(endpoint)
        if config_error is not None:
            return Outcome(success=False, retryable=False, error=config_error)

        body_bytes = encode_payload(payload)
        headers = {"Content-Type": "application/json", **endpoint.headers}
        if delivery_id is not None:
            headers[DELIVERY_ID_HEADER] = str(delivery_id)
        if signing_secret:
            headers[SIGNATURE_HEADER] = _signature(signing_secret, body_bytes)

        started = time.monotonic()
        with tracer.start_as_current_span("delivery.http") as span:
            span.set_attribute("http.method", endpoint.method.value)
            span.set_attribute("http.url", endpoint.url)
            try:
                async with self._session.request(
                    endpoint.method.value,
                    endpoint.url,
                    data=body_bytes if endpoint.method.value != "GET" else None,
                    headers=headers,
                    timeout=ClientTimeout(total=endpoint.timeout_seconds),
                ) as resp:
                    text = await resp.text(errors="replace")
                    latency_ms = _elapsed_ms(started)
                    span.set_attribute("http.status_code", resp.status)
            except asyncio.TimeoutError:
                return Outcome(
                    success=False,
                    retryable=True,
                    latency_ms=_elapsed_ms(started),
                    error=f"timeout after {endpoint.timeout_ms} ms",
                )
            except ClientError as exc:
                return Outcome(
                    success=False,
                    retryable=True,
                    latency_ms=_elapsed_ms(started),
                    error=f"{type(exc).__name__}: {exc}",
                )

        body = text[:RESPONSE_BODY_LIMIT]
        if 200 <= resp.status < 300:
            return Outcome(
                success=True, response_code=resp.status, latency_ms=latency_ms, response_body=body
            )
        return Outcome(
            success=False,
            retryable=True,
            response_code=resp.status,
            latency_ms=latency_ms,
            response_body=body,
            error=f"HTTP {resp.status}: {body}",
        )

    async def process(
        self, attempt: DeliveryAttempt, endpoint: Endpoint, *, now: datetime | None = None
    ) -> bool:
        """Execute a claimed attempt, apply the state machine and persist the outcome.

        Returns False when the claim was lost before the outcome was written.
        """
        secret = await self._endpoints.get_secret(endpoint.id, SIGNING_SECRET_NAME)
        outcome = await self.execute(
            endpoint, attempt.payload, delivery_id=attempt.id, signing_secret=secret
        )
        now = now or datetime.now(timezone.utc)
        policy = BackoffPolicy.for_endpoint(endpoint, self._max_retry_delay)
        transition = next_transition(attempt, endpoint, outcome, now, policy)
        written = await self._deliveries.record_outcome(
            attempt.id,
            claim_id=attempt.claim_id,
            transition=transition,
            outcome=outcome,
            now=now,
        )
        log = logger.bind(
            delivery_id=str(attempt.id),
            endpoint=endpoint.name,
            retry_count=attempt.retry_count,
            status=transition.status.value,
            response_code=outcome.response_code,
            latency_ms=outcome.latency_ms,
        )
        if not written:
            log.warning("delivery outcome discarded: claim lost")
        elif outcome.success:
            log.info("delivery succeeded")
        else:
            log.warning("delivery attempt failed", error=outcome.error)
        return written

"""Claims due delivery attempts and hands them to the transport executor."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import List

import structlog

from delivery_service.core.exceptions import EndpointNotFoundError
from delivery_service.domain.models import DeliveryAttempt, Endpoint
from delivery_service.repositories.deliveries import DeliveryAttemptRepository
from delivery_service.repositories.endpoints import EndpointRepository
from delivery_service.services.executor import TransportExecutor

logger = structlog.get_logger(__name__)


class RetryScheduler:
    """Claim/process work loop over the delivery queue.

    Claims go through ``FOR UPDATE SKIP LOCKED`` so any number of schedulers,
    in one process or many, never execute the same attempt twice.
    """

    def __init__(
        self,
        deliveries: DeliveryAttemptRepository,
        endpoints: EndpointRepository,
        executor: TransportExecutor,
        *,
        batch_size: int = 100,
        max_concurrency: int = 10,
    ):
        self._deliveries = deliveries
        self._endpoints = endpoints
        self._executor = executor
        self._batch_size = batch_size
        self._max_concurrency = max_concurrency

    async def process_due_retries(self, now: datetime | None = None) -> int:
        """Fail retries without budget, then claim and execute due retries.

        Returns the number of attempts processed.
        """
        now = now or datetime.now(timezone.utc)
        exhausted = await self._deliveries.fail_exhausted_retries(now)
        if exhausted:
            logger.info("retries exhausted", count=exhausted)
        claimed = await self._deliveries.claim_due_retries(now, limit=self._batch_size)
        return await self._run(claimed)

    async def dispatch_pending(self, now: datetime | None = None) -> int:
        """Claim and execute fresh pending attempts. Returns the number processed."""
        now = now or datetime.now(timezone.utc)
        claimed = await self._deliveries.claim_due_pending(now, limit=self._batch_size)
        return await self._run(claimed)

    async def run_once(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        return await self.dispatch_pending(now) + await self.process_due_retries(now)

    async def _run(self, attempts: List[DeliveryAttempt]) -> int:
        if not attempts:
            return 0
        endpoints: dict = {}
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _one(attempt: DeliveryAttempt) -> bool:
            async with semaphore:
                endpoint = await self._endpoint(endpoints, attempt)
                if endpoint is None:
                    return False
                try:
                    return await self._executor.process(attempt, endpoint)
                except Exception:
                    logger.exception("delivery processing failed", delivery_id=str(attempt.id))
                    return False

        results = await asyncio.gather(*(_one(a) for a in attempts))
        processed = sum(1 for ok in results if ok)
        logger.debug("delivery batch processed", claimed=len(attempts), processed=processed)
        return processed

    async def _endpoint(
        self, cache: dict, attempt: DeliveryAttempt
    ) -> Endpoint | None:
        if attempt.endpoint_id not in cache:
            try:
                cache[attempt.endpoint_id] = await self._endpoints.get(attempt.endpoint_id)
            except EndpointNotFoundError:
                logger.warning(
                    "delivery endpoint vanished",
                    delivery_id=str(attempt.id),
                    endpoint_id=str(attempt.endpoint_id),
                )
                cache[attempt.endpoint_id] = None
        return cache[attempt.endpoint_id]

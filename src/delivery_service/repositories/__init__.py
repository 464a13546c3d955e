"""Repository layer built on asyncpg."""
from delivery_service.repositories.deliveries import DeliveryAttemptRepository
from delivery_service.repositories.endpoints import EndpointRepository
from delivery_service.repositories.monitoring import MonitoringRepository
from delivery_service.repositories.publish_records import PublishRecordRepository
from delivery_service.repositories.stream_configs import StreamConfigRepository

__all__ = [
    "DeliveryAttemptRepository",
    "EndpointRepository",
    "MonitoringRepository",
    "PublishRecordRepository",
    "StreamConfigRepository",
]

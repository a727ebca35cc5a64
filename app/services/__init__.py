"""Services package initialization."""
from services.event_bus import EventBus, Subscription
from services.minio_client import MinIOClient

__all__ = ["EventBus", "Subscription", "MinIOClient"]

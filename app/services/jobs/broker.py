"""
Dramatiq Redis Broker Configuration
Queue for scheduled file sync passes
"""
import logging
import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import (
    AgeLimit, Callbacks, Pipelines,
    Retries, ShutdownNotifications
)

from app.core.config import settings

logger = logging.getLogger(__name__)

if not settings.redis_url:
    logger.warning("⚠️  REDIS_URL not set - background jobs run against an in-memory stub broker")
    broker = StubBroker()
else:
    broker = RedisBroker(
        url=settings.redis_url,
        middleware=[
            AgeLimit(),
            # Sync passes are not retried; the next scheduled pass resumes from the cursor
            Retries(max_retries=0),
            Callbacks(),
            Pipelines(),
            ShutdownNotifications(),
        ]
    )
    logger.info(f"✅ Redis broker initialized: {settings.redis_url[:20]}...")

dramatiq.set_broker(broker)

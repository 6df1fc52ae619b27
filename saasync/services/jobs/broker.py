"""
Dramatiq Broker Configuration
Carries worker invocations for sync jobs

Without REDIS_URL a StubBroker is installed: messages are accepted but only
delivered when a StubBroker worker is joined (tests, local development).
"""
import logging

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import (
    AgeLimit, Callbacks, Pipelines,
    Retries, ShutdownNotifications
)

from saasync.core.config import get_settings

logger = logging.getLogger(__name__)


def create_broker(redis_url=None):
    if not redis_url:
        logger.warning("⚠️  REDIS_URL not set - worker runs will not be dispatched in the background")
        return StubBroker()

    # Explicit middleware (TimeLimit excluded: the worker enforces its own budget)
    redis_broker = RedisBroker(
        url=redis_url,
        middleware=[
            AgeLimit(),
            Retries(max_retries=3),
            Callbacks(),
            Pipelines(),
            ShutdownNotifications(),
        ]
    )
    logger.info(f"✅ Redis broker initialized: {redis_url[:20]}...")
    return redis_broker


broker = create_broker(get_settings().redis_url)
dramatiq.set_broker(broker)

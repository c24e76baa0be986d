"""Assembly of the Prometheus registry served on the metrics path."""

import logging

from prometheus_client import (
    CollectorRegistry,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
)
from prometheus_client.registry import Collector

logger = logging.getLogger(__name__)


def assemble_registry(redis_only_metrics: bool) -> CollectorRegistry:
    """Create the registry, with process and runtime collectors unless disabled.

    Args:
        redis_only_metrics: Only export metrics gathered from Redis

    Returns:
        CollectorRegistry: A fresh registry
    """
    registry = CollectorRegistry()
    if not redis_only_metrics:
        # process metrics like CPU, memory, file descriptor usage etc.
        ProcessCollector(registry=registry)
        # interpreter metrics like GC stats and version info
        PlatformCollector(registry=registry)
        GCCollector(registry=registry)
        logger.debug("Registered process and runtime collectors")
    return registry


def attach_engine(registry: CollectorRegistry, engine: Collector) -> CollectorRegistry:
    """Register the collection engine; the registry is not modified afterwards."""
    registry.register(engine)
    return registry

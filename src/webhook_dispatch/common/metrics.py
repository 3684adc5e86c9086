import time
from functools import wraps
from typing import Callable, Dict, Optional, Union

from loguru import logger
from prometheus_client import REGISTRY, Counter, Gauge, Histogram, start_http_server


class MetricsRegistry:
    def __init__(self, registry=None):
        # Use a provided registry or the default one
        self.registry = registry or REGISTRY

        # Dispatch metrics
        self.dispatch_total = Counter(
            "webhook_dispatch_events_total",
            "Total number of domain events dispatched",
            ["event"],
            registry=self.registry,
        )
        self.registry_errors = Counter(
            "webhook_dispatch_registry_errors",
            "Total number of endpoint registry errors",
            ["operation"],
            registry=self.registry,
        )

        # Delivery metrics
        self.delivery_total = Counter(
            "webhook_dispatch_delivery_total",
            "Total number of successful webhook deliveries",
            ["event"],
            registry=self.registry,
        )
        self.delivery_errors = Counter(
            "webhook_dispatch_delivery_errors",
            "Total number of failed webhook deliveries",
            ["event", "status_code"],
            registry=self.registry,
        )
        self.delivery_latency = Histogram(
            "webhook_dispatch_delivery_seconds",
            "Time spent delivering webhooks",
            ["event"],
            registry=self.registry,
        )

        # Common metrics
        self.up = Gauge(
            "webhook_dispatch_up",
            "Whether the webhook dispatch service is up",
            ["component"],
            registry=self.registry,
        )


# Global metrics registry
metrics = MetricsRegistry()


def start_metrics_server(port: int = 9090, host: str = "127.0.0.1"):
    """Start the Prometheus metrics server."""
    start_http_server(port, host)


def measure_time(
    metric: Histogram, labels: Optional[Union[Dict[str, str], Callable]] = None
) -> Callable:
    """Decorator to measure the execution time of a coroutine.

    ``labels`` is either a fixed dict or a callable receiving the wrapped
    call's arguments and returning one.
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            labels_dict = {}
            if callable(labels):
                try:
                    labels_dict = labels(*args, **kwargs)
                except Exception as e:
                    logger.error(f"Error getting labels from function: {e}")
            elif isinstance(labels, dict):
                labels_dict = labels

            start_time = time.time()
            try:
                return await func(*args, **kwargs)
            finally:
                duration = time.time() - start_time
                try:
                    metric.labels(**labels_dict).observe(duration)
                except Exception as e:
                    logger.error(f"Error recording metric: {e}")

        return wrapper

    return decorator

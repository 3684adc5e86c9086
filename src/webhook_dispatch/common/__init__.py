"""Common utilities and models for the webhook dispatch service."""

from webhook_dispatch.common.config import (
    BaseConfig,
    DeliveryConfig,
    MetricsConfig,
    RegistryType,
    ServiceConfig,
    SignatureScheme,
    SupabaseConfig,
)
from webhook_dispatch.common.matching import matches, select_endpoints
from webhook_dispatch.common.models import (
    PING_EVENT,
    WILDCARD,
    DeliveryEnvelope,
    DeliveryOutcome,
    EndpointCreate,
    EndpointCreated,
    EndpointUpdate,
    EndpointView,
    EventRequest,
    WebhookEndpoint,
    WebhookEvent,
)
from webhook_dispatch.common.registry import (
    EndpointNotFound,
    EndpointRegistry,
    InMemoryEndpointRegistry,
    RegistryError,
    RegistryUnavailable,
    SupabaseEndpointRegistry,
    create_registry,
)
from webhook_dispatch.common.metrics import (
    MetricsRegistry,
    metrics,
    measure_time,
    start_metrics_server,
)

__all__ = [
    # Config
    "BaseConfig",
    "DeliveryConfig",
    "MetricsConfig",
    "RegistryType",
    "ServiceConfig",
    "SignatureScheme",
    "SupabaseConfig",
    # Models
    "PING_EVENT",
    "WILDCARD",
    "DeliveryEnvelope",
    "DeliveryOutcome",
    "EndpointCreate",
    "EndpointCreated",
    "EndpointUpdate",
    "EndpointView",
    "EventRequest",
    "WebhookEndpoint",
    "WebhookEvent",
    # Matching
    "matches",
    "select_endpoints",
    # Registry
    "EndpointNotFound",
    "EndpointRegistry",
    "InMemoryEndpointRegistry",
    "RegistryError",
    "RegistryUnavailable",
    "SupabaseEndpointRegistry",
    "create_registry",
    # Metrics
    "MetricsRegistry",
    "metrics",
    "measure_time",
    "start_metrics_server",
]

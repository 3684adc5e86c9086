from typing import Iterable, List, Union

from webhook_dispatch.common.models import WILDCARD, WebhookEndpoint, WebhookEvent, event_name


def matches(endpoint: WebhookEndpoint, event: Union[WebhookEvent, str]) -> bool:
    """Return True if the endpoint subscribes to the event, directly or via the wildcard."""
    name = event_name(event)
    return WILDCARD in endpoint.events or name in endpoint.events


def select_endpoints(
    endpoints: Iterable[WebhookEndpoint], event: Union[WebhookEvent, str]
) -> List[WebhookEndpoint]:
    return [endpoint for endpoint in endpoints if endpoint.is_active and matches(endpoint, event)]

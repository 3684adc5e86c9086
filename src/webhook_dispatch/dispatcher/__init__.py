"""Event fan-out and webhook delivery."""

from webhook_dispatch.dispatcher.dispatcher import WebhookDispatcher, create_dispatcher
from webhook_dispatch.dispatcher.transport import DeliveryTransport, sign_body

__all__ = [
    "DeliveryTransport",
    "WebhookDispatcher",
    "create_dispatcher",
    "sign_body",
]

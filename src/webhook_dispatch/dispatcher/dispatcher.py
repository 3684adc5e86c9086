import asyncio
from datetime import datetime
from typing import Any, List, Set, Union

from loguru import logger

from webhook_dispatch.common.config import BaseConfig
from webhook_dispatch.common.matching import select_endpoints
from webhook_dispatch.common.metrics import metrics
from webhook_dispatch.common.models import (
    PING_EVENT,
    DeliveryEnvelope,
    DeliveryOutcome,
    WebhookEndpoint,
    WebhookEvent,
    event_name,
    utcnow,
)
from webhook_dispatch.common.registry import EndpointRegistry, create_registry
from webhook_dispatch.dispatcher.transport import DeliveryTransport


class WebhookDispatcher:
    """Fans a domain event out to every endpoint of the tenant that subscribes to it.

    Delivery is best effort: one attempt per matched endpoint, outcomes are
    written back to the registry, and nothing raised along the way reaches the
    code that fired the event.
    """

    def __init__(self, registry: EndpointRegistry, transport: DeliveryTransport):
        self.registry = registry
        self.transport = transport
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, tenant_id: str, event: Union[WebhookEvent, str], data: Any) -> None:
        """Schedule delivery of an event and return without waiting for it."""
        try:
            loop = asyncio.get_running_loop()
            task = loop.create_task(self.run_dispatch(tenant_id, event, data))
        except Exception as e:
            logger.error(f"Could not schedule webhook dispatch for {event_name(event)}: {e}")
            return

        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run_dispatch(
        self, tenant_id: str, event: Union[WebhookEvent, str], data: Any
    ) -> List[DeliveryOutcome]:
        name = event_name(event)
        created_at = utcnow()

        try:
            endpoints = await self.registry.list_active_endpoints(tenant_id)
        except Exception as e:
            metrics.registry_errors.labels(operation="list_active_endpoints").inc()
            logger.error(f"Error in webhook dispatch for tenant {tenant_id}: {e}")
            return []

        try:
            matched = select_endpoints(endpoints, name)
            if not matched:
                logger.debug(f"No webhook endpoints of tenant {tenant_id} subscribe to {name}")
                return []

            metrics.dispatch_total.labels(event=name).inc()
        except Exception as e:
            logger.error(f"Error matching webhook endpoints for tenant {tenant_id}: {e}")
            return []

        logger.debug(f"Dispatching {name} to {len(matched)} endpoint(s) of tenant {tenant_id}")

        return await asyncio.gather(
            *(self._deliver(endpoint, name, created_at, data) for endpoint in matched)
        )

    async def _deliver(
        self, endpoint: WebhookEndpoint, name: str, created_at: datetime, data: Any
    ) -> DeliveryOutcome:
        envelope = DeliveryEnvelope(event=name, created_at=created_at, data=data)
        try:
            outcome = await self.transport.deliver(endpoint, envelope)
        except Exception as e:
            logger.error(f"Webhook dispatch error for {endpoint.url}: {e}")
            outcome = DeliveryOutcome(
                endpoint_id=endpoint.id,
                delivery_id=envelope.delivery_id,
                success=False,
                error=str(e),
            )

        try:
            if outcome.success:
                await self.registry.record_success(endpoint.id, utcnow())
            else:
                await self.registry.record_failure(endpoint.id)
        except Exception as e:
            operation = "record_success" if outcome.success else "record_failure"
            metrics.registry_errors.labels(operation=operation).inc()
            logger.error(f"Could not record delivery outcome for endpoint {endpoint.id}: {e}")

        return outcome

    async def ping(self, tenant_id: str, endpoint_id: str) -> DeliveryOutcome:
        """Send a test delivery to one endpoint without touching its delivery stats."""
        endpoint = await self.registry.get_endpoint(tenant_id, endpoint_id)
        envelope = DeliveryEnvelope(
            event=PING_EVENT,
            created_at=utcnow(),
            data={"endpoint_id": endpoint.id},
        )
        return await self.transport.deliver(endpoint, envelope)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} pending webhook dispatch(es)")
        await self.wait_idle()


def create_dispatcher(config: BaseConfig) -> WebhookDispatcher:
    config.validate_registry_config()
    registry = create_registry(
        registry_type=config.registry_type,
        supabase_config=config.supabase_config,
    )
    transport = DeliveryTransport(
        timeout=config.delivery.timeout,
        signature_scheme=config.delivery.signature_scheme,
    )
    return WebhookDispatcher(registry=registry, transport=transport)

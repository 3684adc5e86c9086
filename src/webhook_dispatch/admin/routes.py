from contextlib import contextmanager
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from loguru import logger

from webhook_dispatch.common.models import (
    DeliveryOutcome,
    EndpointCreate,
    EndpointCreated,
    EndpointUpdate,
    EndpointView,
    EventRequest,
)
from webhook_dispatch.common.registry import EndpointNotFound, RegistryUnavailable
from webhook_dispatch.dispatcher.dispatcher import WebhookDispatcher


router = APIRouter()


def get_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.dispatcher


@contextmanager
def registry_errors():
    try:
        yield
    except EndpointNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RegistryUnavailable as e:
        logger.error(f"Endpoint registry unavailable: {e}")
        raise HTTPException(status_code=503, detail="Endpoint registry unavailable")


@router.get("/health")
async def health_check():
    return {"status": "ok"}


@router.post(
    "/tenants/{tenant_id}/endpoints",
    status_code=201,
    response_model=EndpointCreated,
)
async def create_endpoint(
    tenant_id: str,
    data: EndpointCreate,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    with registry_errors():
        endpoint = await dispatcher.registry.create_endpoint(tenant_id, data)
    # The secret is only ever returned here.
    return EndpointCreated.from_endpoint(endpoint)


@router.get("/tenants/{tenant_id}/endpoints", response_model=List[EndpointView])
async def list_endpoints(
    tenant_id: str,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    with registry_errors():
        endpoints = await dispatcher.registry.list_endpoints(tenant_id)
    return [EndpointView.from_endpoint(endpoint) for endpoint in endpoints]


@router.patch(
    "/tenants/{tenant_id}/endpoints/{endpoint_id}",
    response_model=EndpointView,
)
async def update_endpoint(
    tenant_id: str,
    endpoint_id: str,
    data: EndpointUpdate,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    with registry_errors():
        endpoint = await dispatcher.registry.set_active(tenant_id, endpoint_id, data.is_active)
    state = "activated" if endpoint.is_active else "deactivated"
    logger.info(f"Webhook endpoint {endpoint_id} of tenant {tenant_id} {state}")
    return EndpointView.from_endpoint(endpoint)


@router.delete("/tenants/{tenant_id}/endpoints/{endpoint_id}", status_code=204)
async def delete_endpoint(
    tenant_id: str,
    endpoint_id: str,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    with registry_errors():
        await dispatcher.registry.delete_endpoint(tenant_id, endpoint_id)
    return Response(status_code=204)


@router.post(
    "/tenants/{tenant_id}/endpoints/{endpoint_id}/ping",
    response_model=DeliveryOutcome,
)
async def ping_endpoint(
    tenant_id: str,
    endpoint_id: str,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    with registry_errors():
        return await dispatcher.ping(tenant_id, endpoint_id)


@router.post("/tenants/{tenant_id}/events", status_code=202)
async def publish_event(
    tenant_id: str,
    payload: EventRequest,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    dispatcher.dispatch(tenant_id, payload.event, payload.data)
    logger.info(f"Event {payload.event.value} for tenant {tenant_id} accepted for dispatch")
    return {"status": "accepted"}

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import aiohttp
from loguru import logger

from webhook_dispatch.common.config import RegistryType, SupabaseConfig
from webhook_dispatch.common.models import (
    EndpointCreate,
    WebhookEndpoint,
    format_timestamp,
    generate_endpoint_id,
    generate_webhook_secret,
    utcnow,
)


class RegistryError(Exception):
    pass


class RegistryUnavailable(RegistryError):
    """The endpoint store could not be reached or rejected the request."""


class EndpointNotFound(RegistryError):
    def __init__(self, tenant_id: str, endpoint_id: str):
        super().__init__(f"Webhook endpoint {endpoint_id} not found for tenant {tenant_id}")
        self.tenant_id = tenant_id
        self.endpoint_id = endpoint_id


class EndpointRegistry(ABC):
    @abstractmethod
    async def list_active_endpoints(self, tenant_id: str) -> List[WebhookEndpoint]:
        pass

    @abstractmethod
    async def record_success(self, endpoint_id: str, delivered_at: datetime) -> None:
        pass

    @abstractmethod
    async def record_failure(self, endpoint_id: str) -> None:
        pass

    @abstractmethod
    async def create_endpoint(self, tenant_id: str, data: EndpointCreate) -> WebhookEndpoint:
        pass

    @abstractmethod
    async def list_endpoints(self, tenant_id: str) -> List[WebhookEndpoint]:
        pass

    @abstractmethod
    async def get_endpoint(self, tenant_id: str, endpoint_id: str) -> WebhookEndpoint:
        pass

    @abstractmethod
    async def set_active(
        self, tenant_id: str, endpoint_id: str, is_active: bool
    ) -> WebhookEndpoint:
        pass

    @abstractmethod
    async def delete_endpoint(self, tenant_id: str, endpoint_id: str) -> None:
        pass


class InMemoryEndpointRegistry(EndpointRegistry):
    def __init__(self, endpoints: Optional[Iterable[WebhookEndpoint]] = None):
        self._endpoints: Dict[str, WebhookEndpoint] = {}
        self._lock = asyncio.Lock()
        for endpoint in endpoints or []:
            self._endpoints[endpoint.id] = endpoint

    def _owned(self, tenant_id: str, endpoint_id: str) -> WebhookEndpoint:
        endpoint = self._endpoints.get(endpoint_id)
        if endpoint is None or endpoint.tenant_id != tenant_id:
            raise EndpointNotFound(tenant_id, endpoint_id)
        return endpoint

    async def list_active_endpoints(self, tenant_id: str) -> List[WebhookEndpoint]:
        return [
            endpoint
            for endpoint in self._endpoints.values()
            if endpoint.tenant_id == tenant_id and endpoint.is_active
        ]

    async def record_success(self, endpoint_id: str, delivered_at: datetime) -> None:
        async with self._lock:
            endpoint = self._endpoints.get(endpoint_id)
            if endpoint is None:
                logger.debug(f"Endpoint {endpoint_id} no longer exists, skipping success update")
                return
            self._endpoints[endpoint_id] = endpoint.model_copy(
                update={"last_triggered_at": delivered_at}
            )

    async def record_failure(self, endpoint_id: str) -> None:
        async with self._lock:
            endpoint = self._endpoints.get(endpoint_id)
            if endpoint is None:
                logger.debug(f"Endpoint {endpoint_id} no longer exists, skipping failure update")
                return
            self._endpoints[endpoint_id] = endpoint.model_copy(
                update={"failure_count": endpoint.failure_count + 1}
            )

    async def create_endpoint(self, tenant_id: str, data: EndpointCreate) -> WebhookEndpoint:
        endpoint = WebhookEndpoint(
            id=generate_endpoint_id(),
            tenant_id=tenant_id,
            url=data.url,
            events=list(data.events),
            secret=generate_webhook_secret(),
            is_active=data.is_active,
        )
        async with self._lock:
            self._endpoints[endpoint.id] = endpoint
        logger.info(f"Registered webhook endpoint {endpoint.id} for tenant {tenant_id}")
        return endpoint

    async def list_endpoints(self, tenant_id: str) -> List[WebhookEndpoint]:
        endpoints = [e for e in self._endpoints.values() if e.tenant_id == tenant_id]
        return sorted(endpoints, key=lambda e: e.created_at, reverse=True)

    async def get_endpoint(self, tenant_id: str, endpoint_id: str) -> WebhookEndpoint:
        return self._owned(tenant_id, endpoint_id)

    async def set_active(
        self, tenant_id: str, endpoint_id: str, is_active: bool
    ) -> WebhookEndpoint:
        async with self._lock:
            endpoint = self._owned(tenant_id, endpoint_id).model_copy(
                update={"is_active": is_active}
            )
            self._endpoints[endpoint_id] = endpoint
        return endpoint

    async def delete_endpoint(self, tenant_id: str, endpoint_id: str) -> None:
        async with self._lock:
            self._owned(tenant_id, endpoint_id)
            del self._endpoints[endpoint_id]
        logger.info(f"Deleted webhook endpoint {endpoint_id} for tenant {tenant_id}")


def _row_to_endpoint(row: Dict[str, Any]) -> WebhookEndpoint:
    return WebhookEndpoint(
        id=str(row["id"]),
        tenant_id=str(row["organization_id"]),
        url=row["url"],
        events=list(row.get("events") or []),
        secret=row.get("secret") or "",
        is_active=row.get("is_active", True),
        last_triggered_at=row.get("last_triggered_at"),
        failure_count=row.get("failure_count") or 0,
        created_at=row.get("created_at") or utcnow(),
    )


class SupabaseEndpointRegistry(EndpointRegistry):
    """Endpoint registry backed by a Supabase (PostgREST) ``webhooks`` table.

    Tenant isolation is enforced by the database's row-level policies; the
    ``organization_id`` filters here only narrow the query.
    """

    def __init__(self, config: SupabaseConfig):
        self.base_url = f"{config.url.rstrip('/')}/rest/v1"
        self.table = config.table
        self.failure_rpc = config.failure_rpc
        self.timeout = config.timeout
        self.headers = {
            "apikey": config.service_key,
            "Authorization": f"Bearer {config.service_key}",
            "Content-Type": "application/json",
        }

        logger.info(f"Initialized Supabase endpoint registry for {self.base_url}/{self.table}")

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
        return_rows: bool = False,
    ) -> Any:
        headers = self.headers.copy()
        if return_rows:
            headers["Prefer"] = "return=representation"

        url = f"{self.base_url}/{path}"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    url,
                    params=params,
                    json=payload,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    body = await response.text()
                    if response.status >= 400:
                        raise RegistryUnavailable(
                            f"{method} {path} failed (status={response.status}): {body}"
                        )
                    return json.loads(body) if body else None
        except RegistryUnavailable:
            raise
        except Exception as e:
            raise RegistryUnavailable(f"{method} {path} failed: {e}") from e

    def _scope(self, tenant_id: str, endpoint_id: str) -> Dict[str, str]:
        return {"id": f"eq.{endpoint_id}", "organization_id": f"eq.{tenant_id}"}

    async def list_active_endpoints(self, tenant_id: str) -> List[WebhookEndpoint]:
        rows = await self._request(
            "GET",
            self.table,
            params={
                "select": "*",
                "organization_id": f"eq.{tenant_id}",
                "is_active": "eq.true",
            },
        )
        return [_row_to_endpoint(row) for row in rows or []]

    async def record_success(self, endpoint_id: str, delivered_at: datetime) -> None:
        await self._request(
            "PATCH",
            self.table,
            params={"id": f"eq.{endpoint_id}"},
            payload={"last_triggered_at": format_timestamp(delivered_at)},
        )

    async def record_failure(self, endpoint_id: str) -> None:
        # The RPC increments in a single UPDATE, so concurrent failures do not race.
        await self._request(
            "POST",
            f"rpc/{self.failure_rpc}",
            payload={"webhook_id": endpoint_id},
        )

    async def create_endpoint(self, tenant_id: str, data: EndpointCreate) -> WebhookEndpoint:
        rows = await self._request(
            "POST",
            self.table,
            payload={
                "organization_id": tenant_id,
                "url": data.url,
                "events": list(data.events),
                "secret": generate_webhook_secret(),
                "is_active": data.is_active,
            },
            return_rows=True,
        )
        if not rows:
            raise RegistryUnavailable(f"Insert into {self.table} returned no rows")
        endpoint = _row_to_endpoint(rows[0])
        logger.info(f"Registered webhook endpoint {endpoint.id} for tenant {tenant_id}")
        return endpoint

    async def list_endpoints(self, tenant_id: str) -> List[WebhookEndpoint]:
        rows = await self._request(
            "GET",
            self.table,
            params={
                "select": "*",
                "organization_id": f"eq.{tenant_id}",
                "order": "created_at.desc",
            },
        )
        return [_row_to_endpoint(row) for row in rows or []]

    async def get_endpoint(self, tenant_id: str, endpoint_id: str) -> WebhookEndpoint:
        params = self._scope(tenant_id, endpoint_id)
        params["select"] = "*"
        rows = await self._request("GET", self.table, params=params)
        if not rows:
            raise EndpointNotFound(tenant_id, endpoint_id)
        return _row_to_endpoint(rows[0])

    async def set_active(
        self, tenant_id: str, endpoint_id: str, is_active: bool
    ) -> WebhookEndpoint:
        rows = await self._request(
            "PATCH",
            self.table,
            params=self._scope(tenant_id, endpoint_id),
            payload={"is_active": is_active},
            return_rows=True,
        )
        if not rows:
            raise EndpointNotFound(tenant_id, endpoint_id)
        return _row_to_endpoint(rows[0])

    async def delete_endpoint(self, tenant_id: str, endpoint_id: str) -> None:
        rows = await self._request(
            "DELETE",
            self.table,
            params=self._scope(tenant_id, endpoint_id),
            return_rows=True,
        )
        if not rows:
            raise EndpointNotFound(tenant_id, endpoint_id)
        logger.info(f"Deleted webhook endpoint {endpoint_id} for tenant {tenant_id}")


def create_registry(
    registry_type: RegistryType,
    supabase_config: Optional[SupabaseConfig] = None,
) -> EndpointRegistry:
    if registry_type == RegistryType.MEMORY:
        return InMemoryEndpointRegistry()
    elif registry_type == RegistryType.SUPABASE:
        if not supabase_config:
            raise ValueError("Supabase registry selected but no Supabase configuration provided")
        return SupabaseEndpointRegistry(supabase_config)
    else:
        raise ValueError(f"Unsupported registry type: {registry_type}")

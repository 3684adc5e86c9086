from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from webhook_dispatch.admin.server import create_app
from webhook_dispatch.common.config import (
    DeliveryConfig,
    MetricsConfig,
    RegistryType,
    ServiceConfig,
    SupabaseConfig,
)
from webhook_dispatch.common.models import WebhookEndpoint
from webhook_dispatch.common.registry import InMemoryEndpointRegistry
from webhook_dispatch.dispatcher.dispatcher import WebhookDispatcher
from webhook_dispatch.dispatcher.transport import DeliveryTransport


TENANT_ID = "org-1"
OTHER_TENANT_ID = "org-2"


class MockEndpointRegistry(InMemoryEndpointRegistry):
    """In-memory registry whose delivery bookkeeping can be inspected and overridden."""

    def __init__(self, endpoints=None):
        super().__init__(endpoints)

        # Create mocks that we can use to override behavior in tests
        self._list_active_mock = MagicMock(side_effect=super().list_active_endpoints)
        self._record_success_mock = MagicMock(side_effect=super().record_success)
        self._record_failure_mock = MagicMock(side_effect=super().record_failure)

    async def list_active_endpoints(self, tenant_id):
        return await self._list_active_mock(tenant_id)

    async def record_success(self, endpoint_id, delivered_at):
        return await self._record_success_mock(endpoint_id, delivered_at)

    async def record_failure(self, endpoint_id):
        return await self._record_failure_mock(endpoint_id)

    def stored(self, endpoint_id):
        """Return the current stored copy of an endpoint."""
        return self._endpoints[endpoint_id]


def make_endpoint(endpoint_id, events, tenant_id=TENANT_ID, **overrides):
    values = {
        "id": endpoint_id,
        "tenant_id": tenant_id,
        "url": f"https://hooks.example.com/{endpoint_id}",
        "events": events,
        "secret": f"whsec_{endpoint_id}",
        "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return WebhookEndpoint(**values)


def make_response(status=200, body="OK"):
    """Build an async context manager standing in for an aiohttp response."""
    response = MagicMock()
    response.status = status
    response.text = AsyncMock(return_value=body)

    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=response)
    cm.__aexit__ = AsyncMock(return_value=None)
    return cm


@pytest.fixture
def tenant_id():
    return TENANT_ID


@pytest.fixture
def endpoint_factory():
    return make_endpoint


@pytest.fixture
def response_factory():
    return make_response


@pytest.fixture
def sample_endpoints():
    """A subscribes to team_created, B to everything, C is inactive, D belongs to another tenant."""
    return [
        make_endpoint("endpoint-a", ["team_created"]),
        make_endpoint("endpoint-b", ["*"]),
        make_endpoint("endpoint-c", ["*"], is_active=False),
        make_endpoint("endpoint-d", ["*"], tenant_id=OTHER_TENANT_ID),
    ]


@pytest.fixture
def mock_registry(sample_endpoints):
    """Fixture that provides a mock endpoint registry seeded with sample endpoints."""
    return MockEndpointRegistry(sample_endpoints)


@pytest.fixture
def mock_http_session():
    """Patch aiohttp.ClientSession and yield the session object used inside ``async with``."""
    with patch("aiohttp.ClientSession") as mock_session_class:
        session = MagicMock()
        session.__aenter__ = AsyncMock(return_value=session)
        session.__aexit__ = AsyncMock(return_value=None)
        session.post.return_value = make_response(200)
        session.request.return_value = make_response(200, "[]")
        mock_session_class.return_value = session
        yield session


@pytest.fixture
def transport():
    return DeliveryTransport(timeout=5)


@pytest.fixture
def dispatcher(mock_registry, transport):
    return WebhookDispatcher(registry=mock_registry, transport=transport)


@pytest.fixture
def supabase_config():
    return SupabaseConfig(
        url="https://project.supabase.co/",
        service_key="service-role-key",
    )


@pytest.fixture
def service_config():
    """Fixture that provides a sample service configuration."""
    return ServiceConfig(
        host="0.0.0.0",
        port=8000,
        log_level="INFO",
        registry_type=RegistryType.MEMORY,
        delivery=DeliveryConfig(timeout=5),
        metrics=MetricsConfig(enabled=False),
    )


@pytest.fixture
def admin_app(service_config, dispatcher):
    """Fixture that provides a configured admin FastAPI app."""
    return create_app(service_config, dispatcher=dispatcher)


@pytest.fixture
def admin_client(admin_app):
    """Fixture that provides a test client for the admin API."""
    return TestClient(admin_app)

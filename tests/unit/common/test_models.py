import json
import re
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from webhook_dispatch.common.models import (
    DeliveryEnvelope,
    EndpointCreate,
    EndpointCreated,
    EndpointView,
    EventRequest,
    WebhookEvent,
    format_timestamp,
    generate_webhook_secret,
)


class TestWebhookEvent:

    def test_event_names(self):
        """Test that the event enumeration matches the domain actions."""
        assert {event.value for event in WebhookEvent} == {
            "user_invited",
            "user_removed",
            "role_changed",
            "team_created",
            "team_updated",
            "team_deleted",
            "member_added_to_team",
            "member_removed_from_team",
            "organization_created",
        }


class TestHelpers:

    def test_format_timestamp(self):
        """Test that timestamps render as UTC with milliseconds and a Z suffix."""
        value = datetime(2026, 10, 19, 12, 30, 5, 123456, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2026-10-19T12:30:05.123Z"

    def test_format_timestamp_converts_to_utc(self):
        """Test that offset timestamps are converted to UTC."""
        value = datetime(2026, 10, 19, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(value) == "2026-10-19T12:00:00.000Z"

    def test_format_timestamp_naive_is_utc(self):
        """Test that naive timestamps are treated as UTC."""
        assert format_timestamp(datetime(2026, 1, 1)) == "2026-01-01T00:00:00.000Z"

    def test_generate_webhook_secret(self):
        """Test that secrets carry the whsec_ prefix and are unique."""
        secret = generate_webhook_secret()
        assert re.fullmatch(r"whsec_[0-9a-f]{48}", secret)
        assert secret != generate_webhook_secret()


class TestEndpointCreate:

    def test_defaults_to_wildcard(self):
        """Test that events default to all events."""
        data = EndpointCreate(url="https://api.example.com/webhooks")
        assert data.events == ["*"]
        assert data.is_active is True

    def test_explicit_events(self):
        """Test that known events are accepted verbatim."""
        data = EndpointCreate(
            url="https://api.example.com/webhooks",
            events=["team_created", "*", "team_created"],
        )
        assert data.events == ["team_created", "*", "team_created"]

    def test_empty_events_rejected(self):
        """Test that an endpoint must subscribe to something."""
        with pytest.raises(ValidationError, match="at least one event"):
            EndpointCreate(url="https://api.example.com/webhooks", events=[])

    def test_unknown_event_rejected(self):
        """Test that unknown event names are rejected."""
        with pytest.raises(ValidationError, match="unknown events: team_renamed"):
            EndpointCreate(url="https://api.example.com/webhooks", events=["team_renamed"])

    @pytest.mark.parametrize(
        "url",
        ["not a url", "/relative/path", "ftp://files.example.com/hook", "https://"],
    )
    def test_invalid_url_rejected(self, url):
        """Test that only absolute http(s) URLs are accepted."""
        with pytest.raises(ValidationError, match="absolute http"):
            EndpointCreate(url=url)

    def test_url_is_stripped(self):
        """Test that surrounding whitespace is removed from the URL."""
        data = EndpointCreate(url="  http://localhost:9000/hook  ")
        assert data.url == "http://localhost:9000/hook"


class TestEndpointViews:

    def test_view_hides_secret(self, endpoint_factory):
        """Test that the listing view never exposes the secret."""
        view = EndpointView.from_endpoint(endpoint_factory("endpoint-a", ["*"]))
        assert "secret" not in view.model_dump()
        assert view.id == "endpoint-a"

    def test_created_shows_secret(self, endpoint_factory):
        """Test that the creation view carries the secret."""
        created = EndpointCreated.from_endpoint(endpoint_factory("endpoint-a", ["*"]))
        assert created.secret == "whsec_endpoint-a"


class TestEndpointImmutability:

    def test_endpoint_is_frozen(self, endpoint_factory):
        """Test that endpoint records cannot be mutated in place."""
        endpoint = endpoint_factory("endpoint-a", ["*"])
        with pytest.raises(ValidationError):
            endpoint.tenant_id = "org-other"


class TestDeliveryEnvelope:

    def test_wire_shape(self):
        """Test that the envelope serializes to id, event, created_at and data."""
        created_at = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
        envelope = DeliveryEnvelope(
            delivery_id="delivery-1",
            event="team_created",
            created_at=created_at,
            data={"team_id": "team-1", "name": "Platform"},
        )
        assert json.loads(envelope.to_json()) == {
            "id": "delivery-1",
            "event": "team_created",
            "created_at": "2026-10-19T12:00:00.000Z",
            "data": {"team_id": "team-1", "name": "Platform"},
        }
        assert envelope.timestamp == "2026-10-19T12:00:00.000Z"

    def test_fresh_delivery_ids(self):
        """Test that each envelope gets its own delivery id."""
        created_at = datetime.now(timezone.utc)
        first = DeliveryEnvelope(event="team_created", created_at=created_at)
        second = DeliveryEnvelope(event="team_created", created_at=created_at)
        assert first.delivery_id != second.delivery_id

    def test_parse_from_wire(self):
        """Test that a wire payload parses back using the id alias."""
        envelope = DeliveryEnvelope.model_validate(
            {
                "id": "delivery-1",
                "event": "user_invited",
                "created_at": "2026-10-19T12:00:00.000Z",
                "data": [1, "two", None],
            }
        )
        assert envelope.delivery_id == "delivery-1"
        assert envelope.data == [1, "two", None]


class TestEventRequest:

    def test_unknown_event_rejected(self):
        """Test that events outside the enumeration are rejected."""
        with pytest.raises(ValidationError):
            EventRequest(event="team_renamed", data={})

    def test_data_is_opaque(self):
        """Test that any JSON-compatible data is accepted."""
        request = EventRequest(event="team_created", data="plain string")
        assert request.event is WebhookEvent.TEAM_CREATED
        assert request.data == "plain string"

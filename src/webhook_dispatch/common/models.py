import secrets
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class WebhookEvent(str, Enum):
    USER_INVITED = "user_invited"
    USER_REMOVED = "user_removed"
    ROLE_CHANGED = "role_changed"
    TEAM_CREATED = "team_created"
    TEAM_UPDATED = "team_updated"
    TEAM_DELETED = "team_deleted"
    MEMBER_ADDED_TO_TEAM = "member_added_to_team"
    MEMBER_REMOVED_FROM_TEAM = "member_removed_from_team"
    ORGANIZATION_CREATED = "organization_created"


WILDCARD = "*"

# Only sent by the administrative test ping, never by dispatch.
PING_EVENT = "ping"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as ISO-8601 UTC with millisecond precision and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def generate_delivery_id() -> str:
    return str(uuid.uuid4())


def generate_endpoint_id() -> str:
    return str(uuid.uuid4())


def generate_webhook_secret() -> str:
    """Generate a signing secret for a new endpoint."""
    return f"whsec_{secrets.token_hex(24)}"


def event_name(event: Any) -> str:
    if isinstance(event, Enum):
        return str(event.value)
    return str(event)


class WebhookEndpoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    tenant_id: str
    url: str
    events: List[str]
    secret: str
    is_active: bool = True
    last_triggered_at: Optional[datetime] = None
    failure_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class EndpointCreate(BaseModel):
    url: str
    events: List[str] = Field(default_factory=lambda: [WILDCARD])
    is_active: bool = True

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("url must be an absolute http(s) URL")
        return value

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("at least one event or '*' is required")
        known = {event.value for event in WebhookEvent}
        unknown = [name for name in value if name != WILDCARD and name not in known]
        if unknown:
            raise ValueError(f"unknown events: {', '.join(unknown)}")
        return value


class EndpointUpdate(BaseModel):
    is_active: bool


class EndpointView(BaseModel):
    id: str
    tenant_id: str
    url: str
    events: List[str]
    is_active: bool
    last_triggered_at: Optional[datetime] = None
    failure_count: int = 0
    created_at: datetime

    @classmethod
    def from_endpoint(cls, endpoint: WebhookEndpoint) -> "EndpointView":
        return cls.model_validate(endpoint.model_dump(exclude={"secret"}))


class EndpointCreated(EndpointView):
    secret: str

    @classmethod
    def from_endpoint(cls, endpoint: WebhookEndpoint) -> "EndpointCreated":
        return cls.model_validate(endpoint.model_dump())


class EventRequest(BaseModel):
    event: WebhookEvent
    data: Any = None


class DeliveryEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    delivery_id: str = Field(default_factory=generate_delivery_id, alias="id")
    event: str
    created_at: datetime
    data: Any = None

    @field_serializer("created_at")
    def serialize_created_at(self, value: datetime) -> str:
        return format_timestamp(value)

    @property
    def timestamp(self) -> str:
        return format_timestamp(self.created_at)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class DeliveryOutcome(BaseModel):
    endpoint_id: str
    delivery_id: str
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None

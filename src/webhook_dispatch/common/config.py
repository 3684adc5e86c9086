from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RegistryType(str, Enum):
    MEMORY = "memory"
    SUPABASE = "supabase"


class SignatureScheme(str, Enum):
    SECRET = "secret"
    HMAC_SHA256 = "hmac_sha256"


class SupabaseConfig(BaseModel):
    url: str
    service_key: str
    table: str = "webhooks"
    failure_rpc: str = "increment_webhook_failure"
    timeout: int = 10  # seconds


class DeliveryConfig(BaseModel):
    timeout: int = 10  # seconds
    signature_scheme: SignatureScheme = SignatureScheme.SECRET


class MetricsConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 9090
    path: str = "/metrics"


class BaseConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="WEBHOOK_DISPATCH_",
        extra="ignore",
    )

    log_level: str = "INFO"
    registry_type: RegistryType = RegistryType.MEMORY
    supabase_config: Optional[SupabaseConfig] = None
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    def validate_registry_config(self) -> None:
        if self.registry_type == RegistryType.SUPABASE and not self.supabase_config:
            raise ValueError("Supabase registry selected but no Supabase configuration provided")


class ServiceConfig(BaseConfig):
    host: str = "0.0.0.0"
    port: int = 8000

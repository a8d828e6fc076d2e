"""Configuration schema for wabridge."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


DEFAULT_HOME = Path.home() / ".wabridge"
CURRENT_SCHEMA_VERSION = 1


class StoreConfig(BaseModel):
    """Shared store configuration."""

    backend: Literal["memory", "rtdb"] = "memory"
    url: str = ""  # e.g. https://<project>.firebaseio.com
    auth: str = ""
    timeout: float = 15.0
    max_transaction_retries: int = 25


class GatewayConfig(BaseModel):
    """Messaging gateway (Evolution API) configuration."""

    base_url: str = "https://evo.onrpa.com"
    master_key: str = ""
    timeout: float = 45.0
    media_timeout: float = 30.0


class DeliveryConfig(BaseModel):
    """Outbound delivery loop configuration."""

    poll_interval: float = 2.0
    max_attempts: int = 3
    backoff_base: float = 1.0
    conversation_prefix: str = "web_"


class IdentityConfig(BaseModel):
    """Identity cache configuration."""

    cache_ttl: float = 60.0


class ServerConfig(BaseModel):
    """Webhook server configuration."""

    host: str = "0.0.0.0"
    port: int = 4001
    webhook_url: str = ""


class Config(BaseSettings):
    """Root configuration for wabridge."""

    model_config = {"env_prefix": "WABRIDGE_", "env_nested_delimiter": "__"}

    schema_version: int = CURRENT_SCHEMA_VERSION
    log_level: str = "INFO"
    store: StoreConfig = Field(default_factory=StoreConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @property
    def home_dir(self) -> Path:
        return DEFAULT_HOME

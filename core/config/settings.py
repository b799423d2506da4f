# Client configuration and environment-backed settings
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic import ValidationError as PydanticValidationError
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from core.utils.exceptions import ConfigurationError


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class ReconnectionSettings(BaseModel):
    """Market data stream reconnection configuration"""
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=5, ge=0)
    base_delay_seconds: float = Field(default=1.0, ge=0)
    max_delay_seconds: float = Field(default=60.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    jitter_ratio: float = Field(default=0.1, ge=0, le=1.0)
    timeout_seconds: float = Field(default=30.0, gt=0)


class StreamSettings(BaseModel):
    """Runtime settings for subscription delivery"""
    model_config = ConfigDict(frozen=True)

    # 0 = unbounded per-handle queue; otherwise updates beyond the limit are dropped
    queue_maxsize: int = Field(default=0, ge=0)
    channels: Tuple[str, ...] = ("trades", "quotes")


class ClientConfig(BaseModel):
    """
    Backend selection plus authentication material for one client.

    Read once at client construction and never mutated afterwards. Values are
    kept exactly as given: an explicit base_url is used verbatim by adapters.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    backend: str = Field(..., min_length=1, description="Registered backend identifier, e.g. 'alpaca'")
    api_key: Optional[str] = None
    api_secret: Optional[SecretStr] = None
    token: Optional[SecretStr] = None
    base_url: Optional[str] = None
    data_url: Optional[str] = None
    paper: bool = True
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    reconnection: ReconnectionSettings = ReconnectionSettings()
    stream: StreamSettings = StreamSettings()
    options: Dict[str, str] = Field(default_factory=dict)

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v != v.strip() or not v:
            raise ValueError("backend identifier must not contain surrounding whitespace")
        return v

    @field_validator("base_url", "data_url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not v.startswith(("http://", "https://", "ws://", "wss://")):
            raise ValueError(f"unsupported URL scheme: {v!r}")
        return v

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ClientConfig":
        """Build a config from already-parsed data, reporting problems as ConfigurationError."""
        try:
            return cls.model_validate(dict(data))
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or None
            raise ConfigurationError(
                f"Invalid client configuration: {first.get('msg')}",
                config_field=field,
                config_value=first.get("input") if field not in _SECRET_FIELDS else "[REDACTED]",
                details={"errors": len(e.errors())},
            ) from e

    def secret_value(self, field: str) -> Optional[str]:
        value = getattr(self, field)
        if value is None:
            return None
        return value.get_secret_value()

    def option(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.options.get(key, default)


_SECRET_FIELDS = {"api_secret", "token"}


class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_format: bool = False
    console_enabled: bool = True
    # Redaction
    redact_keys: List[str] = [
        "authorization", "access_token", "refresh_token", "api_key", "api-secret",
        "api_secret", "password", "secret", "token", "apca-api-key-id", "apca-api-secret-key",
    ]

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """Application settings, loaded from environment variables or a .env file"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TRADING_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    environment: Environment = Environment.DEVELOPMENT

    client: ClientConfig = ClientConfig(backend="paper")
    logging: LoggingSettings = LoggingSettings()

    def client_config(self) -> ClientConfig:
        return self.client


# No global settings instance - pass ClientConfig explicitly to the factory

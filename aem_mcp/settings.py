import os
from datetime import timedelta

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from aem_mcp.services.auth import IMS_TOKEN_URL, AuthType, Credentials
from aem_mcp.services.cache import CacheConfig, EvictionPolicy
from aem_mcp.services.circuit_breaker import CircuitBreakerConfig
from aem_mcp.services.client import ClientConfig
from aem_mcp.services.retry import RetryConfig

load_dotenv()


class Settings(BaseModel):
    # AEM instance
    aem_host: str = Field(default="localhost", alias="AEM_HOST")
    aem_port: int = Field(default=4502, alias="AEM_PORT")
    aem_protocol: str = Field(default="http", alias="AEM_PROTOCOL")
    aem_base_path: str = Field(default="", alias="AEM_BASE_PATH")
    aem_timeout_ms: int = Field(default=30000, alias="AEM_TIMEOUT")  # milliseconds

    # Retry (delays in milliseconds)
    retry_attempts: int = Field(default=3, alias="AEM_RETRY_ATTEMPTS")
    retry_delay_ms: int = Field(default=1000, alias="AEM_RETRY_DELAY")
    max_retry_delay_ms: int = Field(default=30000, alias="AEM_MAX_RETRY_DELAY")

    # Authentication
    auth_type: AuthType = Field(default=AuthType.BASIC, alias="AEM_AUTH_TYPE")
    username: str | None = Field(default="admin", alias="AEM_USERNAME")
    password: str | None = Field(default="admin", alias="AEM_PASSWORD")
    access_token: str | None = Field(default=None, alias="AEM_ACCESS_TOKEN")
    client_id: str | None = Field(default=None, alias="AEM_CLIENT_ID")
    client_secret: str | None = Field(default=None, alias="AEM_CLIENT_SECRET")
    ims_token_url: str = Field(default=IMS_TOKEN_URL, alias="AEM_IMS_TOKEN_URL")

    # Cache (times in milliseconds)
    cache_enabled: bool = Field(default=True, alias="CACHE_ENABLED")
    cache_ttl_ms: int = Field(default=300000, alias="CACHE_TTL")
    cache_max_size: int = Field(default=1000, alias="CACHE_MAX_SIZE")
    cache_eviction_policy: EvictionPolicy = Field(
        default=EvictionPolicy.LRU, alias="CACHE_EVICTION_POLICY"
    )
    cache_sweep_interval_ms: int = Field(default=300000, alias="CACHE_SWEEP_INTERVAL")

    # Circuit breaker
    circuit_breaker_failure_threshold: int = Field(
        default=5, alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD"
    )
    circuit_breaker_cooldown_ms: int = Field(
        default=60000, alias="CIRCUIT_BREAKER_COOLDOWN"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """Validate settings from the (given or process) environment."""
        source = os.environ if environ is None else environ
        return cls.model_validate(dict(source))

    @field_validator("aem_port")
    @classmethod
    def _check_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError("AEM_PORT must be between 1 and 65535")
        return v

    @field_validator("aem_protocol")
    @classmethod
    def _check_protocol(cls, v: str) -> str:
        v = v.lower()
        if v not in ("http", "https"):
            raise ValueError("AEM_PROTOCOL must be http or https")
        return v

    @field_validator("retry_attempts")
    @classmethod
    def _check_retry_attempts(cls, v: int) -> int:
        if not 0 <= v <= 10:
            raise ValueError("AEM_RETRY_ATTEMPTS must be between 0 and 10")
        return v

    @field_validator(
        "aem_timeout_ms",
        "cache_ttl_ms",
        "cache_max_size",
        "circuit_breaker_failure_threshold",
        "circuit_breaker_cooldown_ms",
    )
    @classmethod
    def _check_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("retry_delay_ms", "max_retry_delay_ms", "cache_sweep_interval_ms")
    @classmethod
    def _check_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def _check_credentials(self) -> "Settings":
        if self.auth_type == AuthType.NONE:
            raise ValueError("AEM_AUTH_TYPE must be basic, token or oauth")
        if self.auth_type == AuthType.BASIC and not (self.username and self.password):
            raise ValueError("Basic auth requires AEM_USERNAME and AEM_PASSWORD")
        if self.auth_type == AuthType.TOKEN and not self.access_token:
            raise ValueError("Token auth requires AEM_ACCESS_TOKEN")
        if self.auth_type == AuthType.OAUTH and not (self.client_id and self.client_secret):
            raise ValueError("OAuth requires AEM_CLIENT_ID and AEM_CLIENT_SECRET")
        if self.max_retry_delay_ms < self.retry_delay_ms:
            raise ValueError("AEM_MAX_RETRY_DELAY must not be below AEM_RETRY_DELAY")
        return self

    @property
    def base_url(self) -> str:
        base_path = self.aem_base_path.strip("/")
        url = f"{self.aem_protocol}://{self.aem_host}:{self.aem_port}"
        return f"{url}/{base_path}" if base_path else url

    def to_client_config(self) -> ClientConfig:
        """Build the client core configuration."""
        return ClientConfig(
            base_url=self.base_url,
            timeout=self.aem_timeout_ms / 1000,
            credentials=Credentials(
                type=self.auth_type,
                username=self.username,
                password=self.password,
                access_token=self.access_token,
                client_id=self.client_id,
                client_secret=self.client_secret,
                token_url=self.ims_token_url,
            ),
            retry=RetryConfig(
                retry_attempts=self.retry_attempts,
                retry_delay=timedelta(milliseconds=self.retry_delay_ms),
                max_delay=timedelta(milliseconds=self.max_retry_delay_ms),
            ),
            cache=CacheConfig(
                enabled=self.cache_enabled,
                default_ttl=timedelta(milliseconds=self.cache_ttl_ms),
                max_size=self.cache_max_size,
                eviction_policy=self.cache_eviction_policy,
                sweep_interval=(
                    timedelta(milliseconds=self.cache_sweep_interval_ms)
                    if self.cache_sweep_interval_ms
                    else None
                ),
            ),
            circuit_breaker=CircuitBreakerConfig(
                failure_threshold=self.circuit_breaker_failure_threshold,
                cooldown_period=timedelta(milliseconds=self.circuit_breaker_cooldown_ms),
            ),
        )

"""
Configuration settings for the Tokyo trip assistant API
"""
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
import json

from trip_assistant.services.segments import UnknownProductPolicy

PACKAGE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API Configuration
    API_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS Settings
    CORS_ORIGINS: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost:5173",
        ]
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from JSON string if needed"""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not JSON, treat as comma-separated list
                return [origin.strip() for origin in v.split(",")]
        return v

    # Completion provider (OpenAI-compatible chat completions)
    LLM_API_BASE: str = Field(default="https://open.bigmodel.cn/api/paas/v4/chat/completions")
    LLM_API_KEY: Optional[str] = Field(default=None)
    MODEL_NAME: str = Field(default="glm-4.5-air")
    TEMPERATURE: float = Field(default=0.7)
    TOP_P: float = Field(default=0.9)

    # Timeouts
    REQUEST_TIMEOUT: int = Field(default=20)
    STREAM_TIMEOUT: int = Field(default=60)

    # Mock stream used when no API key is configured
    STREAM_FALLBACK_ENABLED: bool = Field(default=False)  # also replay the mock when the provider fails early
    MOCK_STREAM_DELAY: float = Field(default=0.03)
    MOCK_STREAM_INITIAL_DELAY: float = Field(default=0.5)

    # Catalog
    CATALOG_PATH: Path = Field(default=PACKAGE_DIR / "data" / "tourism_data.json")

    # Rendering behaviour
    UNKNOWN_PRODUCT_POLICY: UnknownProductPolicy = Field(default=UnknownProductPolicy.ERROR)
    ENTRY_MATERIALIZATION: str = Field(default="deferred")  # "deferred" or "immediate"

    @field_validator("ENTRY_MATERIALIZATION")
    @classmethod
    def validate_materialization(cls, v: str) -> str:
        v = v.lower()
        if v not in ("deferred", "immediate"):
            raise ValueError("ENTRY_MATERIALIZATION must be 'deferred' or 'immediate'")
        return v

    # Sessions (in process memory)
    SESSION_TTL_SECONDS: Optional[float] = Field(default=1800)  # idle time before eviction; unset disables
    MAX_SESSIONS: Optional[int] = Field(default=1000)

    # Fixed assistant texts
    REJECTION_MESSAGE: str = Field(
        default="很抱歉，我只能推荐东京的旅游产品，请提供东京旅游相关的问题哦~"
    )
    STREAM_ERROR_MESSAGE: str = Field(
        default="抱歉，我现在无法处理您的请求，请稍后再试。"
    )
    EMPTY_RESPONSE_MESSAGE: str = Field(
        default="抱歉，我现在无法回答您的问题。"
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # "json" or "console"

    # OpenTelemetry Configuration
    OTEL_ENABLED: bool = Field(default=False)
    OTEL_ENDPOINT: str = Field(default="http://localhost:4317")
    OTEL_SERVICE_NAME: str = Field(default="trip-assistant-api")

    # Feature Flags
    ENABLE_METRICS: bool = Field(default=True)

    @property
    def mock_mode(self) -> bool:
        """True when no provider credential is configured"""
        return not self.LLM_API_KEY

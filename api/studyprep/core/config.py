from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings


_DEFAULT_BASE_URLS = {
    "gemini": "https://generativelanguage.googleapis.com",
    "ollama": "http://localhost:11434",
}


class Settings(BaseSettings):
    app_name: str = "StudyPrep"
    environment: Literal["local", "dev", "prod"] = "local"
    api_v1_prefix: str = "/api/v1"
    user_header_name: str = "X-User-ID"
    database_url: str = "sqlite+aiosqlite:///./studyprep.db"

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_database_url(cls, v: str) -> str:
        """Convert postgres:// URLs to postgresql+asyncpg:// for SQLAlchemy async."""
        if not v or "sqlite" in v:
            return v
        s = str(v).strip()
        if s.startswith("postgres://"):
            return "postgresql+asyncpg://" + s[len("postgres://") :]
        if s.startswith("postgresql://") and "+" not in s.split("://")[0]:
            return s.replace("postgresql://", "postgresql+asyncpg://", 1)
        return s

    redis_url: Optional[str] = None
    rate_limit_per_minute: int = 120
    log_level: str = "INFO"
    enable_prometheus: bool = True
    api_key: Optional[str] = None
    # Comma-separated origins for CORS. Empty or "*" = allow all.
    cors_allowed_origins: str = "*"

    embedding_provider: Literal["gemini", "ollama", "mock", ""] = ""
    embedding_base_url: Optional[AnyHttpUrl] = None
    embedding_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("embedding_api_key", "gemini_api_key"),
    )
    embedding_model: str = "text-embedding-004"
    embedding_dimension: int = Field(default=768, ge=1)
    embedding_timeout_seconds: float = 15.0

    search_default_limit: int = Field(default=3, ge=1)
    search_max_limit: int = Field(default=50, ge=1)

    @model_validator(mode="after")
    def require_api_key_in_prod(self: "Settings") -> "Settings":
        if self.environment == "prod" and (not self.api_key or not self.api_key.strip()):
            raise ValueError(
                "API_KEY is required when ENVIRONMENT=prod. Set API_KEY in your environment."
            )
        return self

    @model_validator(mode="after")
    def _check_search_limits(self: "Settings") -> "Settings":
        if self.search_default_limit > self.search_max_limit:
            raise ValueError("SEARCH_DEFAULT_LIMIT must not exceed SEARCH_MAX_LIMIT")
        return self

    def embedding_endpoint_base(self) -> str | None:
        """Base URL for the configured embedding provider, falling back to its public default."""
        if self.embedding_base_url:
            return str(self.embedding_base_url).rstrip("/")
        return _DEFAULT_BASE_URLS.get(self.embedding_provider)

    def cors_origins(self) -> list[str]:
        raw = (self.cors_allowed_origins or "").strip()
        if not raw or raw == "*":
            return ["*"]
        return [o.strip() for o in raw.split(",") if o.strip()]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        populate_by_name = True
        extra = "ignore"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

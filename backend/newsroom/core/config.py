from pydantic_settings import BaseSettings
from typing import List, Union, Optional
from pydantic import field_validator


class Settings(BaseSettings):
    # Storage backend: "memory", "redis" or "sql"
    STORAGE_BACKEND: str = "redis"
    REDIS_URL: str = "redis://localhost:6379/0"

    # Database (sql backend)
    POSTGRES_USER: str = "newsroom"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "newsroom"
    DATABASE_URL_OVERRIDE: Optional[str] = None

    @property
    def DATABASE_URL(self) -> str:
        """Construct database URL from components."""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @field_validator("STORAGE_BACKEND")
    @classmethod
    def validate_storage_backend(cls, v):
        v = v.lower().strip()
        if v not in ("memory", "redis", "sql"):
            raise ValueError(f"Unsupported storage backend: {v}")
        return v

    # LLM (per-tenant config overrides key, base URL and model)
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: Optional[str] = None
    LLM_MODEL: str = "gpt-5-nano"
    LLM_TIMEOUT_SECONDS: float = 120.0
    LLM_MAX_RETRIES: int = 2

    # LLM Rate Limiting & Parallelization
    LLM_MAX_CONCURRENT: int = 5  # Max concurrent LLM API calls
    LLM_TPM_LIMIT: int = 200000  # Tokens per minute limit (adjust per your tier)

    # Social feed (Bluesky AppView)
    FEED_API_BASE: str = "https://public.api.bsky.app"
    FEED_URI: str = (
        "at://did:plc:z72i7hdynmk6r22z27h6tvur/app.bsky.feed.generator/whats-hot"
    )
    FEED_TIMEOUT_SECONDS: float = 30.0

    # Raw model responses kept for audit
    API_RESPONSES_DIR: str = "./api_responses"

    # Scheduling
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TICK_MINUTES: int = 5
    JOB_STALE_AFTER_MINUTES: int = 120

    # Application
    SECRET_KEY: str = "change-me"
    CRON_SECRET: Optional[str] = None
    DEBUG: bool = False
    CORS_ORIGINS: Union[List[str], str] = ["http://localhost:3000"]

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            # Split by comma or keep as single item
            return [origin.strip() for origin in v.split(",")]
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env


settings = Settings()

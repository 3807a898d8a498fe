# core/config.py
"""
Application settings loaded from environment variables (and ``.env``).

Field names are upper-case so they match the environment variable names
one-to-one.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    DATABASE_URL: str = "sqlite:///./job_relay.db"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Client-facing auth; empty disables the check.
    API_KEY: str = ""

    # External worker service
    WORKER_BASE_URL: str = ""
    WORKER_API_KEY: str = ""
    WORKER_REQUEST_TIMEOUT: float = 30.0
    SUBMIT_MAX_WORKERS: int = 4

    # Public base URL of this service, used to build callback URLs.
    BACKEND_URL: str = ""

    DEFAULT_ASSET_STATUS: str = "published"

    # Enrichment collaborators; each is disabled when its key is unset.
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_MODEL: str = "claude-sonnet-4-20250514"
    CATEGORIZE_MAX_CHARS: int = 4000
    OPENAI_API_KEY: str = ""
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    CHUNK_SIZE: int = 1500
    CHUNK_OVERLAP: int = 150

    @property
    def worker_configured(self) -> bool:
        return bool(self.WORKER_BASE_URL and self.WORKER_API_KEY)

    @property
    def callback_base_url(self) -> str | None:
        if not self.BACKEND_URL:
            return None
        return self.BACKEND_URL.rstrip("/") + "/api/webhooks/master-marketer"


settings = Settings()

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Inventory search service settings.

    All values are loaded from environment variables.
    A .env file in the backend directory is also supported.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Database ---
    DATABASE_URL: str = "postgresql+asyncpg://inventory:inventory@db:5432/inventory"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False
    DATABASE_APPLICATION_NAME: str = "household-inventory-search"

    # --- JWT ---
    JWT_SECRET: str = "change-this-secret-key"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # --- CORS ---
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # --- Operators ---
    # Emails allowed to run search maintenance (extensions, capability reports, reindexing)
    ADMIN_EMAILS: list[str] = []

    # --- Search ---
    SEARCH_TRIGRAM_THRESHOLD: float = 0.3
    SEARCH_STRATEGY_TIMEOUT_SECONDS: float = 5.0
    SEARCH_TEXT_CONFIG: str = "english"
    SEARCH_DEFAULT_LIMIT: int = 20
    SEARCH_RATE_LIMIT: str = "30/minute"

    # --- Highlighting ---
    HIGHLIGHT_MAX_TEXT_LENGTH: int = 10_000
    HIGHLIGHT_MAX_TERM_LENGTH: int = 100
    HIGHLIGHT_CLASS: str = "search-highlight"
    HIGHLIGHT_SLOW_THRESHOLD_MS: float = 50.0

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses the asyncpg driver."""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings singleton."""
    return Settings()

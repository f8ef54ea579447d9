"""Configuration management for the NBP Exchange MCP server."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """NBP Exchange MCP server settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Shared token ledger (users / transactions / mcp_actions / api_keys)
    database_url: str = "sqlite+aiosqlite:///./nbp_tokens.db"

    nbp_api_url: str = "https://api.nbp.pl/api"
    nbp_timeout_seconds: float = 10.0

    mcp_server_name: str = "nbp-exchange-mcp"
    purchase_url: str = "https://panel.wtyczki.ai/"

    consume_max_attempts: int = 3
    consume_backoff_seconds: float = 0.1

    dispatcher_cache_size: int = 1000
    max_output_length: int = 5000

    # OAuth (WorkOS AuthKit); the provider is only installed when the domain is set
    workos_authkit_domain: str | None = None
    public_base_url: str = "http://localhost:8000"

    # HTTP transport serving both the OAuth MCP endpoint and /api/mcp
    host: str = "0.0.0.0"
    port: int = 8000

    log_level: str = "INFO"


def get_settings() -> Settings:
    """Get application settings."""
    return Settings()

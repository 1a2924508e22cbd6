"""
Application configuration from environment variables.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, PositiveInt, PositiveFloat, NonNegativeInt, HttpUrl
from typing import List


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False
    )

    # Application
    app_name: str = "Market Engine"
    environment: str = "production"
    log_level: str = "INFO"
    allowed_origins: List[str] = ["http://localhost:3000", "http://localhost"]

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Remote query service (GraphQL indexer)
    graphql_url: HttpUrl = Field(
        "https://mainnet.intuition.sh/v1/graphql",
        description="GraphQL endpoint of the indexing service"
    )
    graphql_timeout_seconds: PositiveFloat = Field(
        25.0,
        description="Timeout for a single GraphQL request in seconds"
    )
    graphql_max_retries: NonNegativeInt = Field(
        2,
        description="Number of retries after a failed GraphQL request"
    )
    graphql_backoff_seconds: PositiveFloat = Field(
        1.0,
        description="Base delay between GraphQL retries (multiplied by the attempt number)"
    )

    # Live chain reads
    rpc_url: HttpUrl = Field(
        "https://rpc.intuition.systems/http",
        description="JSON-RPC endpoint used for balance and redeem quote reads"
    )
    rpc_timeout_seconds: PositiveFloat = Field(
        15.0,
        description="Timeout for JSON-RPC calls in seconds"
    )
    multi_vault_address: str = Field(
        "0x6E35cF57A41fA15eA0EaE9C33e751b01A784Fe7e",
        description="MultiVault contract address"
    )

    # Pagination
    market_page_size: PositiveInt = Field(
        40,
        description="Page size for market listings (infinite scroll)"
    )
    history_page_size: PositiveInt = Field(
        500,
        description="Maximum number of remote history events fetched per account"
    )
    market_activity_limit: PositiveInt = Field(
        50,
        description="Maximum number of activity events fetched per market"
    )
    search_limit: PositiveInt = Field(
        25,
        description="Maximum number of search results"
    )
    holders_limit: PositiveInt = Field(
        50,
        description="Maximum number of holders listed per entity"
    )

    # Polling
    poll_interval_seconds: PositiveFloat = Field(
        30.0,
        description="Interval between background refresh ticks in seconds"
    )
    market_polling_enabled: bool = Field(
        True,
        description="Keep the first market page warm with a background poll"
    )

    # Local pending-transaction cache
    pending_cache_max_entries: PositiveInt = Field(
        100,
        description="Maximum number of pending transactions kept per account"
    )
    pending_cache_ttl: PositiveInt = Field(
        86400 * 7,
        description="TTL for pending transaction lists in Redis (seconds)"
    )

    # View cache
    view_cache_ttl: PositiveInt = Field(
        3600,
        description="TTL for last-known market and portfolio views (seconds)"
    )

    # Portfolio metrics
    dust_threshold: PositiveFloat = Field(
        1e-10,
        description="Share balances at or below this value are treated as closed positions"
    )
    equity_curve_window: PositiveInt = Field(
        100,
        description="Number of most recent transactions used to rebuild the equity curve"
    )


# Global settings instance
settings = Settings()

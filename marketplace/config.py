from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    database_path: str = "./data/marketplace.db"

    # Key-value cache store: "memory" (single process) or "redis"
    cache_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    redis_password: str | None = None

    # Cache lifetimes
    snapshot_staleness_hours: int = 24
    result_cache_ttl: int = 300
    document_cache_ttl: int = 300

    # Listing
    default_page_size: int = 20
    featured_default_limit: int = 10

    # Startup
    warm_snapshots_on_startup: bool = True

    # Logging
    log_level: str = "info"

    # CORS
    cors_origins: str = "http://localhost:5173"

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def snapshot_staleness_seconds(self) -> int:
        return self.snapshot_staleness_hours * 3600

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()

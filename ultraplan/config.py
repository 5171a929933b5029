"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Ultra Planner Sync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Local store ---
    local_store_path: str = ".ultraplan"

    # --- Supabase ---
    supabase_url: str = ""
    supabase_db_url: str | None = None  # direct postgres connection string; unset disables sync
    db_pool_min_size: int = 2
    db_pool_max_size: int = 10

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:8081"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()

"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env / .env.local)."""

    # --- App ---
    app_name: str = "ModSync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- CurseForge ---
    curseforge_api_key: str = ""  # server-side only — never expose to client
    curseforge_base_url: str = "https://api.curseforge.com/v1"
    upstream_timeout_seconds: float = 15.0

    # --- Background sync ---
    sync_policy_path: str | None = None  # override for the bundled sync_policy.yaml
    sync_autostart: bool | None = None  # None = use sweep.autostart from the policy

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": (".env", ".env.local"), "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()

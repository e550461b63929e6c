"""Service configuration loaded from environment variables (prefix RELIEF_)."""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="RELIEF_", env_file=".env", extra="ignore")

    app_name: str = "Faith Responders Relief Coordination API"
    version: str = "1.0.0"

    log_level: str = "INFO"

    # CORS (comma-separated)
    cors_origins: str = "*"

    # List endpoints
    default_list_limit: int = 100
    max_list_limit: int = 500

    # Seeds one approved administrator at startup so roles can be approved
    # on a fresh deployment.
    bootstrap_admin_id: Optional[str] = None
    bootstrap_admin_email: str = "admin@faithresponders.local"

    mcp_enabled: bool = True

    host: str = "127.0.0.1"
    port: int = 8000

    @property
    def cors_origin_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def resolve_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.default_list_limit
        return max(1, min(limit, self.max_list_limit))


@lru_cache
def get_settings() -> Settings:
    return Settings()

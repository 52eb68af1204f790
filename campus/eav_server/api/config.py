"""
Configuration for the Campus EAV HTTP gateway.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Gateway configuration loaded from environment."""

    # Bind address
    host: str = Field(default="0.0.0.0", description="Gateway bind host")
    port: int = Field(default=8080, description="Gateway bind port")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # Static bearer token; no check when unset
    api_token: str | None = Field(default=None, description="Bearer token for /api/v1")

    # Pagination defaults
    default_page_size: int = Field(default=50, description="Default items per page")
    max_page_size: int = Field(default=200, description="Maximum items per page")

    model_config = {"env_prefix": "CAMPUS_API_"}

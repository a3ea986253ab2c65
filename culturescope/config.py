"""
Application configuration.

All settings are loaded from environment variables (and `.env`). Collaborator
credentials are optional: when Microsoft Graph or the LLM is not configured,
analyses run in demonstration mode. The config encryption key has no default;
if it is missing, the app fails to start with a clear error.

Credentials saved through POST /api/config override the environment values;
see culturescope.collaborators.

Usage:
    from culturescope.config import settings
    print(settings.database_url)
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Azure / Microsoft Graph (app-only, client credentials) ---
    azure_client_id: Optional[str] = Field(default=None, description="Azure AD app registration client ID")
    azure_client_secret: Optional[str] = Field(default=None, description="Azure AD app registration client secret")
    azure_tenant_id: Optional[str] = Field(default=None, description="Azure AD tenant ID")
    graph_base_url: str = Field(default="https://graph.microsoft.com/v1.0")
    graph_scopes: list[str] = Field(
        default=["https://graph.microsoft.com/.default"],
        description="Application permission scope for the client credentials flow.",
    )
    graph_timeout_seconds: float = Field(default=30.0)
    graph_max_pages: int = Field(default=100, description="Page limit per user mailbox / chat")

    # --- Anthropic LLM ---
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API key")
    anthropic_model: str = Field(default="claude-sonnet-4-20250514")
    anthropic_max_tokens_analysis: int = Field(default=4000)
    anthropic_timeout_seconds: float = Field(default=120.0)

    # --- Storage / Security ---
    database_url: str = Field(default="sqlite:///./culturescope.db")
    config_encryption_key: str = Field(
        description="Secret used to encrypt collaborator credentials stored in the database",
    )

    # --- App ---
    app_name: str = Field(default="CultureScope")
    app_env: Literal["development", "staging", "production"] = Field(default="development")
    log_level: str = Field(default="info")

    # --- Analysis pipeline ---
    default_lookback_days: int = Field(default=30)
    progress_update_interval: int = Field(
        default=1, ge=1, description="Push a progress update every N communications"
    )
    cancel_poll_seconds: float = Field(default=1.0, gt=0)
    demo_step_seconds: float = Field(default=0.7, ge=0)
    seed_demo_data: bool = Field(default=True)

    # --- Directory metadata ---
    metadata_extra_departments: list[str] = Field(
        default=["RRHH", "Mercadeo", "Finanzas", "Contabilidad"]
    )
    metadata_extra_countries: list[str] = Field(default=["Panama", "Ecuador"])
    metadata_excluded_countries: list[str] = Field(default=["Peru"])

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()

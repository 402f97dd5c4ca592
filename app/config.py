"""
Application configuration.

All settings are loaded from environment variables. No defaults for secrets;
if a required secret is missing, the app fails to start with a clear error.

Usage:
    from app.config import settings
    print(settings.mongodb_database)
"""

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Literal


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Anthropic LLM ---
    anthropic_api_key: str = Field(description="Anthropic API key")
    anthropic_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Anthropic model to use",
    )
    anthropic_max_tokens_classify: int = Field(default=1500)
    anthropic_max_tokens_compose: int = Field(default=600)
    classifier_timeout_seconds: float = Field(
        default=45.0,
        description="Upper bound for one classify/compose call, retries included",
    )

    # --- MongoDB ---
    mongodb_uri: str = Field(default="mongodb://localhost:27017")
    mongodb_database: str = Field(default="crm")
    leads_collection: str = Field(default="leads")
    sessions_collection: str = Field(default="chatsessions")

    # --- Outbound mail (Microsoft Graph, app-only auth) ---
    azure_client_id: str = Field(description="Azure AD app registration client ID")
    azure_client_secret: str = Field(description="Azure AD app registration client secret")
    azure_tenant_id: str = Field(description="Azure AD tenant ID")
    mail_sender: str = Field(description="Mailbox the assistant sends from")
    graph_base_url: str = Field(default="https://graph.microsoft.com/v1.0")
    graph_scopes: list[str] = Field(
        default=["https://graph.microsoft.com/.default"],
        description="Client-credentials flow only accepts the /.default scope.",
    )
    mail_timeout_seconds: float = Field(default=30.0)
    signature_image_path: str = Field(default="assets/email-signature.jpeg")

    # --- Chat assistant ---
    history_window: int = Field(default=6, description="Messages passed to the classifier")
    query_result_limit: int = Field(default=100)
    upload_dir: str = Field(default="uploads")
    max_upload_files: int = Field(default=10)

    # --- App ---
    app_name: str = Field(default="CRM Assistant")
    app_env: Literal["development", "staging", "production"] = Field(default="development")
    log_level: str = Field(default="info")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()

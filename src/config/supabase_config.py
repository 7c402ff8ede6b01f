"""Supabase configuration and client setup."""
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SupabaseConfig(BaseSettings):
    """Supabase configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Supabase Project Configuration
    project_url: str = Field(
        ...,
        validation_alias="SUPABASE_URL",
        description="Supabase project URL (e.g., https://<project-ref>.supabase.co)"
    )

    # API Keys
    anon_key: Optional[str] = Field(
        default=None,
        validation_alias="SUPABASE_ANON_KEY",
        description="Supabase anonymous/public key (publishable key)"
    )

    service_role_key: Optional[str] = Field(
        default=None,
        validation_alias="SUPABASE_SERVICE_KEY",
        description="Supabase service role key (secret key)"
    )


def get_supabase_config() -> SupabaseConfig:
    """Get Supabase configuration instance."""
    return SupabaseConfig()

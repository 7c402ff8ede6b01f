"""Configuration for flag evaluation and the tenant document store."""
from typing import Literal
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlagglySettings(BaseSettings):
    """Flaggly configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Bucketing
    missing_subject_policy: Literal["random", "exclude"] = Field(
        default="random",
        validation_alias="FLAGGLY_MISSING_SUBJECT_POLICY",
        description="Rollout behaviour for requests without a subject id: "
        "'random' (non-sticky position) or 'exclude' (serve the flag default)",
    )

    # Tenant store
    conditional_writes: bool = Field(
        default=True,
        validation_alias="FLAGGLY_CONDITIONAL_WRITES",
        description="Reject a document write when the stored version changed since it was read",
    )

    cache_ttl_seconds: int = Field(
        default=0,
        ge=0,
        validation_alias="FLAGGLY_CACHE_TTL_SECONDS",
        description="TTL of the in-process document snapshot used for evaluation (0 disables)",
    )

    # Persistence backend
    kv_backend: Literal["memory", "supabase"] = Field(
        default="memory",
        validation_alias="FLAGGLY_KV_BACKEND",
        description="Key-value backend: 'memory' (process local) or 'supabase' (PostgreSQL)",
    )

    kv_table: str = Field(
        default="flag_documents",
        validation_alias="FLAGGLY_KV_TABLE",
        description="Supabase table holding one row per tenant document",
    )


def get_flaggly_settings() -> FlagglySettings:
    """Get Flaggly configuration instance.

    Returns:
        FlagglySettings instance.
    """
    return FlagglySettings()

"""Supabase client for Flaggly document storage."""
from typing import Optional

from supabase import Client, create_client

from ..config.supabase_config import SupabaseConfig, get_supabase_config


class SupabaseClientManager:
    """Manages Supabase client instances for document storage."""

    def __init__(self, use_service_role: bool = True, config: Optional[SupabaseConfig] = None):
        """Initialize Supabase client manager.

        Args:
            use_service_role: If True, use service role key (admin access).
                             If False, use anon key (subject to RLS).
            config: Supabase configuration (loaded from environment if omitted).
        """
        config = config or get_supabase_config()

        self.url = config.project_url
        self.use_service_role = use_service_role
        self.key = config.service_role_key if use_service_role else config.anon_key

        if not self.key:
            key_name = "SUPABASE_SERVICE_KEY" if use_service_role else "SUPABASE_ANON_KEY"
            raise ValueError(f"{key_name} is not configured")

        self._client: Optional[Client] = None

    @property
    def client(self) -> Client:
        """Get or create Supabase client instance."""
        if self._client is None:
            self._client = create_client(self.url, self.key)
        return self._client


def get_supabase_client(use_service_role: bool = True) -> Client:
    """Get a Supabase client instance.

    Args:
        use_service_role: If True, use service role key (admin access).
                         If False, use anon key (subject to RLS).

    Returns:
        Supabase client instance
    """
    manager = SupabaseClientManager(use_service_role=use_service_role)
    return manager.client

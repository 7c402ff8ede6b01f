"""Persistence package for Flaggly."""
from .kv import InMemoryKeyValueStore, KeyValueStore, VersionedValue
from .supabase_client import SupabaseClientManager, get_supabase_client
from .supabase_kv import SupabaseKeyValueStore

__all__ = [
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "VersionedValue",
    "SupabaseClientManager",
    "get_supabase_client",
    "SupabaseKeyValueStore",
]

"""Providers wiring settings, persistence, stores and services together."""
from functools import lru_cache
from typing import Optional

from src.config.flaggly_config import FlagglySettings, get_flaggly_settings
from src.db.kv import InMemoryKeyValueStore, KeyValueStore
from src.db.supabase_client import get_supabase_client
from src.db.supabase_kv import SupabaseKeyValueStore
from src.features.bucketing import MissingSubjectPolicy
from src.features.service import FeatureFlagService
from src.features.store import AppStore


@lru_cache(maxsize=1)
def _memory_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@lru_cache(maxsize=None)
def _supabase_store(table: str) -> SupabaseKeyValueStore:
    return SupabaseKeyValueStore(get_supabase_client(use_service_role=True), table)


def get_key_value_store(settings: Optional[FlagglySettings] = None) -> KeyValueStore:
    """
    Key-value backend selected by FLAGGLY_KV_BACKEND.

    Backends are process-wide singletons: every store sees the same data, and
    stores over one backend share cached snapshots.
    """
    settings = settings or get_flaggly_settings()

    if settings.kv_backend == "supabase":
        return _supabase_store(settings.kv_table)
    return _memory_store()


def get_app_store(
    app: str,
    env: str,
    settings: Optional[FlagglySettings] = None,
    kv: Optional[KeyValueStore] = None,
) -> AppStore:
    """
    Tenant store for the (app, env) pair resolved by the routing layer.

    Usage:
        store = get_app_store(request.headers["x-app-id"], request.headers["x-env-id"])
        data = await store.put_flag(flag)
    """
    settings = settings or get_flaggly_settings()
    return AppStore(
        kv or get_key_value_store(settings),
        app,
        env,
        conditional_writes=settings.conditional_writes,
        cache_ttl_seconds=settings.cache_ttl_seconds,
    )


def get_feature_flags(
    app: str,
    env: str,
    settings: Optional[FlagglySettings] = None,
    kv: Optional[KeyValueStore] = None,
) -> FeatureFlagService:
    """Evaluation service for one tenant."""
    settings = settings or get_flaggly_settings()
    return FeatureFlagService(
        get_app_store(app, env, settings=settings, kv=kv),
        missing_subject_policy=MissingSubjectPolicy(settings.missing_subject_policy),
    )

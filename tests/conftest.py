"""Shared test configuration and fixtures."""
import os
import sys
from pathlib import Path

import pytest

# Set up test environment variables before any imports
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key-for-testing")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key-for-testing")
os.environ.setdefault("FLAGGLY_KV_BACKEND", "memory")

# Add project root to path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from src.db.kv import InMemoryKeyValueStore  # noqa: E402
from src.features.store import AppStore, DocumentCache  # noqa: E402


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    """Create an empty in-memory key-value store."""
    return InMemoryKeyValueStore()


@pytest.fixture
def store(kv: InMemoryKeyValueStore) -> AppStore:
    """Create a tenant store with an isolated cache."""
    return AppStore(kv, "shop", "production", cache=DocumentCache())



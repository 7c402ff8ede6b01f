"""Supabase-backed key-value store for tenant documents."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, cast

from supabase import Client

from src.db.kv import VersionedValue
from src.exceptions import VersionConflictError

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "flag_documents"


class SupabaseKeyValueStore:
    """
    Stores each tenant document as one row of ``flag_documents``.

    Row shape: ``key`` (primary key), ``value`` (jsonb), ``version`` (integer),
    ``updated_at`` (timestamp). Conditional writes filter the update on the
    expected version; a first write inserts and ignores duplicates, so an empty
    result means another writer got there first.
    """

    def __init__(self, supabase_client: Client, table: str = DEFAULT_TABLE):
        """
        Initialize Supabase key-value store.

        Args:
            supabase_client: Supabase client (service role, documents are not tenant-scoped by RLS)
            table: Table holding the documents
        """
        self.client = supabase_client
        self.table = table

    async def get(self, key: str) -> Optional[VersionedValue]:
        result = (
            self.client.table(self.table)
            .select("key, value, version, updated_at")
            .eq("key", key)
            .limit(1)
            .execute()
        )

        if not result.data:
            return None

        row = cast(dict[str, Any], result.data[0])
        return VersionedValue(
            value=row.get("value") or {},
            version=int(row.get("version") or 0),
            metadata={"updated_at": row.get("updated_at")},
        )

    async def put(
        self,
        key: str,
        value: Dict[str, Any],
        *,
        expected_version: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        updated_at = (metadata or {}).get("updated_at") or datetime.now(timezone.utc).isoformat()

        if expected_version is None:
            # Unconditional write: last writer wins
            current = await self.get(key)
            new_version = (current.version if current else 0) + 1
            (
                self.client.table(self.table)
                .upsert(
                    {"key": key, "value": value, "version": new_version, "updated_at": updated_at},
                    on_conflict="key",
                )
                .execute()
            )
            return new_version

        new_version = expected_version + 1
        row = {"key": key, "value": value, "version": new_version, "updated_at": updated_at}

        if expected_version == 0:
            result = (
                self.client.table(self.table)
                .upsert(row, on_conflict="key", ignore_duplicates=True)
                .execute()
            )
        else:
            result = (
                self.client.table(self.table)
                .update({"value": value, "version": new_version, "updated_at": updated_at})
                .eq("key", key)
                .eq("version", expected_version)
                .execute()
            )

        if not result.data:
            logger.warning(
                "Conditional document write rejected",
                extra={"key": key, "expected_version": expected_version},
            )
            raise VersionConflictError(key, expected_version)

        return new_version

"""Key-value persistence used by the tenant document store."""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from src.exceptions import VersionConflictError

logger = logging.getLogger(__name__)


@dataclass
class VersionedValue:
    """A stored JSON value together with its version tag."""

    value: Dict[str, Any]
    version: int
    metadata: Dict[str, Any] = field(default_factory=dict)


class KeyValueStore(Protocol):
    """
    Persistence collaborator for tenant documents.

    Versions start at 1 for the first write; a missing key behaves as version 0.
    Passing ``expected_version`` turns ``put`` into a conditional write that raises
    VersionConflictError when the stored version differs.
    """

    async def get(self, key: str) -> Optional[VersionedValue]: ...

    async def put(
        self,
        key: str,
        value: Dict[str, Any],
        *,
        expected_version: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int: ...


class InMemoryKeyValueStore:
    """Process-local store for tests and local development."""

    def __init__(self) -> None:
        # key -> (serialized value, version, metadata)
        self._data: Dict[str, tuple[str, int, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[VersionedValue]:
        async with self._lock:
            entry = self._data.get(key)
        if entry is None:
            return None
        raw, version, metadata = entry
        return VersionedValue(value=json.loads(raw), version=version, metadata=dict(metadata))

    async def put(
        self,
        key: str,
        value: Dict[str, Any],
        *,
        expected_version: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        raw = json.dumps(value)
        async with self._lock:
            current = self._data.get(key)
            current_version = current[1] if current else 0

            if expected_version is not None and expected_version != current_version:
                raise VersionConflictError(key, expected_version, current_version)

            new_version = current_version + 1
            stored_metadata = dict(metadata or {})
            stored_metadata.setdefault("updated_at", datetime.now(timezone.utc).isoformat())
            self._data[key] = (raw, new_version, stored_metadata)

        logger.debug("Stored document", extra={"key": key, "version": new_version})
        return new_version

    def keys(self) -> list[str]:
        return list(self._data)

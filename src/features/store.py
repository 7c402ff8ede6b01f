"""
Tenant document store.

Each (app, env) tenant owns exactly one document holding its flags and segments.
Every mutation is a full read-modify-write cycle: load the document, validate,
mutate a copy, write the whole copy back. Referential integrity between flags and
segments is enforced here, at write time.
"""
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Hashable, Iterator, Mapping, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from src.db.kv import KeyValueStore
from src.exceptions import (
    ErrorCode,
    FlagglyError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from src.features.models import (
    FEATURE_FLAG_ADAPTER,
    AppData,
    BaseFeatureFlag,
    FeatureFlagUpdate,
    SegmentInput,
    SegmentRule,
)

logger = logging.getLogger(__name__)

KEY_PREFIX = "v1"


class DocumentCache:
    """
    TTL cache of tenant document snapshots, shared by store instances.

    Entries are keyed by (key-value backend, document key), so stores over
    different backends never serve each other's snapshots.
    """

    def __init__(self) -> None:
        self._entries: Dict[Hashable, Tuple[AppData, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[AppData]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            data, expires_at = entry
            if time.monotonic() >= expires_at:
                self._entries.pop(key, None)
                return None
            return data

    def set(self, key: Hashable, data: AppData, ttl_seconds: float) -> None:
        with self._lock:
            self._entries[key] = (data, time.monotonic() + ttl_seconds)

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)


_shared_cache = DocumentCache()


def _issues(error: PydanticValidationError) -> list[dict[str, Any]]:
    return error.errors(include_url=False, include_context=False, include_input=False)


class AppStore:
    """Read/mutate/write access to one tenant's flags and segments."""

    def __init__(
        self,
        kv: KeyValueStore,
        app: str,
        env: str,
        *,
        conditional_writes: bool = True,
        cache_ttl_seconds: float = 0,
        cache: Optional[DocumentCache] = None,
    ):
        """
        Initialize the store for one tenant.

        Args:
            kv: Key-value persistence collaborator
            app: Application id
            env: Environment id
            conditional_writes: Reject writes when the document changed since it was read
            cache_ttl_seconds: TTL of evaluation snapshots (0 disables caching)
            cache: Snapshot cache (defaults to the process-wide cache)
        """
        for name, value in (("app", app), ("env", env)):
            if not value or ":" in value:
                raise ValueError(f"Invalid {name} id: {value!r}")

        self.kv = kv
        self.app = app
        self.env = env
        self.conditional_writes = conditional_writes
        self.cache_ttl_seconds = cache_ttl_seconds
        self._cache = cache or _shared_cache

    @property
    def key(self) -> str:
        """Persistence key of this tenant's document."""
        return f"{KEY_PREFIX}:{self.app}:{self.env}"

    @property
    def _cache_key(self) -> Tuple[KeyValueStore, str]:
        return (self.kv, self.key)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @contextmanager
    def _storage_errors(self, code: ErrorCode, message: str, **extra: Any) -> Iterator[None]:
        """Wrap persistence failures in a StorageError tagged with the operation."""
        try:
            yield
        except FlagglyError:
            raise
        except Exception as e:
            logger.error(
                message,
                extra={"app": self.app, "env": self.env, "code": code.value, **extra},
                exc_info=True,
            )
            raise StorageError(code, message) from e

    async def _load(self) -> AppData:
        stored = await self.kv.get(self.key)
        if stored is None:
            return AppData()
        return AppData.model_validate({**stored.value, "version": stored.version})

    async def _save(self, data: AppData) -> AppData:
        expected_version = data.version if self.conditional_writes else None
        version = await self.kv.put(
            self.key,
            data.to_document(),
            expected_version=expected_version,
            metadata={"updated_at": datetime.now(timezone.utc).isoformat()},
        )
        saved = data.model_copy(update={"version": version})
        if self.cache_ttl_seconds > 0:
            self._cache.set(self._cache_key, saved, self.cache_ttl_seconds)
        return saved

    def invalidate_cache(self) -> None:
        """Drop this tenant's cached snapshot."""
        self._cache.invalidate(self._cache_key)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _check_segments(segment_ids: list[str], data: AppData) -> None:
        missing = [segment_id for segment_id in segment_ids if segment_id not in data.segments]
        if missing:
            raise NotFoundError(
                ErrorCode.SEGMENT_NOT_FOUND, "Segment", ", ".join(missing)
            )

    @staticmethod
    def _check_flag(flag_id: str, data: AppData) -> BaseFeatureFlag:
        flag = data.flags.get(flag_id)
        if flag is None:
            raise NotFoundError(ErrorCode.FLAG_NOT_FOUND, "Flag", flag_id)
        return flag

    @staticmethod
    def _parse_flag(flag: Union[BaseFeatureFlag, Mapping[str, Any]]) -> BaseFeatureFlag:
        if isinstance(flag, BaseFeatureFlag):
            return flag
        try:
            return FEATURE_FLAG_ADAPTER.validate_python(flag)
        except PydanticValidationError as e:
            raise ValidationError(ErrorCode.INVALID_FLAG_INPUT, "Invalid flag input", _issues(e)) from e

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get_data(self) -> AppData:
        """
        Read the tenant document.

        Returns an empty document (version 0) when the tenant has never been written.
        """
        if self.cache_ttl_seconds > 0:
            cached = self._cache.get(self._cache_key)
            if cached is not None:
                logger.debug("Document cache hit", extra={"key": self.key})
                return cached.model_copy(deep=True)

        with self._storage_errors(ErrorCode.GET_DATA_FAILED, "Failed to read flags"):
            data = await self._load()

        if self.cache_ttl_seconds > 0:
            self._cache.set(self._cache_key, data, self.cache_ttl_seconds)
            return data.model_copy(deep=True)
        return data

    async def put_flag(self, flag: Union[BaseFeatureFlag, Mapping[str, Any]]) -> AppData:
        """
        Create or replace a flag.

        Raises:
            ValidationError: INVALID_FLAG_INPUT for a malformed flag or a kind change
            NotFoundError: SEGMENT_NOT_FOUND when a referenced segment does not exist
            StorageError: PUT_FLAG_FAILED when persistence fails
        """
        parsed = self._parse_flag(flag)

        with self._storage_errors(ErrorCode.PUT_FLAG_FAILED, "Failed to put flag", flag_id=parsed.id):
            data = await self._load()
            self._check_segments(parsed.referenced_segments(), data)

            existing = data.flags.get(parsed.id)
            if existing is not None and existing.flag_kind != parsed.flag_kind:
                raise ValidationError(
                    ErrorCode.INVALID_FLAG_INPUT,
                    f"Flag '{parsed.id}' is a {existing.flag_kind.value} flag; kind cannot change",
                )

            updated = data.model_copy(deep=True)
            updated.flags[parsed.id] = parsed
            saved = await self._save(updated)

        logger.info(
            "Flag stored",
            extra={"app": self.app, "env": self.env, "flag_id": parsed.id, "version": saved.version},
        )
        return saved

    async def update_flag(
        self, flag_id: str, update: Union[FeatureFlagUpdate, Mapping[str, Any]]
    ) -> AppData:
        """
        Shallow-merge a partial update over an existing flag.

        Raises:
            ValidationError: INVALID_FLAG_INPUT for an empty or malformed update
            NotFoundError: FLAG_NOT_FOUND / SEGMENT_NOT_FOUND
            StorageError: UPDATE_FLAG_FAILED when persistence fails
        """
        if not isinstance(update, FeatureFlagUpdate):
            try:
                update = FeatureFlagUpdate.model_validate(update)
            except PydanticValidationError as e:
                raise ValidationError(
                    ErrorCode.INVALID_FLAG_INPUT, "Invalid flag update", _issues(e)
                ) from e

        changes = update.changes()
        if not changes:
            raise ValidationError(ErrorCode.INVALID_FLAG_INPUT, "Update object must have some data")

        with self._storage_errors(ErrorCode.UPDATE_FLAG_FAILED, "Failed to update flag", flag_id=flag_id):
            data = await self._load()
            existing = self._check_flag(flag_id, data)
            self._check_segments(
                [*(changes.get("segments") or []), *(changes.get("segment_rollouts") or {})],
                data,
            )

            try:
                merged = FEATURE_FLAG_ADAPTER.validate_python({**existing.model_dump(), **changes})
            except PydanticValidationError as e:
                raise ValidationError(
                    ErrorCode.INVALID_FLAG_INPUT, "Invalid flag update", _issues(e)
                ) from e

            updated = data.model_copy(deep=True)
            updated.flags[flag_id] = merged
            saved = await self._save(updated)

        logger.info(
            "Flag updated",
            extra={
                "app": self.app,
                "env": self.env,
                "flag_id": flag_id,
                "fields": sorted(changes),
                "version": saved.version,
            },
        )
        return saved

    async def delete_flag(self, flag_id: str) -> AppData:
        """
        Delete a flag.

        Raises:
            NotFoundError: FLAG_NOT_FOUND
            StorageError: DELETE_FLAG_FAILED when persistence fails
        """
        with self._storage_errors(ErrorCode.DELETE_FLAG_FAILED, "Failed to delete flag", flag_id=flag_id):
            data = await self._load()
            self._check_flag(flag_id, data)

            updated = data.model_copy(deep=True)
            del updated.flags[flag_id]
            saved = await self._save(updated)

        logger.info(
            "Flag deleted",
            extra={"app": self.app, "env": self.env, "flag_id": flag_id, "version": saved.version},
        )
        return saved

    async def put_segment(self, segment_id: str, rule: Union[SegmentRule, Mapping[str, Any]]) -> AppData:
        """
        Create or replace a segment rule.

        Raises:
            ValidationError: INVALID_SEGMENT_INPUT for a malformed rule
            StorageError: PUT_SEGMENT_FAILED when persistence fails
        """
        try:
            segment = SegmentInput.model_validate({"id": segment_id, "rule": rule})
        except PydanticValidationError as e:
            raise ValidationError(
                ErrorCode.INVALID_SEGMENT_INPUT, "Invalid segment input", _issues(e)
            ) from e

        with self._storage_errors(ErrorCode.PUT_SEGMENT_FAILED, "Failed to save segment", segment_id=segment_id):
            data = await self._load()
            updated = data.model_copy(deep=True)
            updated.segments[segment.id] = segment.rule
            saved = await self._save(updated)

        logger.info(
            "Segment stored",
            extra={"app": self.app, "env": self.env, "segment_id": segment_id, "version": saved.version},
        )
        return saved

    async def delete_segment(self, segment_id: str) -> AppData:
        """
        Delete a segment and remove it from every flag referencing it, in one write.

        Raises:
            NotFoundError: SEGMENT_NOT_FOUND
            StorageError: DELETE_SEGMENT_FAILED when persistence fails
        """
        with self._storage_errors(
            ErrorCode.DELETE_SEGMENT_FAILED, "Failed to delete segment", segment_id=segment_id
        ):
            data = await self._load()
            if segment_id not in data.segments:
                raise NotFoundError(ErrorCode.SEGMENT_NOT_FOUND, "Segment", segment_id)

            updated = data.model_copy(deep=True)
            del updated.segments[segment_id]

            affected: list[str] = []
            for flag_id, flag in updated.flags.items():
                if segment_id not in flag.segments:
                    continue
                affected.append(flag_id)
                updated.flags[flag_id] = flag.model_copy(
                    update={
                        "segments": [s for s in flag.segments if s != segment_id],
                        "segment_rollouts": {
                            s: rollout
                            for s, rollout in flag.segment_rollouts.items()
                            if s != segment_id
                        },
                    }
                )

            saved = await self._save(updated)

        logger.info(
            "Segment deleted",
            extra={
                "app": self.app,
                "env": self.env,
                "segment_id": segment_id,
                "affected_flags": affected,
                "version": saved.version,
            },
        )
        return saved

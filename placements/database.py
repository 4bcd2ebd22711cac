"""
Snapshot persistence for the placement engine.

The engine persists its whole state as one opaque document (see
:mod:`placements.repository` for the shape). Two backings are provided:

- ``JsonFileStore``: a local JSON file, written atomically via a temp
  file and ``os.replace``.
- ``SupabaseSnapshotStore``: one row in the ``engine_snapshots`` table,
  upserted on every save.

Usage::

    from placements.database import build_store

    store = await build_store(settings)
    snapshot = await store.load()      # None when nothing was saved yet
    await store.save(repository.to_snapshot())

Expected Supabase table::

    create table engine_snapshots (
        id text primary key,
        document jsonb not null,
        updated_at timestamptz not null
    );
"""

import json
import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

import aiofiles
from supabase import AsyncClient, create_async_client

from placements.exceptions import StoreError, ValidationError
from placements.utils import utc_now, with_retry

logger = logging.getLogger(__name__)


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def validate_not_empty(value: Any, name: str) -> None:
    """Validate that *value* is not ``None`` or an empty string.

    Raises:
        ValidationError: If *value* is ``None`` or a blank string.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{name} cannot be empty string")


def validate_positive(value: Union[int, float], name: str) -> None:
    """Validate that *value* is a strictly positive number.

    Raises:
        ValidationError: If *value* is ``None``, not a finite number, or not positive.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value) or value <= 0:
        raise ValidationError(f"{name} must be a finite positive number, got {value}")


# =============================================================================
# STORE INTERFACE
# =============================================================================


class SnapshotStore(Protocol):
    """Whole-document durable read/write."""

    async def load(self) -> Optional[Dict[str, Any]]:
        ...

    async def save(self, snapshot: Dict[str, Any]) -> None:
        ...


# =============================================================================
# JSON FILE STORE
# =============================================================================


class JsonFileStore:
    """Snapshot store backed by a local JSON file.

    Args:
        path: File to read and write. Parent directories are created on save.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    async def load(self) -> Optional[Dict[str, Any]]:
        """Read the snapshot, or ``None`` if the file does not exist.

        Raises:
            StoreError: If the file cannot be read or is not a JSON object.
        """
        if not self.path.exists():
            logger.info("[STORE] No snapshot at %s, starting empty", self.path)
            return None
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                raw = await f.read()
            snapshot = json.loads(raw)
        except (OSError, ValueError) as exc:
            raise StoreError(f"Failed to read snapshot {self.path}: {exc}") from exc
        if not isinstance(snapshot, dict):
            raise StoreError(f"Snapshot {self.path} is not a JSON object")
        return snapshot

    async def save(self, snapshot: Dict[str, Any]) -> None:
        """Write the snapshot atomically.

        Raises:
            StoreError: If the file cannot be written.
        """
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(snapshot, ensure_ascii=False, indent=2)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(payload)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as exc:
            raise StoreError(f"Failed to write snapshot {self.path}: {exc}") from exc


# =============================================================================
# SUPABASE STORE
# =============================================================================


@dataclass
class SupabaseConfig:
    """Supabase configuration loaded from environment variables.

    Attributes:
        url: The Supabase project URL (``SUPABASE_URL``).
        key: The service-role key (``SUPABASE_SERVICE_KEY``).
    """

    url: str
    key: str  # service_role key for full server-side access

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Create a config instance from environment variables.

        Raises:
            ValueError: If either variable is missing or empty.
        """
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"
            )

        return cls(url=url, key=key)


class SupabaseSnapshotStore:
    """Snapshot store backed by a single Supabase row.

    **Important:** Use the :meth:`create` factory method instead of
    ``__init__`` directly -- the underlying async client requires an
    ``await`` during initialisation.
    """

    TABLE = "engine_snapshots"

    def __init__(self, client: AsyncClient, snapshot_id: str = "engine") -> None:
        self.client = client
        self.snapshot_id = snapshot_id

    @classmethod
    async def create(
        cls,
        config: Optional[SupabaseConfig] = None,
        snapshot_id: str = "engine",
    ) -> "SupabaseSnapshotStore":
        """Factory method to create an async store.

        Args:
            config: Optional configuration.  When ``None``,
                :meth:`SupabaseConfig.from_env` is used.
            snapshot_id: Primary key of the snapshot row.
        """
        config = config or SupabaseConfig.from_env()
        client = await create_async_client(config.url, config.key)
        return cls(client, snapshot_id)

    async def load(self) -> Optional[Dict[str, Any]]:
        result = await (
            self.client.table(self.TABLE)
            .select("document")
            .eq("id", self.snapshot_id)
            .execute()
        )
        if not result.data:
            logger.info("[STORE] No snapshot row '%s', starting empty", self.snapshot_id)
            return None
        document = result.data[0].get("document")
        if isinstance(document, str):
            try:
                document = json.loads(document)
            except ValueError as exc:
                raise StoreError(f"Snapshot row '{self.snapshot_id}' is not JSON") from exc
        if not isinstance(document, dict):
            raise StoreError(f"Snapshot row '{self.snapshot_id}' has no document")
        return document

    @with_retry(max_attempts=3, base_delay=1.0, operation_name="save_snapshot")
    async def save(self, snapshot: Dict[str, Any]) -> None:
        await (
            self.client.table(self.TABLE)
            .upsert({
                "id": self.snapshot_id,
                "document": snapshot,
                "updated_at": utc_now().isoformat(),
            })
            .execute()
        )


# =============================================================================
# FACTORY
# =============================================================================


async def build_store(settings: Any) -> SnapshotStore:
    """Create the store selected by ``settings.store``."""
    if settings.store == "supabase":
        logger.info("[STORE] Using Supabase snapshot store")
        return await SupabaseSnapshotStore.create()
    logger.info("[STORE] Using JSON snapshot store at %s", settings.state_file)
    return JsonFileStore(settings.state_file)


__all__ = [
    "validate_not_empty",
    "validate_positive",
    "SnapshotStore",
    "JsonFileStore",
    "SupabaseConfig",
    "SupabaseSnapshotStore",
    "build_store",
]

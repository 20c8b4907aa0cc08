"""LanceDB storage backend for clip history."""

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import lancedb
import pandas as pd
import pyarrow as pa

from pastego.models.schemas import ClipRecord, ClipType, StoreChange
from .blobs import FileBlobStore
from .classifier import RawPayload, classify
from .errors import NotFound, ValidationError
from .notifier import ChangeNotifier

logger = logging.getLogger(__name__)


def quote(value: str) -> str:
    """Quote a string literal for a LanceDB filter expression."""
    return "'" + str(value).replace("'", "''") + "'"


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


class LanceTable:
    """One LanceDB table with lazy connection and serialized writes."""

    table_name = ""
    schema: pa.Schema = None

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = os.path.expanduser(str(db_path))
        os.makedirs(self.db_path, exist_ok=True)

        self.db = None
        self.table = None
        self._initialized = False
        self._lock = asyncio.Lock()

    async def _ensure_initialized(self):
        """Lazy initialization of LanceDB connection."""
        if self._initialized:
            return

        try:
            self.db = lancedb.connect(self.db_path)
            await self._init_table()
            self._initialized = True
        except Exception as e:
            logger.error(f"Storage initialization error for {self.table_name}: {e}")
            raise

    async def _init_table(self):
        """Open the table, creating and seeding it on first use."""
        if self.table_name not in self.db.table_names():
            self.table = self.db.create_table(self.table_name, schema=self.schema)
            await self._seed()
        else:
            self.table = self.db.open_table(self.table_name)

    async def _seed(self):
        pass

    def _frame(self) -> pd.DataFrame:
        return self.table.to_pandas()

    def _rows(self, column: str, value: Any) -> List[Dict[str, Any]]:
        df = self._frame()
        if df.empty:
            return []
        return df[df[column] == value].to_dict("records")


class HistoryStore(LanceTable):
    """Persisted, deduplicated clip history with pinning.

    Ordering contract: pinned records first, then unpinned, each group by
    ``created_at`` descending.
    """

    table_name = "clips"
    schema = pa.schema(
        [
            pa.field("id", pa.string()),
            pa.field("content", pa.string()),
            pa.field("content_hash", pa.string()),
            pa.field("clip_type", pa.string()),
            pa.field("source_app", pa.string()),
            pa.field("is_pinned", pa.bool_()),
            pa.field("created_at", pa.float64()),
        ]
    )

    def __init__(
        self,
        db_path: Union[str, Path],
        blob_store: Optional[FileBlobStore] = None,
        dedup_window: Optional[float] = None,
        default_limit: int = 100,
        notifier: Optional[ChangeNotifier] = None,
    ):
        super().__init__(db_path)
        self.blob_store = blob_store
        self.dedup_window = dedup_window
        self.default_limit = default_limit
        self.notifier = notifier or ChangeNotifier("history")
        self._last_timestamp = 0.0

    def subscribe(self, callback: Callable[[StoreChange], Any]) -> Callable[[], None]:
        return self.notifier.subscribe(callback)

    def _now(self) -> float:
        # Strictly increasing so refreshes always move a record to the top
        now = max(time.time(), self._last_timestamp + 1e-6)
        self._last_timestamp = now
        return now

    @staticmethod
    def _to_row(record: ClipRecord) -> Dict[str, Any]:
        return {
            "id": record.id,
            "content": record.content,
            "content_hash": record.content_hash,
            "clip_type": record.clip_type.value,
            "source_app": record.source_app,
            "is_pinned": record.is_pinned,
            "created_at": record.created_at,
        }

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> ClipRecord:
        return ClipRecord(
            id=row["id"],
            content=row["content"],
            content_hash=row["content_hash"],
            clip_type=ClipType(row["clip_type"]),
            source_app=_optional_str(row.get("source_app")),
            is_pinned=bool(row["is_pinned"]),
            created_at=float(row["created_at"]),
        )

    def _find_duplicate(self, digest: str, now: float) -> Optional[ClipRecord]:
        """Most recent unpinned record with this hash inside the dedup window."""
        df = self._frame()
        if df.empty:
            return None

        mask = (df["content_hash"] == digest) & (~df["is_pinned"].astype(bool))
        if self.dedup_window is not None:
            mask &= df["created_at"] >= now - self.dedup_window

        matches = df[mask]
        if matches.empty:
            return None
        return self._from_row(matches.nlargest(1, "created_at").iloc[0].to_dict())

    async def insert(self, payload: RawPayload, source_app: Optional[str] = None) -> ClipRecord:
        """Store clipboard content, refreshing an unpinned duplicate instead of adding a row."""
        if isinstance(payload, str) and not payload.strip():
            raise ValidationError("Clipboard content is empty")

        clip_type, digest = classify(payload)
        await self._ensure_initialized()

        async with self._lock:
            now = self._now()
            existing = self._find_duplicate(digest, now)

            if existing is not None:
                self.table.update(
                    where=f"id = {quote(existing.id)}", values={"created_at": now}
                )
                record = existing.model_copy(update={"created_at": now})
                action = "refreshed"
            else:
                if isinstance(payload, bytes):
                    if self.blob_store is None:
                        raise ValidationError("Image content requires a blob store")
                    content = self.blob_store.store(payload)
                else:
                    content = payload

                record = ClipRecord(
                    content=content,
                    content_hash=digest,
                    clip_type=clip_type,
                    source_app=source_app,
                    created_at=now,
                )
                self.table.add([self._to_row(record)])
                action = "inserted"

        logger.debug(f"Clip {action}: {record.id} ({record.clip_type.value})")
        self.notifier.emit(StoreChange(action=action, record=record))
        return record

    async def query(
        self,
        search: Optional[str] = None,
        clip_type: Optional[Union[str, ClipType]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ClipRecord]:
        """Search, filter and paginate the history in display order."""
        if clip_type in (None, "", "all"):
            type_filter = None
        else:
            try:
                type_filter = ClipType(clip_type).value
            except ValueError:
                raise ValidationError(f"Unknown clip type: {clip_type}") from None

        limit = self.default_limit if limit is None else limit
        if limit < 0 or offset < 0:
            raise ValidationError("limit and offset must be non-negative")

        await self._ensure_initialized()
        df = self._frame()
        if df.empty:
            return []

        if search:
            df = df[df["content"].str.contains(search, case=False, regex=False, na=False)]
        if type_filter:
            df = df[df["clip_type"] == type_filter]

        df = df.sort_values(
            ["is_pinned", "created_at"], ascending=[False, False], kind="mergesort"
        )
        page = df.iloc[offset : offset + limit]
        return [self._from_row(row) for row in page.to_dict("records")]

    async def get(self, clip_id: str) -> Optional[ClipRecord]:
        """Get a specific clip by ID."""
        await self._ensure_initialized()
        rows = self._rows("id", clip_id)
        return self._from_row(rows[0]) if rows else None

    async def toggle_pin(self, clip_id: str) -> bool:
        """Flip the pin flag and return the new state; ``created_at`` is untouched."""
        await self._ensure_initialized()

        async with self._lock:
            rows = self._rows("id", clip_id)
            if not rows:
                raise NotFound(f"Clip not found: {clip_id}")

            pinned = not bool(rows[0]["is_pinned"])
            self.table.update(where=f"id = {quote(clip_id)}", values={"is_pinned": pinned})
            record = self._from_row(rows[0]).model_copy(update={"is_pinned": pinned})

        self.notifier.emit(StoreChange(action="pinned", record=record))
        return pinned

    async def delete(self, clip_id: str) -> bool:
        """Remove a clip by ID. Deleting an absent id is a no-op returning False."""
        return bool(await self.delete_many([clip_id]))

    async def delete_many(self, clip_ids: Iterable[str]) -> List[str]:
        """Best-effort batch delete; returns the ids that were actually removed."""
        await self._ensure_initialized()
        removed = []

        async with self._lock:
            df = self._frame()
            present = set(df["id"]) if not df.empty else set()

            for clip_id in clip_ids:
                if clip_id not in present:
                    continue
                try:
                    self.table.delete(f"id = {quote(clip_id)}")
                    removed.append(clip_id)
                    present.discard(clip_id)
                except Exception as e:
                    logger.warning(f"Delete failed for {clip_id}: {e}")

        if removed:
            self.notifier.emit(StoreChange(action="deleted", ids=removed))
        return removed

    async def prune(
        self, keep_days: Optional[float] = None, max_count: Optional[int] = None
    ) -> int:
        """Retention hook: drop old or surplus unpinned records, never pinned ones."""
        await self._ensure_initialized()

        async with self._lock:
            df = self._frame()
            if df.empty:
                return 0

            unpinned = df[~df["is_pinned"].astype(bool)].sort_values(
                "created_at", ascending=False
            )
            doomed = set()
            if keep_days is not None:
                cutoff = time.time() - keep_days * 86400
                doomed.update(unpinned[unpinned["created_at"] < cutoff]["id"])
            if max_count is not None:
                doomed.update(unpinned.iloc[max_count:]["id"])

            for clip_id in doomed:
                self.table.delete(f"id = {quote(clip_id)}")

        if doomed:
            logger.info(f"Pruned {len(doomed)} clips")
            self.notifier.emit(StoreChange(action="pruned", ids=sorted(doomed)))
        return len(doomed)

    async def count(self) -> int:
        await self._ensure_initialized()
        return self.table.count_rows()

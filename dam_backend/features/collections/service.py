"""
Collections service - persistent user-curated sets of assets.

Collections and their membership are stored in SQLite
(`collections` / `collection_assets`).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ...adapters.db.sqlite import Sqlite
from ...shared import ErrorCode, Result, get_logger

logger = get_logger(__name__)

MAX_COLLECTION_NAME_LEN = 80


def _safe_name(value: Any) -> Optional[str]:
    s = str(value or "").strip()
    if not s:
        return None
    if len(s) > MAX_COLLECTION_NAME_LEN:
        s = s[:MAX_COLLECTION_NAME_LEN].strip()
    return s or None


def _safe_collection_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        cid = int(value)
    except (TypeError, ValueError):
        return None
    return cid if cid > 0 else None


@dataclass(frozen=True)
class CollectionSummary:
    """Lightweight summary row for collection listings."""
    id: int
    name: str
    count: int
    created_at: str


class CollectionsService:
    """SQLite-backed collections service."""

    def __init__(self, db: Sqlite):
        self.db = db

    async def list_collections(self) -> Result[List[Dict[str, Any]]]:
        """List collections with item counts, alphabetically."""
        res = await self.db.aquery(
            """
            SELECT c.id, c.name, c.created_at, COUNT(ca.asset_id) AS count
            FROM collections c
            LEFT JOIN collection_assets ca ON ca.collection_id = c.id
            GROUP BY c.id
            ORDER BY c.name COLLATE NOCASE, c.id
            """
        )
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, f"Failed to list collections: {res.error}")
        items = [
            CollectionSummary(int(r["id"]), str(r["name"]), int(r["count"] or 0), str(r.get("created_at") or ""))
            for r in res.data or []
        ]
        return Result.Ok([i.__dict__ for i in items])

    async def create(self, name: str) -> Result[Dict[str, Any]]:
        """Create a new empty collection."""
        cname = _safe_name(name)
        if not cname:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing collection name")
        res = await self.db.aexecute("INSERT INTO collections (name) VALUES (?)", (cname,))
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, f"Failed to create collection: {res.error}")
        return Result.Ok({"id": int(res.data), "name": cname})

    async def exists(self, collection_id: Any) -> Result[bool]:
        cid = _safe_collection_id(collection_id)
        if cid is None:
            return Result.Ok(False)
        res = await self.db.aquery_one("SELECT id FROM collections WHERE id = ?", (cid,))
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, res.error or "Failed to load collection")
        return Result.Ok(bool(res.data))

    async def get_asset_collections(self, asset_id: str) -> Result[List[int]]:
        """Ids of the collections an asset currently belongs to."""
        aid = str(asset_id or "").strip()
        if not aid:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing asset id")
        res = await self.db.aquery(
            "SELECT collection_id FROM collection_assets WHERE asset_id = ? ORDER BY collection_id",
            (aid,),
        )
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, f"Failed to load collections for asset: {res.error}")
        return Result.Ok([int(r["collection_id"]) for r in res.data or []])

    async def add_asset_to_collection(self, asset_id: str, collection_id: Any) -> Result[bool]:
        """Add membership; adding an existing member is a no-op success."""
        cid = _safe_collection_id(collection_id)
        if cid is None:
            return Result.Err(ErrorCode.INVALID_INPUT, f"Invalid collection id: {collection_id}")
        exists = await self.exists(cid)
        if not exists.ok:
            return exists
        if not exists.data:
            return Result.Err(ErrorCode.NOT_FOUND, f"Collection not found: {cid}")
        res = await self.db.aexecute(
            "INSERT OR IGNORE INTO collection_assets (collection_id, asset_id) VALUES (?, ?)",
            (cid, str(asset_id)),
        )
        if not res.ok:
            return Result.Err(ErrorCode.UPDATE_FAILED, f"Failed to add asset to collection {cid}: {res.error}")
        return Result.Ok(True)

    async def remove_asset_from_collection(self, asset_id: str, collection_id: Any) -> Result[bool]:
        """Remove membership; removing a non-member is a no-op success."""
        cid = _safe_collection_id(collection_id)
        if cid is None:
            return Result.Err(ErrorCode.INVALID_INPUT, f"Invalid collection id: {collection_id}")
        res = await self.db.aexecute(
            "DELETE FROM collection_assets WHERE collection_id = ? AND asset_id = ?",
            (cid, str(asset_id)),
        )
        if not res.ok:
            return Result.Err(ErrorCode.UPDATE_FAILED, f"Failed to remove asset from collection {cid}: {res.error}")
        return Result.Ok(True)

    async def delete(self, collection_id: Any) -> Result[bool]:
        cid = _safe_collection_id(collection_id)
        if cid is None:
            return Result.Err(ErrorCode.INVALID_INPUT, "Invalid collection id")
        res = await self.db.aexecute("DELETE FROM collections WHERE id = ?", (cid,))
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, f"Failed to delete collection: {res.error}")
        return Result.Ok(bool(res.data))

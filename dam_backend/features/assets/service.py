"""
Asset records (SQLite-backed).

Only the attributes the metadata workflow reads are stored here; binary
storage and ingestion live elsewhere.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from ...adapters.db.sqlite import Sqlite
from ...shared import ErrorCode, Result, format_timestamp, get_logger

logger = get_logger(__name__)

MAX_TITLE_LEN = 255


def normalize_asset_id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    s = str(value).strip()
    return s or None


def asset_label(asset: Dict[str, Any]) -> str:
    """Human readable label: title, then original filename, then id."""
    for key in ("title", "original_filename", "id"):
        value = str(asset.get(key) or "").strip()
        if value:
            return value
    return ""


class AssetsService:
    def __init__(self, db: Sqlite):
        self.db = db

    async def create(
        self,
        asset_id: str,
        *,
        title: Optional[str] = None,
        original_filename: Optional[str] = None,
        category_id: Optional[int] = None,
    ) -> Result[Dict[str, Any]]:
        aid = normalize_asset_id(asset_id)
        if not aid:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing asset id")
        clean_title = (str(title).strip()[:MAX_TITLE_LEN] or None) if title is not None else None
        res = await self.db.aexecute(
            """
            INSERT INTO assets (id, title, original_filename, category_id)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                original_filename = excluded.original_filename,
                category_id = excluded.category_id,
                deleted_at = NULL
            """,
            (aid, clean_title, original_filename, category_id),
        )
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, res.error or "Failed to create asset")
        return await self.get(aid)

    async def get(self, asset_id: Any) -> Result[Dict[str, Any]]:
        aid = normalize_asset_id(asset_id)
        if not aid:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing asset id")
        res = await self.db.aquery_one(
            """
            SELECT id, title, original_filename, category_id, created_at
            FROM assets
            WHERE id = ? AND deleted_at IS NULL
            """,
            (aid,),
        )
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, res.error or "Failed to load asset")
        if not res.data:
            return Result.Err(ErrorCode.NOT_FOUND, f"Asset not found: {aid}")
        return Result.Ok(res.data)

    async def get_many(self, asset_ids: Iterable[Any]) -> Result[Dict[str, Dict[str, Any]]]:
        ids: List[str] = [a for a in (normalize_asset_id(x) for x in asset_ids) if a]
        if not ids:
            return Result.Ok({})
        out: Dict[str, Dict[str, Any]] = {}
        # Stay under SQLite's default host-parameter limit.
        for start in range(0, len(ids), 500):
            chunk = ids[start:start + 500]
            placeholders = ",".join("?" for _ in chunk)
            res = await self.db.aquery(
                f"SELECT id, title, original_filename, category_id FROM assets "
                f"WHERE deleted_at IS NULL AND id IN ({placeholders})",
                tuple(chunk),
            )
            if not res.ok:
                return Result.Err(ErrorCode.DB_ERROR, res.error or "Failed to load assets")
            for row in res.data or []:
                out[str(row["id"])] = row
        return Result.Ok(out)

    async def soft_delete(self, asset_id: Any) -> Result[bool]:
        aid = normalize_asset_id(asset_id)
        if not aid:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing asset id")
        res = await self.db.aexecute(
            "UPDATE assets SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
            (format_timestamp(), aid),
        )
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, res.error or "Failed to delete asset")
        if not res.data:
            return Result.Err(ErrorCode.NOT_FOUND, f"Asset not found: {aid}")
        logger.info("Asset soft-deleted: %s", aid)
        return Result.Ok(True)

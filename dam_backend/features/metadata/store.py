"""
Asset metadata store.

Values are append-only: writing a field marks the previous row superseded
and inserts a new one, so prior values stay queryable. Clearing appends a
cleared row rather than deleting anything.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

from ...adapters.db.sqlite import Sqlite
from ...shared import ErrorCode, Result, format_timestamp, get_logger
from .fields import FieldDefinition

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 100


def _field_id(field: FieldDefinition | int) -> int:
    if isinstance(field, FieldDefinition):
        return int(field.id)
    return int(field)


def _encode(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _decode(raw: Any) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


class _WriteAborted(Exception):
    """Raised inside a transaction to roll it back and surface `result`."""

    def __init__(self, result: Result[Any]):
        super().__init__(result.error)
        self.result = result


def _is_cleared(value: Any) -> bool:
    return value is None or (isinstance(value, (list, tuple)) and len(value) == 0)


class AssetMetadataStore:
    def __init__(self, db: Sqlite):
        self.db = db

    async def get_value(self, asset_id: str, field: FieldDefinition | int) -> Result[Any]:
        """Current value of a field on an asset: None when unset, the cleared value (None or []) after a clear."""
        res = await self.db.aquery_one(
            """
            SELECT value_json
            FROM asset_metadata
            WHERE asset_id = ? AND field_id = ? AND superseded_at IS NULL
            ORDER BY id DESC
            LIMIT 1
            """,
            (str(asset_id), _field_id(field)),
        )
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, res.error or "Failed to read metadata")
        row = res.data
        if not row:
            return Result.Ok(None)
        return Result.Ok(_decode(row.get("value_json")))

    async def set_value(
        self,
        asset_id: str,
        field: FieldDefinition | int,
        value: Any,
        *,
        audit_preserve: bool = True,
        operation: str = "set",
        changed_by: Optional[str] = None,
        source: str = "user",
    ) -> Result[Dict[str, Any]]:
        """
        Write a new current value for `field` on `asset_id`.

        `None` or an empty list clears the field; an empty list is kept as
        written so multi-valued fields read back as `[]`. With `audit_preserve`
        the previous row is kept (superseded) and a history row records
        old and new values.
        """
        fid = _field_id(field)
        aid = str(asset_id)
        cleared = _is_cleared(value)
        new_json = _encode(value)
        stamp = format_timestamp()

        try:
            row_id, old_json = await self._write_row(aid, fid, new_json, cleared, stamp, audit_preserve, operation, changed_by, source)
        except _WriteAborted as exc:
            logger.warning("Metadata write rolled back for asset %s field %s: %s", aid, fid, exc.result.error)
            return exc.result

        return Result.Ok(
            {
                "asset_id": aid,
                "field_id": fid,
                "row_id": row_id,
                "cleared": cleared,
                "old_value": _decode(old_json),
                "new_value": _decode(new_json),
            }
        )

    async def _write_row(
        self,
        aid: str,
        fid: int,
        new_json: Optional[str],
        cleared: bool,
        stamp: str,
        audit_preserve: bool,
        operation: str,
        changed_by: Optional[str],
        source: str,
    ) -> Tuple[int, Optional[str]]:
        async with self.db.atransaction() as tx:
            if not tx.ok:
                raise _WriteAborted(Result.Err(tx.code, tx.error or "Failed to begin transaction"))

            current = await self.db.aquery_one(
                """
                SELECT id, value_json
                FROM asset_metadata
                WHERE asset_id = ? AND field_id = ? AND superseded_at IS NULL
                ORDER BY id DESC
                LIMIT 1
                """,
                (aid, fid),
            )
            if not current.ok:
                raise _WriteAborted(Result.Err(ErrorCode.DB_ERROR, current.error or "Failed to read metadata"))
            previous = current.data or {}
            old_json = previous.get("value_json")

            if previous:
                if audit_preserve:
                    step = await self.db.aexecute(
                        "UPDATE asset_metadata SET superseded_at = ? WHERE id = ?",
                        (stamp, previous["id"]),
                    )
                else:
                    step = await self.db.aexecute("DELETE FROM asset_metadata WHERE id = ?", (previous["id"],))
                if not step.ok:
                    raise _WriteAborted(Result.Err(ErrorCode.UPDATE_FAILED, step.error or "Failed to supersede value"))

            inserted = await self.db.aexecute(
                """
                INSERT INTO asset_metadata (asset_id, field_id, value_json, is_cleared, source, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (aid, fid, new_json, 1 if cleared else 0, source, stamp),
            )
            if not inserted.ok:
                raise _WriteAborted(Result.Err(ErrorCode.UPDATE_FAILED, inserted.error or "Failed to write value"))
            row_id = int(inserted.data or 0)

            if audit_preserve:
                hist = await self.db.aexecute(
                    """
                    INSERT INTO asset_metadata_history
                        (asset_metadata_id, asset_id, field_id, old_value_json, new_value_json,
                         operation, source, changed_by, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (row_id, aid, fid, old_json, new_json, str(operation or "set"), source, changed_by, stamp),
                )
                if not hist.ok:
                    raise _WriteAborted(Result.Err(ErrorCode.UPDATE_FAILED, hist.error or "Failed to write history"))

        if not tx.ok:
            raise _WriteAborted(Result.Err(tx.code, tx.error or "Commit failed"))
        return row_id, old_json

    async def history(self, asset_id: str, field: FieldDefinition | int, limit: int = DEFAULT_HISTORY_LIMIT) -> Result[List[Dict[str, Any]]]:
        """Audit trail for a field, newest first."""
        res = await self.db.aquery(
            """
            SELECT id, asset_metadata_id, old_value_json, new_value_json, operation, source, changed_by, created_at
            FROM asset_metadata_history
            WHERE asset_id = ? AND field_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (str(asset_id), _field_id(field), max(1, int(limit))),
        )
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, res.error or "Failed to read history")
        out: List[Dict[str, Any]] = []
        for row in res.data or []:
            out.append(
                {
                    "id": row.get("id"),
                    "row_id": row.get("asset_metadata_id"),
                    "old_value": _decode(row.get("old_value_json")),
                    "new_value": _decode(row.get("new_value_json")),
                    "operation": row.get("operation"),
                    "source": row.get("source"),
                    "changed_by": row.get("changed_by"),
                    "created_at": row.get("created_at"),
                }
            )
        return Result.Ok(out)

    async def all_versions(self, asset_id: str, field: FieldDefinition | int) -> Result[List[Dict[str, Any]]]:
        """Every stored row for a field, oldest first, including superseded ones."""
        res = await self.db.aquery(
            """
            SELECT id, value_json, is_cleared, created_at, superseded_at
            FROM asset_metadata
            WHERE asset_id = ? AND field_id = ?
            ORDER BY id ASC
            """,
            (str(asset_id), _field_id(field)),
        )
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, res.error or "Failed to read metadata")
        return Result.Ok(
            [
                {
                    "id": row.get("id"),
                    "value": _decode(row.get("value_json")),
                    "cleared": bool(row.get("is_cleared")),
                    "created_at": row.get("created_at"),
                    "superseded_at": row.get("superseded_at"),
                }
                for row in res.data or []
            ]
        )

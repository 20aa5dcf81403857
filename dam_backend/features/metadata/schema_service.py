"""
Metadata schema service: field definitions and per-category schema groups.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional

from ...adapters.db.sqlite import Sqlite
from ...shared import ErrorCode, Result, get_logger
from ..assets.service import AssetsService
from .fields import FieldDefinition, FieldType, SchemaGroup, parse_field_type

logger = get_logger(__name__)

_CATEGORY_FIELDS_SQL = """
SELECT
    f.id, f.key, f.display_label, f.type, f.options, f.readonly,
    f.population_mode, f.is_user_editable, f.is_internal_only,
    cf.group_key, cf.group_label, cf.sort_order, cf.is_edit_hidden, cf.is_readonly
FROM category_fields cf
JOIN metadata_fields f ON f.id = cf.field_id
WHERE cf.category_id = ?
"""


class MetadataSchemaService:
    """Reads (and, for administration and fixtures, writes) metadata schemas."""

    def __init__(self, db: Sqlite, assets: Optional[AssetsService] = None):
        self.db = db
        self.assets = assets or AssetsService(db)

    # ----------------------------------------------------------------- reads

    async def get_asset(self, asset_id: Any) -> Result[Dict[str, Any]]:
        return await self.assets.get(asset_id)

    async def _category_field_rows(self, category_id: int, extra_sql: str = "", params: tuple = ()) -> Result[List[FieldDefinition]]:
        res = await self.db.aquery(
            _CATEGORY_FIELDS_SQL + extra_sql + " ORDER BY cf.group_key, cf.sort_order, f.id",
            (int(category_id), *params),
        )
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, res.error or "Failed to load category schema")
        fields: List[FieldDefinition] = []
        for row in res.data or []:
            fdef = FieldDefinition.from_row(row)
            if fdef is None:
                logger.warning("Skipping field with unknown type: %s (%s)", row.get("key"), row.get("type"))
                continue
            fields.append(fdef)
        return Result.Ok(fields)

    async def get_metadata_schema(self, category_id: Any) -> Result[Dict[str, Any]]:
        """Return `{category_id, groups: [{key, label, fields}]}` for a category."""
        try:
            cid = int(category_id)
        except (TypeError, ValueError):
            return Result.Err(ErrorCode.INVALID_INPUT, "Invalid category id")

        rows = await self._category_field_rows(cid)
        if not rows.ok:
            return Result.Err(rows.code, rows.error or "Failed to load schema")

        groups: Dict[str, SchemaGroup] = {}
        for fdef in rows.data or []:
            group = groups.get(fdef.group_key)
            if group is None:
                group = SchemaGroup(key=fdef.group_key, label=fdef.group_label)
                groups[fdef.group_key] = group
            group.fields.append(fdef)
        return Result.Ok({"category_id": cid, "groups": list(groups.values())})

    async def get_field_for_category(self, category_id: Any, key: str) -> Result[FieldDefinition]:
        """Look up one field by key as exposed by a category."""
        if category_id is None:
            return Result.Err(ErrorCode.NOT_FOUND, "Asset has no category")
        try:
            cid = int(category_id)
        except (TypeError, ValueError):
            return Result.Err(ErrorCode.INVALID_INPUT, "Invalid category id")
        rows = await self._category_field_rows(cid, " AND f.key = ?", (str(key or ""),))
        if not rows.ok:
            return Result.Err(rows.code, rows.error or "Failed to load field")
        if not rows.data:
            return Result.Err(ErrorCode.NOT_FOUND, f"Field '{key}' is not available for this category")
        return Result.Ok(rows.data[0])

    async def get_editable_fields(self, asset_id: Any) -> Result[List[FieldDefinition]]:
        """Fields shown on the asset's edit form (edit-hidden fields excluded)."""
        asset = await self.get_asset(asset_id)
        if not asset.ok:
            return Result.Err(asset.code, asset.error or "Asset not found")
        category_id = (asset.data or {}).get("category_id")
        if category_id is None:
            return Result.Err(ErrorCode.NOT_FOUND, "Asset has no category")
        rows = await self._category_field_rows(int(category_id), " AND COALESCE(cf.is_edit_hidden, 0) = 0")
        if not rows.ok:
            return rows
        return Result.Ok(list(rows.data or []))

    # ---------------------------------------------------------------- writes

    async def create_category(self, name: str) -> Result[int]:
        cname = str(name or "").strip()
        if not cname:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing category name")
        res = await self.db.aexecute("INSERT INTO categories (name) VALUES (?)", (cname,))
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, res.error or "Failed to create category")
        return Result.Ok(int(res.data))

    async def create_field(
        self,
        key: str,
        label: str,
        field_type: FieldType | str,
        *,
        options: Optional[Iterable[str]] = None,
        readonly: bool = False,
        population_mode: str = "manual",
        is_user_editable: bool = True,
        is_internal_only: bool = False,
    ) -> Result[int]:
        fkey = str(key or "").strip()
        if not fkey:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing field key")
        ftype = parse_field_type(field_type.value if isinstance(field_type, FieldType) else field_type)
        if ftype is None:
            return Result.Err(ErrorCode.INVALID_INPUT, f"Unknown field type: {field_type}")
        res = await self.db.aexecute(
            """
            INSERT INTO metadata_fields
                (key, display_label, type, options, readonly, population_mode, is_user_editable, is_internal_only)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                fkey,
                str(label or fkey),
                ftype.value,
                json.dumps(list(options or []), ensure_ascii=False),
                1 if readonly else 0,
                str(population_mode or "manual"),
                1 if is_user_editable else 0,
                1 if is_internal_only else 0,
            ),
        )
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, res.error or "Failed to create field")
        return Result.Ok(int(res.data))

    async def attach_field(
        self,
        category_id: int,
        field_id: int,
        *,
        group_key: str = "general",
        group_label: str = "General",
        sort_order: int = 0,
        is_edit_hidden: bool = False,
        is_readonly: bool = False,
    ) -> Result[bool]:
        res = await self.db.aexecute(
            """
            INSERT OR REPLACE INTO category_fields
                (category_id, field_id, group_key, group_label, sort_order, is_edit_hidden, is_readonly)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(category_id),
                int(field_id),
                group_key,
                group_label,
                int(sort_order),
                1 if is_edit_hidden else 0,
                1 if is_readonly else 0,
            ),
        )
        if not res.ok:
            return Result.Err(ErrorCode.DB_ERROR, res.error or "Failed to attach field")
        return Result.Ok(True)

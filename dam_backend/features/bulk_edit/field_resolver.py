"""
Field resolver: which fields can be bulk-edited, judged from one reference asset.
"""

from __future__ import annotations

from typing import Any, List

from ...shared import get_logger
from ..metadata.fields import COLLECTION_FIELD_KEY, FieldDefinition
from ..metadata.schema_service import MetadataSchemaService
from ..metadata.store import AssetMetadataStore
from .models import FieldOption, RegularFieldSelector, ResolvedFields

logger = get_logger(__name__)


def collections_visible(schema: dict) -> bool:
    for group in schema.get("groups") or []:
        for fdef in getattr(group, "fields", None) or []:
            if fdef.key == COLLECTION_FIELD_KEY and not fdef.is_edit_hidden:
                return True
    return False


class FieldResolver:
    def __init__(self, schema: MetadataSchemaService, store: AssetMetadataStore):
        self.schema = schema
        self.store = store

    async def resolve_fields(self, reference_asset_id: Any) -> ResolvedFields:
        """
        Never fails: when the asset or its schema cannot be loaded the
        result is empty and the collections field is hidden.
        """
        editable = await self.schema.get_editable_fields(reference_asset_id)
        if not editable.ok:
            logger.warning("Field resolution failed for asset %s: %s", reference_asset_id, editable.error)
            return ResolvedFields()

        asset = await self.schema.get_asset(reference_asset_id)
        category_id = (asset.data or {}).get("category_id") if asset.ok else None
        schema = await self.schema.get_metadata_schema(category_id) if category_id is not None else None
        if schema is None or not schema.ok:
            logger.warning(
                "Schema load failed for asset %s: %s",
                reference_asset_id,
                schema.error if schema is not None else "no category",
            )
            return ResolvedFields()

        options: List[FieldOption] = []
        for fdef in editable.data or []:
            if fdef.key == COLLECTION_FIELD_KEY:
                continue
            if not fdef.is_bulk_editable:
                continue
            current = await self._current_value(reference_asset_id, fdef)
            options.append(FieldOption(RegularFieldSelector.from_field(fdef), current))

        return ResolvedFields(
            fields=tuple(options),
            collections_field_visible=collections_visible(schema.data or {}),
        )

    async def _current_value(self, asset_id: Any, fdef: FieldDefinition) -> Any:
        res = await self.store.get_value(str(asset_id), fdef)
        if not res.ok:
            logger.debug("Could not read current value of %s on %s: %s", fdef.key, asset_id, res.error)
            return [] if fdef.is_multi_valued else None
        if res.data is None and fdef.is_multi_valued:
            return []
        return res.data

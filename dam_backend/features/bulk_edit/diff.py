"""
Diff computer: what a mutation intent would change, asset by asset.

Per-asset lookups run concurrently (bounded) and each has its own timeout;
a failure on one asset is recorded against that asset only.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ...config import BULK_ASSET_TIMEOUT, BULK_MAX_CONCURRENCY
from ...shared import ErrorCode, Result, get_logger, sanitize_error_message
from ..assets.service import asset_label
from ..collections.service import CollectionsService
from ..metadata.fields import FieldDefinition
from ..metadata.schema_service import MetadataSchemaService
from ..metadata.store import AssetMetadataStore
from .field_resolver import collections_visible
from .models import (
    CollectionsFieldSelector,
    IdListValue,
    MutationIntent,
    OperationType,
    PreviewAssetError,
    PreviewChange,
    PreviewEntry,
    PreviewResult,
    PreviewWarning,
    RegularFieldSelector,
)
from .values import (
    display_collections,
    display_value,
    empty_value,
    ids_as_set,
    is_empty,
    storage_value,
    unknown_options,
    values_equal,
)

logger = get_logger(__name__)

UNCHANGED_WARNING = "already has this value"


@dataclass(frozen=True)
class _AssetDiff:
    """Outcome for one asset: exactly one of entry / errors / warning is set."""

    asset_id: str
    entry: Optional[PreviewEntry] = None
    errors: Tuple[str, ...] = ()
    label: str = ""
    unchanged: bool = False


async def check_field_on_asset(
    schema: MetadataSchemaService,
    asset: Dict[str, Any],
    selector: RegularFieldSelector,
    value: Any = None,
) -> Result[FieldDefinition]:
    """
    The asset's own definition of the selected field, if it may be edited there.

    When `value` is given it must still fit the field's current options.
    """
    category_id = asset.get("category_id")
    if category_id is None:
        return Result.Err(ErrorCode.VALIDATION_ERROR, "Asset has no category")
    fres = await schema.get_field_for_category(category_id, selector.key)
    if not fres.ok:
        if fres.code == ErrorCode.NOT_FOUND.value:
            return Result.Err(ErrorCode.VALIDATION_ERROR, f"Field '{selector.label}' is not available for this asset's category")
        return Result.Err(fres.code, fres.error or "Failed to load field")
    fdef = fres.data
    if fdef is None or not fdef.is_bulk_editable or fdef.is_edit_hidden:
        return Result.Err(ErrorCode.VALIDATION_ERROR, f"Field '{selector.label}' is read-only for this asset's category")
    if fdef.id != selector.field_id or fdef.type != selector.field_type:
        return Result.Err(ErrorCode.VALIDATION_ERROR, f"Field '{selector.label}' changed since it was selected")
    retired = unknown_options(fdef.type, fdef.options, value)
    if retired:
        return Result.Err(
            ErrorCode.VALIDATION_ERROR,
            f"Option no longer available for '{selector.label}': {', '.join(retired)}",
        )
    return Result.Ok(fdef)


async def check_collections_on_asset(schema: MetadataSchemaService, asset: Dict[str, Any]) -> Result[bool]:
    """Collections can only be changed where the asset's category shows the collection field."""
    category_id = asset.get("category_id")
    if category_id is None:
        return Result.Err(ErrorCode.VALIDATION_ERROR, "Asset has no category")
    res = await schema.get_metadata_schema(category_id)
    if not res.ok:
        return Result.Err(res.code, res.error or "Failed to load schema")
    if not collections_visible(res.data or {}):
        return Result.Err(
            ErrorCode.VALIDATION_ERROR,
            f"Field '{CollectionsFieldSelector.label}' is not available for this asset's category",
        )
    return Result.Ok(True)


class DiffComputer:
    def __init__(
        self,
        schema: MetadataSchemaService,
        store: AssetMetadataStore,
        collections: CollectionsService,
        *,
        max_concurrency: Optional[int] = None,
        asset_timeout: Optional[float] = None,
    ):
        self.schema = schema
        self.store = store
        self.collections = collections
        self._max_concurrency = max(1, int(max_concurrency or BULK_MAX_CONCURRENCY))
        self._asset_timeout = float(asset_timeout or BULK_ASSET_TIMEOUT)

    async def compute(self, intent: MutationIntent) -> PreviewResult:
        collection_names: Dict[int, str] = {}
        missing_collections: Tuple[int, ...] = ()
        if isinstance(intent.field, CollectionsFieldSelector):
            listed = await self.collections.list_collections()
            if listed.ok:
                collection_names = {int(c["id"]): str(c["name"]) for c in listed.data or []}
                if isinstance(intent.value, IdListValue):
                    missing_collections = tuple(i for i in intent.value.ids if i not in collection_names)
            else:
                logger.warning("Could not list collections for preview: %s", listed.error)

        sem = asyncio.Semaphore(self._max_concurrency)

        async def _run(asset_id: str) -> _AssetDiff:
            async with sem:
                try:
                    return await asyncio.wait_for(
                        self._diff_asset(intent, asset_id, collection_names, missing_collections),
                        timeout=self._asset_timeout,
                    )
                except asyncio.TimeoutError:
                    return _AssetDiff(asset_id, errors=(f"Timed out after {self._asset_timeout:g}s",), label=asset_id)
                except Exception as exc:
                    logger.exception("Preview failed for asset %s", asset_id)
                    return _AssetDiff(
                        asset_id,
                        errors=(sanitize_error_message(exc, "Failed to evaluate asset"),),
                        label=asset_id,
                    )

        diffs = await asyncio.gather(*(_run(aid) for aid in intent.asset_ids))

        result = PreviewResult(total_assets=len(intent.asset_ids))
        for diff in diffs:
            if diff.errors:
                result.errored.append(PreviewAssetError(diff.asset_id, diff.label or diff.asset_id, diff.errors))
            elif diff.entry is not None:
                result.affected.append(diff.entry)
            else:
                result.unaffected.append(diff.asset_id)
                if diff.unchanged:
                    result.warnings.append(PreviewWarning(diff.asset_id, UNCHANGED_WARNING))
        return result

    async def _diff_asset(
        self,
        intent: MutationIntent,
        asset_id: str,
        collection_names: Dict[int, str],
        missing_collections: Tuple[int, ...],
    ) -> _AssetDiff:
        asset = await self.schema.get_asset(asset_id)
        if not asset.ok:
            reason = "Asset not found" if asset.code == ErrorCode.NOT_FOUND.value else (asset.error or "Failed to load asset")
            return _AssetDiff(asset_id, errors=(reason,), label=asset_id)
        record = asset.data or {}
        label = asset_label(record) or asset_id

        selector = intent.field
        if isinstance(selector, CollectionsFieldSelector):
            return await self._diff_collections(intent, record, asset_id, label, collection_names, missing_collections)
        if isinstance(selector, RegularFieldSelector):
            return await self._diff_regular(intent, selector, record, asset_id, label)
        raise AssertionError(f"unhandled field selector: {selector!r}")

    async def _diff_regular(
        self,
        intent: MutationIntent,
        selector: RegularFieldSelector,
        record: Dict[str, Any],
        asset_id: str,
        label: str,
    ) -> _AssetDiff:
        proposed = None if intent.operation == OperationType.CLEAR else storage_value(intent.value)
        checked = await check_field_on_asset(self.schema, record, selector, proposed)
        if not checked.ok:
            return _AssetDiff(asset_id, errors=(checked.error or "Field not available",), label=label)

        current = await self.store.get_value(asset_id, selector.field_id)
        if not current.ok:
            return _AssetDiff(asset_id, errors=(current.error or "Failed to read current value",), label=label)
        old_value = current.data

        if intent.operation == OperationType.CLEAR:
            if is_empty(selector.field_type, old_value):
                return _AssetDiff(asset_id, label=label, unchanged=True)
            new_value = empty_value(selector.field_type)
        else:
            new_value = proposed
            if values_equal(selector.field_type, old_value, new_value):
                return _AssetDiff(asset_id, label=label, unchanged=True)

        change = PreviewChange(selector.label, display_value(old_value), display_value(new_value))
        return _AssetDiff(asset_id, entry=PreviewEntry(asset_id, label, (change,)), label=label)

    async def _diff_collections(
        self,
        intent: MutationIntent,
        record: Dict[str, Any],
        asset_id: str,
        label: str,
        collection_names: Dict[int, str],
        missing_collections: Tuple[int, ...],
    ) -> _AssetDiff:
        checked = await check_collections_on_asset(self.schema, record)
        if not checked.ok:
            return _AssetDiff(asset_id, errors=(checked.error or "Field not available",), label=label)

        if missing_collections:
            missing = ", ".join(str(i) for i in missing_collections)
            return _AssetDiff(asset_id, errors=(f"Collection not found: {missing}",), label=label)

        current = await self.collections.get_asset_collections(asset_id)
        if not current.ok:
            return _AssetDiff(asset_id, errors=(current.error or "Failed to load collections",), label=label)

        current_ids = sorted(ids_as_set(current.data))
        desired_ids = [] if intent.operation == OperationType.CLEAR else sorted(ids_as_set(storage_value(intent.value)))
        if set(current_ids) == set(desired_ids):
            return _AssetDiff(asset_id, label=label, unchanged=True)

        change = PreviewChange(
            CollectionsFieldSelector.label,
            display_collections(current_ids, collection_names),
            display_collections(desired_ids, collection_names),
        )
        return _AssetDiff(asset_id, entry=PreviewEntry(asset_id, label, (change,)), label=label)

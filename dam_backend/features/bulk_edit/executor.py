"""
Mutation executor: applies the intent carried by a preview token.

Nothing is read from workflow state; the token is the only input. Each
target asset is processed on its own and yields exactly one outcome.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Tuple

from ...config import BULK_ASSET_TIMEOUT, BULK_MAX_CONCURRENCY
from ...shared import ErrorCode, Result, get_logger, log_structured, log_success, sanitize_error_message, timer
from ..collections.service import CollectionsService
from ..metadata.schema_service import MetadataSchemaService
from ..metadata.store import AssetMetadataStore
from .diff import check_collections_on_asset, check_field_on_asset
from .models import (
    AssetOutcome,
    CollectionsFieldSelector,
    ExecutionResult,
    MutationIntent,
    OperationType,
    RegularFieldSelector,
)
from .token import PreviewTokenCodec, TokenReplayGuard
from .values import empty_value, ids_as_set, storage_value

logger = get_logger(__name__)


class MutationExecutor:
    def __init__(
        self,
        codec: PreviewTokenCodec,
        replay_guard: Optional[TokenReplayGuard],
        schema: MetadataSchemaService,
        store: AssetMetadataStore,
        collections: CollectionsService,
        *,
        max_concurrency: Optional[int] = None,
        asset_timeout: Optional[float] = None,
    ):
        self.codec = codec
        self.replay_guard = replay_guard
        self.schema = schema
        self.store = store
        self.collections = collections
        self._max_concurrency = max(1, int(max_concurrency or BULK_MAX_CONCURRENCY))
        self._asset_timeout = float(asset_timeout or BULK_ASSET_TIMEOUT)

    async def execute(self, token: str, *, changed_by: Optional[str] = None) -> Result[ExecutionResult]:
        """
        Decode `token` and apply it to every target.

        Token problems (malformed, tampered, expired, replayed) fail the
        whole call; anything that goes wrong for a single asset is
        reported in that asset's outcome.
        """
        decoded = self.codec.decode(token)
        if not decoded.ok or decoded.data is None:
            logger.warning("Rejected preview token: %s", decoded.error)
            return Result.Err(decoded.code, decoded.error or "Invalid preview token", **decoded.meta)
        if self.replay_guard is not None:
            consumed = await self.replay_guard.consume(decoded.data.nonce, decoded.data.expires_at)
            if not consumed.ok:
                logger.warning("Preview token not consumable: %s", consumed.error)
                return Result.Err(consumed.code, consumed.error or "Preview token already used")

        intent = decoded.data.intent
        with timer("bulk execute", logger):
            outcomes = await self._apply_all(intent, changed_by)
        result = ExecutionResult(total_assets=len(intent.asset_ids), outcomes=tuple(outcomes))

        log_structured(
            logger,
            logging.INFO,
            "Bulk metadata execution finished",
            operation=intent.operation.value,
            field=intent.field.key,
            total=result.total_assets,
            successes=len(result.successes),
            failures=len(result.failures),
        )
        if not result.failures:
            log_success(logger, f"Bulk {intent.operation.value} on '{intent.field.key}' applied to {result.total_assets} asset(s)")
        return Result.Ok(result)

    async def _apply_all(self, intent: MutationIntent, changed_by: Optional[str]) -> List[AssetOutcome]:
        sem = asyncio.Semaphore(self._max_concurrency)

        async def _run(asset_id: str) -> AssetOutcome:
            async with sem:
                try:
                    return await asyncio.wait_for(self._apply_one(intent, asset_id, changed_by), timeout=self._asset_timeout)
                except asyncio.TimeoutError:
                    return AssetOutcome.failure(asset_id, f"Timed out after {self._asset_timeout:g}s", ErrorCode.TIMEOUT.value)
                except Exception as exc:
                    logger.exception("Bulk update failed for asset %s", asset_id)
                    return AssetOutcome.failure(
                        asset_id,
                        sanitize_error_message(exc, "Update failed"),
                        ErrorCode.UPDATE_FAILED.value,
                    )

        # gather keeps input order regardless of completion order.
        return list(await asyncio.gather(*(_run(aid) for aid in intent.asset_ids)))

    async def _apply_one(self, intent: MutationIntent, asset_id: str, changed_by: Optional[str]) -> AssetOutcome:
        async with self.schema.db.lock_for_asset(asset_id):
            asset = await self.schema.get_asset(asset_id)
            if not asset.ok:
                reason = "Asset not found" if asset.code == ErrorCode.NOT_FOUND.value else (asset.error or "Failed to load asset")
                return AssetOutcome.failure(asset_id, reason, asset.code)

            selector = intent.field
            if isinstance(selector, CollectionsFieldSelector):
                return await self._sync_collections(intent, asset.data or {}, asset_id)
            if isinstance(selector, RegularFieldSelector):
                return await self._write_field(intent, selector, asset.data or {}, asset_id, changed_by)
            raise AssertionError(f"unhandled field selector: {selector!r}")

    async def _write_field(
        self,
        intent: MutationIntent,
        selector: RegularFieldSelector,
        asset: dict,
        asset_id: str,
        changed_by: Optional[str],
    ) -> AssetOutcome:
        value = empty_value(selector.field_type) if intent.operation == OperationType.CLEAR else storage_value(intent.value)
        checked = await check_field_on_asset(self.schema, asset, selector, value)
        if not checked.ok:
            return AssetOutcome.failure(asset_id, checked.error or "Field not available", checked.code)

        written = await self.store.set_value(
            asset_id,
            selector.field_id,
            value,
            audit_preserve=True,
            operation=intent.operation.value,
            changed_by=changed_by,
            source="bulk_edit",
        )
        if not written.ok:
            return AssetOutcome.failure(asset_id, written.error or "Update failed", written.code)
        return AssetOutcome.success(asset_id)

    async def _sync_collections(self, intent: MutationIntent, asset: dict, asset_id: str) -> AssetOutcome:
        """Recompute membership now and reconcile it with the desired set."""
        checked = await check_collections_on_asset(self.schema, asset)
        if not checked.ok:
            return AssetOutcome.failure(asset_id, checked.error or "Field not available", checked.code)

        current = await self.collections.get_asset_collections(asset_id)
        if not current.ok:
            return AssetOutcome.failure(asset_id, current.error or "Failed to load collections", current.code)

        current_ids = ids_as_set(current.data)
        desired_ids = frozenset() if intent.operation == OperationType.CLEAR else ids_as_set(storage_value(intent.value))
        to_remove = sorted(current_ids - desired_ids)
        to_add = sorted(desired_ids - current_ids)

        added: List[int] = []
        removed: List[int] = []
        errors: List[Tuple[int, str, str]] = []

        for cid in to_remove:
            res = await self.collections.remove_asset_from_collection(asset_id, cid)
            if res.ok:
                removed.append(cid)
            else:
                errors.append((cid, res.error or "remove failed", res.code))
        for cid in to_add:
            res = await self.collections.add_asset_to_collection(asset_id, cid)
            if res.ok:
                added.append(cid)
            else:
                errors.append((cid, res.error or "add failed", res.code))

        if errors:
            reason = "; ".join(f"collection {cid}: {msg}" for cid, msg, _ in errors)
            return AssetOutcome.failure(asset_id, reason, errors[0][2], added=tuple(added), removed=tuple(removed))
        return AssetOutcome.success(asset_id, added=tuple(added), removed=tuple(removed))

"""
Bulk edit service: entry points for interactive workflows and for the
stateless preview/execute HTTP flow.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from ...config import BULK_MAX_TARGETS
from ...shared import ErrorCode, Result, get_logger, timer
from ..assets.service import normalize_asset_id
from .diff import DiffComputer
from .executor import MutationExecutor
from .field_resolver import FieldResolver
from .models import ExecutionResult, MutationIntent, ResolvedFields, parse_operation
from .token import PreviewTokenCodec
from .values import build_mutation_value
from .workflow import BulkEditWorkflow

logger = get_logger(__name__)


def normalize_target_ids(raw: Any, max_targets: Optional[int] = None) -> Result[tuple]:
    """Ordered, de-duplicated, non-empty list of asset ids."""
    limit = int(max_targets or BULK_MAX_TARGETS)
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Iterable):
        return Result.Err(ErrorCode.INVALID_INPUT, "asset_ids must be a list")
    out: List[str] = []
    seen = set()
    for item in raw:
        aid = normalize_asset_id(item)
        if aid is None:
            return Result.Err(ErrorCode.INVALID_INPUT, f"Invalid asset id: {item!r}")
        if aid in seen:
            continue
        seen.add(aid)
        out.append(aid)
    if not out:
        return Result.Err(ErrorCode.INVALID_INPUT, "Select at least one asset")
    if len(out) > limit:
        return Result.Err(ErrorCode.INVALID_INPUT, f"Too many assets selected (max {limit})", max_targets=limit)
    return Result.Ok(tuple(out))


class BulkEditService:
    def __init__(
        self,
        resolver: FieldResolver,
        diff: DiffComputer,
        codec: PreviewTokenCodec,
        executor: MutationExecutor,
        *,
        max_targets: Optional[int] = None,
    ):
        self.resolver = resolver
        self.diff = diff
        self.codec = codec
        self.executor = executor
        self._max_targets = int(max_targets or BULK_MAX_TARGETS)

    def _new_workflow(self, target_ids: tuple, changed_by: Optional[str]) -> BulkEditWorkflow:
        return BulkEditWorkflow(
            target_ids,
            resolver=self.resolver,
            diff=self.diff,
            codec=self.codec,
            executor=self.executor,
            changed_by=changed_by,
        )

    def start(self, target_ids: Any, *, changed_by: Optional[str] = None) -> Result[BulkEditWorkflow]:
        targets = normalize_target_ids(target_ids, self._max_targets)
        if not targets.ok or not targets.data:
            return Result.Err(targets.code, targets.error or "Invalid targets", **targets.meta)
        return Result.Ok(self._new_workflow(targets.data, changed_by))

    async def resume(self, token: str, *, changed_by: Optional[str] = None) -> Result[BulkEditWorkflow]:
        """Rebuild a workflow from a preview token alone, parked at the preview stage."""
        decoded = self.codec.decode(token)
        if not decoded.ok or decoded.data is None:
            return Result.Err(decoded.code, decoded.error or "Invalid preview token", **decoded.meta)
        intent = decoded.data.intent
        workflow = self._new_workflow(intent.asset_ids, changed_by)
        workflow.resolved = await self.resolver.resolve_fields(workflow.reference_asset_id)
        preview = await self.diff.compute(intent)
        workflow.restore_preview(intent, preview, token)
        return Result.Ok(workflow)

    async def editable_fields(self, asset_id: Any) -> ResolvedFields:
        return await self.resolver.resolve_fields(asset_id)

    async def preview(self, asset_ids: Any, operation: Any, field_key: Any, raw_value: Any = None) -> Result[Dict[str, Any]]:
        """
        Stateless preview. The field is resolved against the first asset.

        The token is withheld when the preview reports errors, so a
        preview with errors can never be executed.
        """
        targets = normalize_target_ids(asset_ids, self._max_targets)
        if not targets.ok or not targets.data:
            return Result.Err(targets.code, targets.error or "Invalid targets", **targets.meta)
        op = parse_operation(operation)
        if op is None:
            return Result.Err(ErrorCode.INVALID_INPUT, f"Unknown operation: {operation}")
        if not isinstance(field_key, str) or not field_key.strip():
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing field_key")

        resolved = await self.resolver.resolve_fields(targets.data[0])
        option = resolved.find(field_key)
        if option is None:
            return Result.Err(ErrorCode.VALIDATION_ERROR, f"Field '{field_key}' cannot be bulk edited")

        value = build_mutation_value(option.selector, op, raw_value)
        if not value.ok or value.data is None:
            return Result.Err(value.code, value.error or "Invalid value")

        intent = MutationIntent(op, option.selector, value.data, targets.data)
        with timer("bulk preview", logger):
            preview = await self.diff.compute(intent)
        token = None if preview.has_errors else self.codec.encode(intent)
        return Result.Ok(
            {
                "preview": preview.to_dict(),
                "preview_token": token,
                "expires_in": self.codec.ttl_seconds if token else None,
            }
        )

    async def execute(self, token: Any, *, changed_by: Optional[str] = None) -> Result[ExecutionResult]:
        return await self.executor.execute(token, changed_by=changed_by)

"""
Bulk edit workflow state machine.

    select_operation -> select_field -> enter_value -> preview -> complete

Back moves one stage from select_field, enter_value and preview. Calls made
in the wrong stage return INVALID_STATE; nothing here raises to the caller.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from ...shared import ErrorCode, Result, get_logger
from .models import (
    ExecutionResult,
    FieldOption,
    MutationIntent,
    OperationType,
    PreviewResult,
    ResolvedFields,
    parse_operation,
)
from .values import build_mutation_value

if TYPE_CHECKING:
    from .diff import DiffComputer
    from .executor import MutationExecutor
    from .field_resolver import FieldResolver
    from .token import PreviewTokenCodec

logger = get_logger(__name__)


class WorkflowStage(str, Enum):
    SELECT_OPERATION = "select_operation"
    SELECT_FIELD = "select_field"
    ENTER_VALUE = "enter_value"
    PREVIEW = "preview"
    COMPLETE = "complete"


_PREVIOUS_STAGE = {
    WorkflowStage.SELECT_FIELD: WorkflowStage.SELECT_OPERATION,
    WorkflowStage.ENTER_VALUE: WorkflowStage.SELECT_FIELD,
    WorkflowStage.PREVIEW: WorkflowStage.ENTER_VALUE,
}


def _wrong_stage(action: str, stage: WorkflowStage) -> Result[Any]:
    return Result.Err(ErrorCode.INVALID_STATE, f"Cannot {action} during {stage.value}", stage=stage.value)


class BulkEditWorkflow:
    """In-memory state for one interactive bulk edit over a fixed target set."""

    def __init__(
        self,
        target_ids: Tuple[str, ...],
        *,
        resolver: "FieldResolver",
        diff: "DiffComputer",
        codec: "PreviewTokenCodec",
        executor: "MutationExecutor",
        changed_by: Optional[str] = None,
    ):
        if not target_ids:
            raise ValueError("a workflow needs at least one target asset")
        self.target_ids: Tuple[str, ...] = tuple(target_ids)
        self._resolver = resolver
        self._diff = diff
        self._codec = codec
        self._executor = executor
        self._changed_by = changed_by

        self.stage = WorkflowStage.SELECT_OPERATION
        self.operation: Optional[OperationType] = None
        self.resolved: ResolvedFields = ResolvedFields()
        self.field: Optional[FieldOption] = None
        self.draft_value: Any = None
        self.preview_result: Optional[PreviewResult] = None
        self.preview_token: Optional[str] = None
        self.execution_result: Optional[ExecutionResult] = None
        self.last_error: Optional[str] = None

    @property
    def reference_asset_id(self) -> str:
        return self.target_ids[0]

    # ------------------------------------------------------------ forward

    async def select_operation(self, operation: Any) -> Result[ResolvedFields]:
        if self.stage != WorkflowStage.SELECT_OPERATION:
            return _wrong_stage("select an operation", self.stage)
        op = parse_operation(operation.value if isinstance(operation, OperationType) else operation)
        if op is None:
            return Result.Err(ErrorCode.VALIDATION_ERROR, f"Unknown operation: {operation}")

        self.operation = op
        self.resolved = await self._resolver.resolve_fields(self.reference_asset_id)
        self.stage = WorkflowStage.SELECT_FIELD
        return Result.Ok(self.resolved)

    def select_field(self, key: str) -> Result[FieldOption]:
        if self.stage != WorkflowStage.SELECT_FIELD:
            return _wrong_stage("select a field", self.stage)
        option = self.resolved.find(key)
        if option is None:
            return Result.Err(ErrorCode.VALIDATION_ERROR, f"Field '{key}' cannot be bulk edited")

        self.field = option
        # Start from the reference asset's current value.
        self.draft_value = option.current_value
        self.stage = WorkflowStage.ENTER_VALUE
        return Result.Ok(option)

    def set_value(self, raw: Any) -> Result[bool]:
        if self.stage != WorkflowStage.ENTER_VALUE:
            return _wrong_stage("enter a value", self.stage)
        self.draft_value = raw
        return Result.Ok(True)

    def current_intent(self) -> Result[MutationIntent]:
        """Validate the draft and build the intent it describes."""
        if self.operation is None or self.field is None:
            return _wrong_stage("build a preview", self.stage)
        value = build_mutation_value(self.field.selector, self.operation, self.draft_value)
        if not value.ok or value.data is None:
            return Result.Err(value.code, value.error or "Invalid value")
        return Result.Ok(MutationIntent(self.operation, self.field.selector, value.data, self.target_ids))

    async def preview(self) -> Result[PreviewResult]:
        if self.stage != WorkflowStage.ENTER_VALUE:
            return _wrong_stage("preview", self.stage)
        intent = self.current_intent()
        if not intent.ok or intent.data is None:
            self.last_error = intent.error
            return Result.Err(intent.code, intent.error or "Invalid value")

        self.preview_result = await self._diff.compute(intent.data)
        self.preview_token = self._codec.encode(intent.data)
        self.last_error = None
        self.stage = WorkflowStage.PREVIEW
        return Result.Ok(self.preview_result, has_errors=self.preview_result.has_errors)

    async def confirm(self) -> Result[ExecutionResult]:
        if self.stage != WorkflowStage.PREVIEW:
            return _wrong_stage("confirm", self.stage)
        if self.preview_result is None or not self.preview_token:
            return _wrong_stage("confirm without a preview", self.stage)
        if self.preview_result.has_errors:
            return Result.Err(
                ErrorCode.PREVIEW_HAS_ERRORS,
                "Resolve the assets with errors before applying changes",
                errored=len(self.preview_result.errored),
            )

        executed = await self._executor.execute(self.preview_token, changed_by=self._changed_by)
        if not executed.ok or executed.data is None:
            self.last_error = executed.error
            return Result.Err(executed.code, executed.error or "Execution failed", **executed.meta)

        self.execution_result = executed.data
        self.last_error = None
        self.stage = WorkflowStage.COMPLETE
        return Result.Ok(executed.data)

    # ---------------------------------------------------------------- back

    def back(self) -> Result[WorkflowStage]:
        previous = _PREVIOUS_STAGE.get(self.stage)
        if previous is None:
            return _wrong_stage("go back", self.stage)
        if self.stage == WorkflowStage.PREVIEW:
            self.preview_result = None
            self.preview_token = None
        elif self.stage == WorkflowStage.ENTER_VALUE:
            self.field = None
            self.draft_value = None
        elif self.stage == WorkflowStage.SELECT_FIELD:
            self.operation = None
            self.resolved = ResolvedFields()
        self.stage = previous
        return Result.Ok(previous)

    # ------------------------------------------------------------- resume

    def restore_preview(self, intent: MutationIntent, preview: PreviewResult, token: str) -> None:
        """Park the workflow at the preview stage for an existing token."""
        self.operation = intent.operation
        self.field = FieldOption(intent.field, None)
        self.draft_value = None
        self.preview_result = preview
        self.preview_token = token
        self.stage = WorkflowStage.PREVIEW

    def snapshot(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "target_count": len(self.target_ids),
            "asset_ids": list(self.target_ids),
            "operation": self.operation.value if self.operation else None,
            "fields": self.resolved.to_dict() if self.stage == WorkflowStage.SELECT_FIELD else None,
            "field": self.field.selector.to_dict() if self.field else None,
            "value": self.draft_value,
            "preview": self.preview_result.to_dict() if self.preview_result else None,
            "preview_token": self.preview_token,
            "can_confirm": bool(
                self.stage == WorkflowStage.PREVIEW and self.preview_result is not None and not self.preview_result.has_errors
            ),
            "result": self.execution_result.to_dict() if self.execution_result else None,
            "error": self.last_error,
        }

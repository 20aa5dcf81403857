"""Bulk metadata editing: preview, tokens, execution and the workflow around them."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import BulkEditService
    from .workflow import BulkEditWorkflow, WorkflowStage

__all__ = ["BulkEditService", "BulkEditWorkflow", "WorkflowStage"]


def __getattr__(name: str):
    if name == "BulkEditService":
        from .service import BulkEditService

        return BulkEditService
    if name in ("BulkEditWorkflow", "WorkflowStage"):
        from . import workflow

        return getattr(workflow, name)
    raise AttributeError(name)

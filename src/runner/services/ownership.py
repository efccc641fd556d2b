from __future__ import annotations

from src.app.core.exceptions import PipelinePermissionError
from src.runner.ports.pipeline import PipelineLike
from src.runner.services.identity import Principal


def ensure_pipeline_owner(pipeline: PipelineLike, principal: Principal) -> None:
    """Бросить PipelinePermissionError, если вызывающий не владелец и не суперпользователь."""
    if principal.is_superuser:
        return

    if pipeline.owner_id != principal.id:
        raise PipelinePermissionError(f"permission denied for pipeline {pipeline.name}")

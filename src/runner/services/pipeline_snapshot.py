from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from src.app.core.enums import PipelineKind
from src.app.models import Pipeline


@dataclass(frozen=True, slots=True)
class PipelineDescriptor:
    """Неизменяемый снимок описания пайплайна на время одного вызова."""

    name: str
    kind: PipelineKind
    owner_id: str
    source_relation: Optional[str]
    command: str


def kind_from_code(code: str) -> PipelineKind:
    try:
        return PipelineKind(code)
    except ValueError as exc:
        # тип фиксируется и проверяется при создании
        raise AssertionError(f"unknown pipeline type: {code!r}") from exc


def snapshot_pipeline(p: Pipeline) -> PipelineDescriptor:
    return PipelineDescriptor(
        name=p.pipeline_name,
        kind=kind_from_code(p.pipeline_type),
        owner_id=p.owner_id,
        source_relation=p.source_relation,
        command=p.command,
    )

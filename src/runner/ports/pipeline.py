from __future__ import annotations

from typing import Protocol

from src.app.core.enums import PipelineKind


class PipelineLike(Protocol):
    name: str
    kind: PipelineKind
    owner_id: str

    source_relation: str | None
    command: str

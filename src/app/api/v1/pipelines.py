from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, Response, status

from src.app.api.helpers.pipelines import http_error
from src.app.core.exceptions import PipelineError
from src.app.dependencies import get_pipelines_service
from src.app.schemas.pipelines import (
    ExecutionOut,
    FileListPipelineCreate,
    PipelineDetailOut,
    PipelineOut,
    PipelineRunOut,
    SequencePipelineCreate,
    SequenceRangeOut,
    TimeIntervalPipelineCreate,
)
from src.app.services.pipelines import PipelinesService

router = APIRouter(prefix="/api/v1/pipelines", tags=["pipelines"])


@router.get("/", response_model=List[PipelineOut])
async def list_pipelines_endpoint(
    service: PipelinesService = Depends(get_pipelines_service),
) -> List[PipelineOut]:
    pipelines = await service.list_pipelines()
    return [PipelineOut.model_validate(p) for p in pipelines]


@router.get("/{name}", response_model=PipelineDetailOut)
async def get_pipeline_endpoint(
    name: str,
    service: PipelinesService = Depends(get_pipelines_service),
) -> PipelineDetailOut:
    try:
        pipeline = await service.get_pipeline(name)
    except PipelineError as exc:
        raise http_error(exc)

    return PipelineDetailOut.model_validate(pipeline)


@router.post("/sequence",
             response_model=PipelineDetailOut,
             status_code=status.HTTP_201_CREATED)
async def create_sequence_pipeline_endpoint(
    payload: SequencePipelineCreate,
    service: PipelinesService = Depends(get_pipelines_service),
) -> PipelineDetailOut:
    try:
        pipeline = await service.create_sequence_pipeline(payload)
    except PipelineError as exc:
        raise http_error(exc)

    return PipelineDetailOut.model_validate(pipeline)


@router.post("/time-interval",
             response_model=PipelineDetailOut,
             status_code=status.HTTP_201_CREATED)
async def create_time_interval_pipeline_endpoint(
    payload: TimeIntervalPipelineCreate,
    service: PipelinesService = Depends(get_pipelines_service),
) -> PipelineDetailOut:
    try:
        pipeline = await service.create_time_interval_pipeline(payload)
    except PipelineError as exc:
        raise http_error(exc)

    return PipelineDetailOut.model_validate(pipeline)


@router.post("/file-list",
             response_model=PipelineDetailOut,
             status_code=status.HTTP_201_CREATED)
async def create_file_list_pipeline_endpoint(
    payload: FileListPipelineCreate,
    service: PipelinesService = Depends(get_pipelines_service),
) -> PipelineDetailOut:
    try:
        pipeline = await service.create_file_list_pipeline(payload)
    except PipelineError as exc:
        raise http_error(exc)

    return PipelineDetailOut.model_validate(pipeline)


@router.post("/{name}/execute", response_model=ExecutionOut)
async def execute_pipeline_endpoint(
    name: str,
    service: PipelinesService = Depends(get_pipelines_service),
) -> ExecutionOut:
    """Синхронный запуск: дельта обрабатывается до конца в рамках запроса."""
    try:
        result = await service.execute_pipeline(name)
    except PipelineError as exc:
        raise http_error(exc)

    return ExecutionOut(
        pipeline_name=name,
        units_processed=result.units_processed,
        items_processed=result.items_processed,
    )


@router.post("/{name}/reset", status_code=status.HTTP_204_NO_CONTENT)
async def reset_pipeline_endpoint(
    name: str,
    service: PipelinesService = Depends(get_pipelines_service),
) -> Response:
    """Сбросить checkpoint: следующий запуск обработает источник с начала."""
    try:
        await service.reset_pipeline(name)
    except PipelineError as exc:
        raise http_error(exc)

    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def drop_pipeline_endpoint(
    name: str,
    service: PipelinesService = Depends(get_pipelines_service),
) -> Response:
    try:
        await service.drop_pipeline(name)
    except PipelineError as exc:
        raise http_error(exc)

    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{name}/runs", response_model=List[PipelineRunOut])
async def list_pipeline_runs_endpoint(
    name: str,
    limit: int = Query(50, ge=1, le=500),
    service: PipelinesService = Depends(get_pipelines_service),
) -> List[PipelineRunOut]:
    try:
        runs = await service.list_pipeline_runs(name, limit=limit)
    except PipelineError as exc:
        raise http_error(exc)

    return [PipelineRunOut.model_validate(r) for r in runs]


@router.get("/{name}/sequence-range", response_model=SequenceRangeOut)
async def sequence_range_endpoint(
    name: str,
    service: PipelinesService = Depends(get_pipelines_service),
) -> SequenceRangeOut:
    """Какой диапазон обработает следующий запуск; checkpoint не меняется."""
    try:
        bounds = await service.sequence_range(name)
    except PipelineError as exc:
        raise http_error(exc)

    if bounds is None:
        return SequenceRangeOut(pipeline_name=name)
    return SequenceRangeOut(pipeline_name=name, range_start=bounds[0], range_end=bounds[1])

from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import ValidationError

from infra.db import get_db_session
from src.app.api.v1.pipelines import router
from src.app.core.exceptions import (
    ExecutionFailureError,
    InvalidCommandError,
    PipelineAlreadyExistsError,
    PipelineNotFoundError,
    PipelinePermissionError,
)
from src.app.dependencies import get_pipelines_service, get_principal
from src.app.schemas.pipelines import FileListPipelineCreate, TimeIntervalPipelineCreate
from src.config import Settings
from src.runner.orchestration.executor import ExecutionResult

HEADERS = {"X-Incremental-User": "alice"}


def pipeline_obj(**kw):
    data = dict(
        pipeline_name="events-import",
        pipeline_type="f",
        owner_id="alice",
        source_relation=None,
        command="SELECT import_events($1)",
        created_at=datetime(2024, 1, 1),
        sequence_state=None,
        time_interval_state=None,
        file_list_state=SimpleNamespace(
            file_pattern="*.csv",
            batched=True,
            list_function="crunchy_lake.list_files",
            max_batch_size=None,
        ),
    )
    data.update(kw)
    return SimpleNamespace(**data)


@pytest.fixture
def service():
    return AsyncMock()


@pytest.fixture
def client(service):
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_pipelines_service] = lambda: service
    return TestClient(app)


def test_get_pipeline_with_checkpoint(client, service):
    service.get_pipeline.return_value = pipeline_obj()

    resp = client.get("/api/v1/pipelines/events-import", headers=HEADERS)

    assert resp.status_code == 200
    body = resp.json()
    assert body["pipeline_name"] == "events-import"
    assert body["file_list_state"]["list_function"] == "crunchy_lake.list_files"
    assert body["sequence_state"] is None


def test_unknown_pipeline_is_404(client, service):
    service.get_pipeline.side_effect = PipelineNotFoundError('no such pipeline named "ghost"')

    resp = client.get("/api/v1/pipelines/ghost", headers=HEADERS)

    assert resp.status_code == 404
    assert resp.json()["detail"] == 'no such pipeline named "ghost"'


def test_permission_denied_is_403(client, service):
    service.drop_pipeline.side_effect = PipelinePermissionError("permission denied for pipeline p")

    resp = client.delete("/api/v1/pipelines/p", headers=HEADERS)

    assert resp.status_code == 403


def test_drop_is_204(client, service):
    resp = client.delete("/api/v1/pipelines/p", headers=HEADERS)

    assert resp.status_code == 204
    service.drop_pipeline.assert_awaited_once_with("p")


def test_duplicate_is_409(client, service):
    service.create_file_list_pipeline.side_effect = PipelineAlreadyExistsError("pipeline p already exists")

    resp = client.post(
        "/api/v1/pipelines/file-list",
        headers=HEADERS,
        json={"name": "p", "file_pattern": "*.csv", "command": "SELECT $1"},
    )

    assert resp.status_code == 409


def test_invalid_command_is_400(client, service):
    service.create_sequence_pipeline.side_effect = InvalidCommandError("invalid command: syntax error")

    resp = client.post(
        "/api/v1/pipelines/sequence",
        headers=HEADERS,
        json={"name": "p", "source": "events", "command": "SELEC $1"},
    )

    assert resp.status_code == 400
    assert "syntax error" in resp.json()["detail"]


def test_execute_returns_counts(client, service):
    service.execute_pipeline.return_value = ExecutionResult(units_processed=2, items_processed=3)

    resp = client.post("/api/v1/pipelines/p/execute", headers=HEADERS)

    assert resp.status_code == 200
    assert resp.json() == {"pipeline_name": "p", "units_processed": 2, "items_processed": 3}


def test_execution_failure_is_500_with_unit(client, service):
    service.execute_pipeline.side_effect = ExecutionFailureError("p", "file b.csv", "boom")

    resp = client.post("/api/v1/pipelines/p/execute", headers=HEADERS)

    assert resp.status_code == 500
    assert "file b.csv" in resp.json()["detail"]


def test_reset_is_204(client, service):
    resp = client.post("/api/v1/pipelines/p/reset", headers=HEADERS)

    assert resp.status_code == 204
    service.reset_pipeline.assert_awaited_once_with("p")


def test_sequence_range_endpoint(client, service):
    service.sequence_range.return_value = (11, 25)

    resp = client.get("/api/v1/pipelines/events-agg/sequence-range", headers=HEADERS)

    assert resp.status_code == 200
    assert resp.json() == {"pipeline_name": "events-agg", "range_start": 11, "range_end": 25}


def test_empty_sequence_range_has_null_bounds(client, service):
    service.sequence_range.return_value = None

    resp = client.get("/api/v1/pipelines/events-agg/sequence-range", headers=HEADERS)

    assert resp.json() == {"pipeline_name": "events-agg", "range_start": None, "range_end": None}


def test_non_batched_time_pipeline_without_start_is_422(client, service):
    resp = client.post(
        "/api/v1/pipelines/time-interval",
        headers=HEADERS,
        json={"name": "hourly", "command": "SELECT $1, $2", "time_interval": "PT1H", "min_delay": "PT5M"},
    )

    assert resp.status_code == 422
    service.create_time_interval_pipeline.assert_not_awaited()


def test_caller_header_is_required():
    app = FastAPI()
    app.include_router(router)

    # сессия не нужна: запрос отклоняется на разборе заголовка
    async def no_session():
        yield AsyncMock()

    app.dependency_overrides[get_db_session] = no_session

    resp = TestClient(app).get("/api/v1/pipelines/")

    assert resp.status_code == 422


def test_principal_from_header():
    principal = get_principal("postgres", Settings(superusers=["postgres"]))
    assert principal.id == "postgres"
    assert principal.is_superuser


# ---------- pydantic ----------

def test_invalid_cron_rejected():
    with pytest.raises(ValidationError) as e:
        FileListPipelineCreate(name="p", file_pattern="*.csv", command="SELECT $1", schedule="sometimes")
    assert "schedule" in str(e.value)


def test_non_positive_batch_size_means_unbounded():
    payload = FileListPipelineCreate(name="p", file_pattern="*.csv", command="SELECT $1", max_batch_size=0)
    assert payload.max_batch_size is None
    assert payload.schedule == "*/15 * * * *"


def test_time_interval_must_be_positive():
    with pytest.raises(ValidationError):
        TimeIntervalPipelineCreate(
            name="p",
            command="SELECT $1, $2",
            time_interval="PT0S",
            min_delay="PT0S",
            batched=True,
        )


def test_unknown_fields_forbidden():
    with pytest.raises(ValidationError):
        FileListPipelineCreate(name="p", file_pattern="*.csv", command="SELECT $1", target_table="x")

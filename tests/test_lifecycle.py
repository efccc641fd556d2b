from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from src.app.core.exceptions import (
    InvalidArgumentError,
    PipelineAlreadyExistsError,
    PipelineNotFoundError,
    PipelinePermissionError,
    UnresolvedEnumeratorError,
    UnsupportedSourceError,
)
from src.config import Settings
from src.runner.orchestration.lifecycle import PipelineLifecycle
from src.runner.repos.catalog import RelationInfo
from src.runner.services.identity import Principal, acting_as

ALICE = Principal(id="alice", db_role="alice")
BOB = Principal(id="bob", db_role="bob")
ROOT = Principal(id="postgres", is_superuser=True)


def pipeline_row(name="events-import", pipeline_type="f", owner_id="alice"):
    return SimpleNamespace(
        pipeline_name=name,
        pipeline_type=pipeline_type,
        owner_id=owner_id,
        source_relation=None,
        command="SELECT import_events($1)",
    )


def make_lifecycle(**overrides):
    scheduler = MagicMock()
    scheduler.schedule = AsyncMock(return_value=7)
    scheduler.unschedule = AsyncMock(return_value=True)

    validator = AsyncMock()
    validator.validate.side_effect = lambda session, command, types: command.strip().rstrip(";")

    deps = dict(
        settings=Settings(),
        pipelines=AsyncMock(),
        sequences=AsyncMock(),
        time_intervals=AsyncMock(),
        file_lists=AsyncMock(),
        catalog=AsyncMock(),
        runs=AsyncMock(),
        validator=validator,
        scheduler=scheduler,
        executor=AsyncMock(),
    )
    deps.update(overrides)
    return PipelineLifecycle(**deps), deps


# ---------- create ----------

@pytest.mark.asyncio
async def test_create_file_list_pipeline_registers_state_and_schedule():
    lifecycle, deps = make_lifecycle()
    deps["catalog"].resolve_list_function.return_value = "crunchy_lake.list_files"
    deps["pipelines"].create.return_value = pipeline_row()
    session = AsyncMock()

    with acting_as(ALICE):
        created = await lifecycle.create_file_list_pipeline(
            session,
            name="events-import",
            file_pattern="s3://bucket/events/*.csv",
            command="SELECT import_events($1);",
            batched=True,
            max_batch_size=100,
        )

    assert created.name == "events-import"
    deps["validator"].validate.assert_awaited_once_with(
        session, "SELECT import_events($1);", ("text[]",)
    )
    deps["catalog"].resolve_list_function.assert_awaited_once_with(
        session, "crunchy_lake.list_files"
    )
    assert deps["pipelines"].create.await_args.kwargs["owner_id"] == "alice"
    assert deps["pipelines"].create.await_args.kwargs["command"] == "SELECT import_events($1)"
    deps["file_lists"].insert_state.assert_awaited_once()
    deps["scheduler"].schedule.assert_awaited_once_with(
        session,
        job_name="pipeline:events-import",
        cron="*/15 * * * *",
        command="incremental.execute_pipeline('events-import')",
        pipeline_name="events-import",
        owner_id="alice",
    )
    session.commit.assert_awaited()
    deps["executor"].execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_create_without_schedule_and_with_immediate_run():
    lifecycle, deps = make_lifecycle()
    deps["catalog"].resolve_list_function.return_value = "crunchy_lake.list_files"
    deps["pipelines"].create.return_value = pipeline_row()

    with acting_as(ALICE):
        await lifecycle.create_file_list_pipeline(
            AsyncMock(),
            name="events-import",
            file_pattern="*.csv",
            command="SELECT import_events($1)",
            schedule=None,
            execute_immediately=True,
        )

    deps["scheduler"].schedule.assert_not_awaited()
    deps["executor"].execute.assert_awaited_once()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs,field",
    [
        (dict(name=None, file_pattern="*.csv", command="SELECT 1"), "pipeline_name"),
        (dict(name="p", file_pattern="*.csv", command="  "), "command"),
        (dict(name="p", file_pattern=None, command="SELECT 1"), "file_pattern"),
    ],
)
async def test_missing_argument_has_no_side_effects(kwargs, field):
    lifecycle, deps = make_lifecycle()

    with acting_as(ALICE):
        with pytest.raises(InvalidArgumentError, match=f"{field} cannot be NULL"):
            await lifecycle.create_file_list_pipeline(AsyncMock(), **kwargs)

    deps["pipelines"].create.assert_not_awaited()
    deps["validator"].validate.assert_not_awaited()


@pytest.mark.asyncio
async def test_unresolved_list_function():
    lifecycle, deps = make_lifecycle()
    deps["catalog"].resolve_list_function.return_value = None

    with acting_as(ALICE):
        with pytest.raises(UnresolvedEnumeratorError):
            await lifecycle.create_file_list_pipeline(
                AsyncMock(),
                name="p",
                file_pattern="*.csv",
                command="SELECT 1",
                list_function="nope.list",
            )

    deps["pipelines"].create.assert_not_awaited()


@pytest.mark.asyncio
async def test_duplicate_name_becomes_already_exists():
    lifecycle, deps = make_lifecycle()
    deps["catalog"].resolve_list_function.return_value = "crunchy_lake.list_files"
    deps["pipelines"].create.side_effect = IntegrityError("INSERT", {}, Exception("duplicate key"))
    session = AsyncMock()

    with acting_as(ALICE):
        with pytest.raises(PipelineAlreadyExistsError):
            await lifecycle.create_file_list_pipeline(
                session, name="events-import", file_pattern="*.csv", command="SELECT 1"
            )

    session.rollback.assert_awaited_once()
    deps["scheduler"].schedule.assert_not_awaited()


@pytest.mark.asyncio
async def test_sequence_source_given_as_table_uses_its_sequence():
    lifecycle, deps = make_lifecycle()
    deps["catalog"].relation.return_value = RelationInfo(name="events", relkind="r")
    deps["catalog"].owned_sequences.return_value = ["events_event_id_seq"]
    deps["pipelines"].create.return_value = pipeline_row(pipeline_type="s")

    with acting_as(ALICE):
        await lifecycle.create_sequence_pipeline(
            AsyncMock(), name="events-import", source="events", command="SELECT $1, $2"
        )

    assert deps["pipelines"].create.await_args.kwargs["source_relation"] == "events"
    assert deps["sequences"].insert_state.await_args.kwargs["sequence_name"] == "events_event_id_seq"
    assert deps["scheduler"].schedule.await_args.kwargs["cron"] == "*/5 * * * *"


@pytest.mark.asyncio
async def test_sequence_source_given_as_owned_sequence():
    lifecycle, deps = make_lifecycle()
    deps["catalog"].relation.return_value = RelationInfo(name="events_event_id_seq", relkind="S")
    deps["catalog"].owning_table.return_value = "events"
    deps["pipelines"].create.return_value = pipeline_row(pipeline_type="s")

    with acting_as(ALICE):
        await lifecycle.create_sequence_pipeline(
            AsyncMock(), name="events-import", source="events_event_id_seq", command="SELECT $1, $2"
        )

    assert deps["pipelines"].create.await_args.kwargs["source_relation"] == "events"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "relation,owning_table,owned",
    [
        (None, None, []),
        (RelationInfo(name="events_view", relkind="v"), None, []),
        (RelationInfo(name="orphan_seq", relkind="S"), None, []),
        (RelationInfo(name="events", relkind="r"), None, []),
        (RelationInfo(name="events", relkind="r"), None, ["a_seq", "b_seq"]),
    ],
)
async def test_unsupported_sequence_sources(relation, owning_table, owned):
    lifecycle, deps = make_lifecycle()
    deps["catalog"].relation.return_value = relation
    deps["catalog"].owning_table.return_value = owning_table
    deps["catalog"].owned_sequences.return_value = owned

    with acting_as(ALICE):
        with pytest.raises(UnsupportedSourceError):
            await lifecycle.create_sequence_pipeline(
                AsyncMock(), name="p", source="whatever", command="SELECT $1, $2"
            )

    deps["pipelines"].create.assert_not_awaited()


@pytest.mark.asyncio
async def test_non_batched_time_pipeline_requires_start_time():
    lifecycle, deps = make_lifecycle()

    with acting_as(ALICE):
        with pytest.raises(InvalidArgumentError) as e:
            await lifecycle.create_time_interval_pipeline(
                AsyncMock(),
                name="hourly",
                time_interval=timedelta(hours=1),
                command="SELECT $1, $2",
                min_delay=timedelta(minutes=5),
            )

    assert "start_time" in str(e.value)
    assert e.value.detail.startswith("Non-batched pipelines are executed for every interval")
    deps["pipelines"].create.assert_not_awaited()


@pytest.mark.asyncio
async def test_time_pipeline_requires_min_delay():
    lifecycle, _ = make_lifecycle()

    with acting_as(ALICE):
        with pytest.raises(InvalidArgumentError, match="min_delay cannot be NULL"):
            await lifecycle.create_time_interval_pipeline(
                AsyncMock(),
                name="hourly",
                time_interval=timedelta(hours=1),
                command="SELECT $1, $2",
                min_delay=None,
                start_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
            )


# ---------- execute / reset / drop ----------

@pytest.mark.asyncio
async def test_non_owner_cannot_reset_and_state_is_untouched():
    lifecycle, deps = make_lifecycle()
    deps["pipelines"].read.return_value = pipeline_row(owner_id="alice")
    session = AsyncMock()

    with acting_as(BOB):
        with pytest.raises(PipelinePermissionError, match="permission denied for pipeline events-import"):
            await lifecycle.reset_pipeline(session, "events-import")

    deps["file_lists"].remove_processed.assert_not_awaited()
    session.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_superuser_bypasses_ownership():
    lifecycle, deps = make_lifecycle()
    deps["pipelines"].read.return_value = pipeline_row(owner_id="alice")
    deps["file_lists"].remove_processed.return_value = 3

    with acting_as(ROOT):
        await lifecycle.reset_pipeline(AsyncMock(), "events-import")

    deps["file_lists"].remove_processed.assert_awaited_once()


@pytest.mark.asyncio
async def test_execute_checks_owner_before_running():
    lifecycle, deps = make_lifecycle()
    deps["pipelines"].read.return_value = pipeline_row(owner_id="alice")

    with acting_as(BOB):
        with pytest.raises(PipelinePermissionError):
            await lifecycle.execute_pipeline(AsyncMock(), "events-import")
    deps["executor"].execute.assert_not_awaited()

    with acting_as(ALICE):
        await lifecycle.execute_pipeline(AsyncMock(), "events-import")
    deps["executor"].execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_execute_unknown_pipeline():
    lifecycle, deps = make_lifecycle()
    deps["pipelines"].read.side_effect = PipelineNotFoundError('no such pipeline named "ghost"')

    with acting_as(ALICE):
        with pytest.raises(PipelineNotFoundError, match='no such pipeline named "ghost"'):
            await lifecycle.execute_pipeline(AsyncMock(), "ghost")


@pytest.mark.asyncio
async def test_drop_without_schedule_is_not_an_error():
    lifecycle, deps = make_lifecycle()
    deps["pipelines"].read.return_value = pipeline_row()
    deps["scheduler"].unschedule.return_value = False
    session = AsyncMock()

    with acting_as(ALICE):
        await lifecycle.drop_pipeline(session, "events-import")

    deps["scheduler"].unschedule.assert_awaited_once_with(session, "pipeline:events-import")
    deps["pipelines"].delete.assert_awaited_once_with(session, "events-import")
    session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_non_owner_cannot_drop():
    lifecycle, deps = make_lifecycle()
    deps["pipelines"].read.return_value = pipeline_row(owner_id="alice")

    with acting_as(BOB):
        with pytest.raises(PipelinePermissionError):
            await lifecycle.drop_pipeline(AsyncMock(), "events-import")

    deps["pipelines"].delete.assert_not_awaited()
    deps["scheduler"].unschedule.assert_not_awaited()


@pytest.mark.asyncio
async def test_initialize_file_list_state_only_for_file_list_pipelines():
    lifecycle, deps = make_lifecycle()
    deps["pipelines"].read.return_value = pipeline_row(pipeline_type="s")

    with acting_as(ALICE):
        with pytest.raises(InvalidArgumentError):
            await lifecycle.initialize_file_list_state(
                AsyncMock(), name="events-import", file_pattern="*.csv"
            )

    deps["file_lists"].insert_state.assert_not_awaited()


@pytest.mark.asyncio
async def test_initialize_file_list_state_inserts_row():
    lifecycle, deps = make_lifecycle()
    deps["pipelines"].read.return_value = pipeline_row()
    deps["catalog"].resolve_list_function.return_value = "crunchy_lake.list_files"
    session = AsyncMock()

    with acting_as(ALICE):
        await lifecycle.initialize_file_list_state(
            session, name="events-import", file_pattern="*.csv", batched=True, max_batch_size=0
        )

    kwargs = deps["file_lists"].insert_state.await_args.kwargs
    assert kwargs["list_function"] == "crunchy_lake.list_files"
    assert kwargs["batched"] is True
    session.commit.assert_awaited_once()


# ---------- sequence range ----------

@pytest.mark.asyncio
async def test_sequence_range_previews_without_advancing():
    lifecycle, deps = make_lifecycle()
    deps["pipelines"].read.return_value = pipeline_row(name="events-agg", pipeline_type="s")
    deps["sequences"].lock_state.return_value = SimpleNamespace(
        last_processed_sequence_number=10, sequence_name="public.events_id_seq"
    )
    deps["catalog"].sequence_last_value.return_value = 25
    session = AsyncMock()

    with acting_as(ALICE):
        assert await lifecycle.sequence_range(session, "events-agg") == (11, 25)

    session.rollback.assert_awaited_once()
    session.commit.assert_not_awaited()
    deps["sequences"].update_last_processed.assert_not_awaited()


@pytest.mark.asyncio
async def test_sequence_range_is_none_without_new_values():
    lifecycle, deps = make_lifecycle()
    deps["pipelines"].read.return_value = pipeline_row(name="events-agg", pipeline_type="s")
    deps["sequences"].lock_state.return_value = SimpleNamespace(
        last_processed_sequence_number=25, sequence_name="public.events_id_seq"
    )
    deps["catalog"].sequence_last_value.return_value = 25

    with acting_as(ALICE):
        assert await lifecycle.sequence_range(AsyncMock(), "events-agg") is None


@pytest.mark.asyncio
async def test_sequence_range_rejects_other_kinds_and_strangers():
    lifecycle, deps = make_lifecycle()
    deps["pipelines"].read.return_value = pipeline_row(pipeline_type="f")

    with acting_as(ALICE):
        with pytest.raises(InvalidArgumentError, match="not a sequence pipeline"):
            await lifecycle.sequence_range(AsyncMock(), "events-import")

    deps["pipelines"].read.return_value = pipeline_row(name="events-agg", pipeline_type="s")
    with acting_as(BOB):
        with pytest.raises(PipelinePermissionError):
            await lifecycle.sequence_range(AsyncMock(), "events-agg")
    deps["sequences"].lock_state.assert_not_awaited()

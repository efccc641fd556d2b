from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from src.app.core.enums import PipelineKind
from src.runner.services.pipeline_snapshot import PipelineDescriptor
from src.runner.strategies import RangeUnit, SequenceRangeStrategy, TimeIntervalStrategy
from src.runner.strategies.time_interval import EPOCH, eligible_intervals, eligible_range

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


def descriptor(kind, source_relation=None):
    return PipelineDescriptor(
        name="p",
        kind=kind,
        owner_id="alice",
        source_relation=source_relation,
        command="SELECT 1",
    )


# ---------- time interval ----------

def test_interval_is_eligible_only_after_min_delay():
    delay = timedelta(minutes=10)

    assert eligible_intervals(origin=T0, width=HOUR, min_delay=delay, now=T0 + HOUR) == []
    assert eligible_intervals(
        origin=T0, width=HOUR, min_delay=delay, now=T0 + HOUR + delay
    ) == [(T0, T0 + HOUR)]


def test_intervals_are_aligned_to_origin():
    now = T0 + 3 * HOUR + timedelta(minutes=30)

    intervals = eligible_intervals(origin=T0, width=HOUR, min_delay=timedelta(0), now=now)

    assert intervals == [(T0, T0 + HOUR), (T0 + HOUR, T0 + 2 * HOUR), (T0 + 2 * HOUR, T0 + 3 * HOUR)]
    assert eligible_range(origin=T0, width=HOUR, min_delay=timedelta(0), now=now) == (T0, T0 + 3 * HOUR)


def test_non_positive_width_is_rejected():
    with pytest.raises(ValueError):
        eligible_intervals(origin=T0, width=timedelta(0), min_delay=timedelta(0), now=T0)


@pytest.mark.asyncio
async def test_non_batched_time_pipeline_yields_unit_per_interval():
    repo = AsyncMock()
    repo.lock_state.return_value = SimpleNamespace(
        last_processed_time=None,
        start_time=T0,
        time_interval=HOUR,
        min_delay=timedelta(minutes=10),
        batched=False,
    )
    strategy = TimeIntervalStrategy(repo, clock=lambda: T0 + 3 * HOUR + timedelta(minutes=5))

    delta = await strategy.compute_delta(AsyncMock(), descriptor(PipelineKind.TIME_INTERVAL))

    assert delta.units == (RangeUnit(T0, T0 + HOUR), RangeUnit(T0 + HOUR, T0 + 2 * HOUR))


@pytest.mark.asyncio
async def test_batched_time_pipeline_without_start_uses_epoch_and_one_unit():
    repo = AsyncMock()
    repo.lock_state.return_value = SimpleNamespace(
        last_processed_time=None,
        start_time=None,
        time_interval=timedelta(days=1),
        min_delay=timedelta(0),
        batched=True,
    )
    strategy = TimeIntervalStrategy(repo, clock=lambda: EPOCH + timedelta(days=3, hours=1))

    delta = await strategy.compute_delta(AsyncMock(), descriptor(PipelineKind.TIME_INTERVAL))

    assert delta.units == (RangeUnit(EPOCH, EPOCH + timedelta(days=3)),)


@pytest.mark.asyncio
async def test_time_checkpoint_advances_and_resets():
    repo = AsyncMock()
    strategy = TimeIntervalStrategy(repo)
    session = AsyncMock()

    await strategy.advance(session, "p", RangeUnit(T0, T0 + HOUR))
    await strategy.reset(session, "p")

    assert [c.args for c in repo.update_last_processed.await_args_list] == [
        (session, "p", T0 + HOUR),
        (session, "p", None),
    ]


# ---------- sequence ----------

@pytest.mark.asyncio
async def test_sequence_range_starts_after_checkpoint():
    repo = AsyncMock()
    repo.lock_state.return_value = SimpleNamespace(
        last_processed_sequence_number=10,
        sequence_name="public.events_event_id_seq",
    )
    catalog = AsyncMock()
    catalog.sequence_last_value.return_value = 15
    session = AsyncMock()
    strategy = SequenceRangeStrategy(repo, catalog)

    delta = await strategy.compute_delta(
        session, descriptor(PipelineKind.SEQUENCE_RANGE, "public.events")
    )

    assert delta.units == (RangeUnit(11, 15),)
    assert delta.units[0].params() == (11, 15)
    catalog.wait_for_writers.assert_awaited_once_with(session, "public.events")


@pytest.mark.asyncio
@pytest.mark.parametrize("current", [None, 10])
async def test_sequence_without_new_values_is_empty(current):
    repo = AsyncMock()
    repo.lock_state.return_value = SimpleNamespace(
        last_processed_sequence_number=10,
        sequence_name="public.events_event_id_seq",
    )
    catalog = AsyncMock()
    catalog.sequence_last_value.return_value = current
    strategy = SequenceRangeStrategy(repo, catalog)

    delta = await strategy.compute_delta(
        AsyncMock(), descriptor(PipelineKind.SEQUENCE_RANGE, "public.events")
    )

    assert not delta
    assert delta.empty_message == "no new sequence values to process"
    catalog.wait_for_writers.assert_not_awaited()


@pytest.mark.asyncio
async def test_sequence_relock_trims_range_taken_by_concurrent_run():
    repo = AsyncMock()
    strategy = SequenceRangeStrategy(repo, AsyncMock())

    repo.lock_state.return_value = SimpleNamespace(last_processed_sequence_number=12)
    assert await strategy.relock(AsyncMock(), "p", RangeUnit(11, 15)) == RangeUnit(13, 15)

    repo.lock_state.return_value = SimpleNamespace(last_processed_sequence_number=15)
    assert await strategy.relock(AsyncMock(), "p", RangeUnit(11, 15)) is None


@pytest.mark.asyncio
async def test_sequence_reset_sets_zero():
    repo = AsyncMock()
    session = AsyncMock()

    await SequenceRangeStrategy(repo, AsyncMock()).reset(session, "p")

    repo.update_last_processed.assert_awaited_once_with(session, "p", 0)

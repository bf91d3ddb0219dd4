from __future__ import annotations

import asyncio

import pytest

from ragvault.core.errors import BatchAbortedError, InvalidInputError
from ragvault.services.batch import BatchOptions, BatchProcessor, estimate_batch_time, process_batches
from ragvault.services.telemetry import batch_duration_stats, counters_snapshot


@pytest.mark.asyncio
async def test_process_splits_into_consecutive_batches() -> None:
    seen: list[list[int]] = []

    async def double(chunk: list[int]) -> list[int]:
        seen.append(chunk)
        return [item * 2 for item in chunk]

    result = await BatchProcessor(BatchOptions(batch_size=2)).process([1, 2, 3, 4, 5], double)

    assert seen == [[1, 2], [3, 4], [5]]
    assert result.successful == [2, 4, 6, 8, 10]
    assert result.failed == []
    assert (result.total, result.processed, result.cancelled) == (5, 5, False)


@pytest.mark.asyncio
async def test_progress_is_monotonic_and_reaches_100() -> None:
    progress: list[tuple[int, int, int]] = []
    completed: list[tuple[int, int]] = []

    async def on_complete(batch_number: int, batch_count: int) -> None:
        completed.append((batch_number, batch_count))

    options = BatchOptions(
        batch_size=3,
        on_progress=lambda percent, done, total: progress.append((percent, done, total)),
        on_batch_complete=on_complete,
    )
    await BatchProcessor(options).process(list(range(7)), lambda chunk: chunk)

    assert progress == [(43, 3, 7), (86, 6, 7), (100, 7, 7)]
    assert completed == [(1, 3), (2, 3), (3, 3)]


@pytest.mark.asyncio
async def test_progress_rounds_half_up() -> None:
    percents: list[int] = []
    options = BatchOptions(batch_size=1, on_progress=lambda percent, *_: percents.append(percent))

    await BatchProcessor(options).process(list(range(8)), lambda chunk: chunk)

    assert percents == [13, 25, 38, 50, 63, 75, 88, 100]


@pytest.mark.asyncio
async def test_continue_on_error_records_every_item_of_failed_batch() -> None:
    progress: list[int] = []

    def flaky(chunk: list[str]) -> list[str]:
        if "bad" in chunk:
            raise RuntimeError("upstream rejected batch")
        return [item.upper() for item in chunk]

    options = BatchOptions(batch_size=2, on_progress=lambda percent, *_: progress.append(percent))
    result = await BatchProcessor(options).process(["a", "b", "bad", "c", "d"], flaky)

    assert result.successful == ["A", "B", "D"]
    assert [(item.item, item.error, item.batch_index) for item in result.failed] == [
        ("bad", "upstream rejected batch", 2),
        ("c", "upstream rejected batch", 2),
    ]
    assert progress[-1] == 100
    assert result.processed == 5


@pytest.mark.asyncio
async def test_abort_stops_before_later_batches() -> None:
    calls: list[int] = []

    async def fail_second(chunk: list[int]) -> list[int]:
        calls.append(chunk[0])
        if chunk[0] == 2:
            raise ValueError("disk full")
        return chunk

    options = BatchOptions(batch_size=2, continue_on_error=False)
    with pytest.raises(BatchAbortedError) as excinfo:
        await BatchProcessor(options, operation="vector_insert").process([0, 1, 2, 3, 4, 5], fail_second)

    error = excinfo.value
    assert calls == [0, 2]
    assert (error.batch_index, error.batch_count) == (2, 3)
    assert isinstance(error.cause, ValueError)
    assert "2/3" in error.message
    assert error.result.successful == [0, 1]
    assert counters_snapshot()["batch_aborted_total.vector_insert"] == 1


@pytest.mark.asyncio
async def test_concurrent_batches_keep_batch_order() -> None:
    running = 0
    peak = 0

    async def slow_first(chunk: list[int]) -> list[int]:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        # Earlier batches finish last.
        await asyncio.sleep(0.01 * (5 - chunk[0]))
        running -= 1
        if chunk[0] == 3:
            raise RuntimeError("boom")
        return chunk

    percents: list[int] = []
    options = BatchOptions(batch_size=1, concurrency=3, on_progress=lambda p, *_: percents.append(p))
    result = await BatchProcessor(options).process([0, 1, 2, 3, 4], slow_first)

    assert peak == 3
    assert result.successful == [0, 1, 2, 4]
    assert [item.item for item in result.failed] == [3]
    assert percents == sorted(percents)
    assert percents[-1] == 100


@pytest.mark.asyncio
async def test_cancellation_returns_completed_batches() -> None:
    cancel = asyncio.Event()

    def stop_after_first(chunk: list[int]) -> list[int]:
        cancel.set()
        return chunk

    options = BatchOptions(batch_size=2, cancel_event=cancel)
    result = await BatchProcessor(options).process([1, 2, 3, 4, 5], stop_after_first)

    assert result.cancelled is True
    assert result.successful == [1, 2]
    assert result.processed == 2


@pytest.mark.asyncio
async def test_process_individual() -> None:
    async def parse(value: str) -> int:
        return int(value)

    result = await BatchProcessor(BatchOptions(batch_size=50)).process_individual(["1", "x", "3"], parse)

    assert result.successful == [1, 3]
    assert [(item.item, item.batch_index) for item in result.failed] == [("x", 2)]


@pytest.mark.asyncio
async def test_process_batches_free_function_records_telemetry() -> None:
    result = await process_batches([1, 2, 3], lambda chunk: chunk, BatchOptions(batch_size=2), operation="bulk")
    assert result.successful == [1, 2, 3]
    assert batch_duration_stats("bulk")["max"] is not None


@pytest.mark.asyncio
async def test_empty_input() -> None:
    result = await BatchProcessor(BatchOptions()).process([], lambda chunk: chunk)
    assert (result.total, result.processed, result.successful) == (0, 0, [])


def test_options_validation_and_defaults(monkeypatch) -> None:
    monkeypatch.setenv("RAGVAULT_BATCH_SIZE", "25")
    assert BatchOptions().batch_size == 25
    assert BatchOptions().concurrency == 1
    assert BatchOptions().continue_on_error is True
    with pytest.raises(InvalidInputError):
        BatchOptions(batch_size=0)
    with pytest.raises(InvalidInputError):
        BatchOptions(concurrency=0)


def test_estimate_batch_time() -> None:
    assert estimate_batch_time(250, 100, 2000) == 6.0
    assert estimate_batch_time(0, 100, 2000) == 0.0
    with pytest.raises(InvalidInputError):
        estimate_batch_time(10, 0, 100)

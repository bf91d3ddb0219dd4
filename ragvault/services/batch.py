from __future__ import annotations

import asyncio
import inspect
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from ragvault.core.config import get_settings
from ragvault.core.errors import BatchAbortedError, InvalidInputError
from ragvault.services.telemetry import increment_counter, record_batch_run


logger = logging.getLogger(__name__)

TIn = TypeVar("TIn")
TOut = TypeVar("TOut")

ProgressCallback = Callable[[int, int, int], Any]
BatchCompleteCallback = Callable[[int, int], Any]


async def _resolve(value: Any) -> Any:
    # Callbacks and processing functions may be plain functions or coroutines.
    if inspect.isawaitable(value):
        return await value
    return value


def _default_batch_size() -> int:
    return get_settings().batch_size


def _default_concurrency() -> int:
    return get_settings().batch_concurrency


def _default_continue_on_error() -> bool:
    return get_settings().batch_continue_on_error


@dataclass
class BatchOptions:
    batch_size: int = field(default_factory=_default_batch_size)
    concurrency: int = field(default_factory=_default_concurrency)
    on_progress: ProgressCallback | None = None
    on_batch_complete: BatchCompleteCallback | None = None
    continue_on_error: bool = field(default_factory=_default_continue_on_error)
    cancel_event: asyncio.Event | None = None

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise InvalidInputError("batch_size must be at least 1", batch_size=self.batch_size)
        if self.concurrency < 1:
            raise InvalidInputError("concurrency must be at least 1", concurrency=self.concurrency)


@dataclass(frozen=True)
class FailedItem(Generic[TIn]):
    item: TIn
    error: str
    batch_index: int


@dataclass
class BatchResult(Generic[TIn, TOut]):
    successful: list[TOut] = field(default_factory=list)
    failed: list[FailedItem[TIn]] = field(default_factory=list)
    total: int = 0
    processed: int = 0
    cancelled: bool = False
    duration_ms: float = 0.0

    @property
    def success_count(self) -> int:
        return len(self.successful)

    @property
    def failure_count(self) -> int:
        return len(self.failed)


@dataclass
class _Outcome:
    outputs: list[Any] | None = None
    error: str | None = None


class BatchProcessor(Generic[TIn, TOut]):
    """Drive a bulk operation in fixed-size batches with progress reporting.

    Batches run under a semaphore of ``concurrency`` slots. Whatever the
    completion order, successes and failures are assembled by batch index, and
    progress is advanced one whole batch at a time under a lock so callbacks
    see a monotonic percentage.
    """

    def __init__(self, options: BatchOptions | None = None, *, operation: str = "batch") -> None:
        self._options = options or BatchOptions()
        self._operation = operation

    @property
    def options(self) -> BatchOptions:
        return self._options

    async def process(
        self,
        items: Sequence[TIn],
        batch_fn: Callable[[list[TIn]], Awaitable[list[TOut]] | list[TOut]],
    ) -> BatchResult[TIn, TOut]:
        size = self._options.batch_size
        chunks = [list(items[start : start + size]) for start in range(0, len(items), size)]
        return await self._run(chunks, batch_fn)

    async def process_individual(
        self,
        items: Sequence[TIn],
        item_fn: Callable[[TIn], Awaitable[TOut] | TOut],
    ) -> BatchResult[TIn, TOut]:
        async def one(chunk: list[TIn]) -> list[TOut]:
            return [await _resolve(item_fn(chunk[0]))]

        return await self._run([[item] for item in items], one)

    def _cancelled(self) -> bool:
        event = self._options.cancel_event
        return event is not None and event.is_set()

    async def _run(self, chunks: list[list[TIn]], fn: Callable[[list[TIn]], Any]) -> BatchResult[TIn, TOut]:
        options = self._options
        started = time.perf_counter()
        total = sum(len(chunk) for chunk in chunks)
        batch_count = len(chunks)
        outcomes: dict[int, _Outcome] = {}
        aborts: list[tuple[int, Exception]] = []
        stop = asyncio.Event()
        semaphore = asyncio.Semaphore(options.concurrency)
        progress_lock = asyncio.Lock()
        processed = 0

        async def run_batch(index: int, chunk: list[TIn]) -> None:
            nonlocal processed
            async with semaphore:
                # Checked between batches; running batches are never interrupted.
                if stop.is_set() or self._cancelled():
                    return
                try:
                    outputs = await _resolve(fn(chunk))
                except Exception as exc:  # noqa: BLE001 - caller-supplied batch function
                    if not options.continue_on_error:
                        aborts.append((index, exc))
                        stop.set()
                        return
                    logger.warning(
                        "batch_failed operation=%s batch=%s/%s error=%s",
                        self._operation,
                        index + 1,
                        batch_count,
                        exc,
                    )
                    outcomes[index] = _Outcome(error=str(exc))
                else:
                    outcomes[index] = _Outcome(outputs=list(outputs or []))

                async with progress_lock:
                    processed += len(chunk)
                    # Halves round up, so 1/8 reports 13 rather than 12.
                    percent = math.floor(processed / total * 100 + 0.5)
                    if options.on_progress is not None:
                        await _resolve(options.on_progress(percent, processed, total))
                    if options.on_batch_complete is not None:
                        await _resolve(options.on_batch_complete(index + 1, batch_count))

        await asyncio.gather(*(run_batch(index, chunk) for index, chunk in enumerate(chunks)))

        result: BatchResult[TIn, TOut] = BatchResult(total=total, processed=processed)
        for index in sorted(outcomes):
            outcome = outcomes[index]
            if outcome.error is None:
                result.successful.extend(outcome.outputs or [])
            else:
                result.failed.extend(
                    FailedItem(item=item, error=outcome.error, batch_index=index + 1) for item in chunks[index]
                )
        result.cancelled = self._cancelled() and len(outcomes) < batch_count
        result.duration_ms = (time.perf_counter() - started) * 1000.0
        record_batch_run(
            operation=self._operation,
            total=total,
            failed=len(result.failed),
            duration_ms=result.duration_ms,
        )

        if aborts:
            index, cause = min(aborts, key=lambda entry: entry[0])
            increment_counter(f"batch_aborted_total.{self._operation}")
            logger.warning(
                "batch_aborted operation=%s batch=%s/%s error=%s", self._operation, index + 1, batch_count, cause
            )
            raise BatchAbortedError(
                f"Batch {index + 1}/{batch_count} failed: {cause}",
                batch_index=index + 1,
                batch_count=batch_count,
                cause=cause,
                result=result,
            ) from cause

        if result.cancelled:
            increment_counter(f"batch_cancelled_total.{self._operation}")
            logger.info(
                "batch_cancelled operation=%s processed=%s total=%s", self._operation, processed, total
            )
        increment_counter(f"batch_runs_total.{self._operation}")
        return result


async def process_batches(
    items: Sequence[TIn],
    batch_fn: Callable[[list[TIn]], Awaitable[list[TOut]] | list[TOut]],
    options: BatchOptions | None = None,
    *,
    operation: str = "batch",
) -> BatchResult[TIn, TOut]:
    return await BatchProcessor(options, operation=operation).process(items, batch_fn)


def estimate_batch_time(item_count: int, batch_size: int, avg_batch_time_ms: float) -> float:
    # Seconds, assuming sequential batches.
    if batch_size < 1:
        raise InvalidInputError("batch_size must be at least 1", batch_size=batch_size)
    return math.ceil(item_count / batch_size) * avg_batch_time_ms / 1000

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence


@dataclass
class BatchOutcome:
    index: int
    result: Any = None
    error: Optional[BaseException] = None
    started: bool = True

    @property
    def ok(self) -> bool:
        return self.started and self.error is None


async def run_in_batches(
    tasks: Sequence[Callable[[], Awaitable[Any]]],
    limit: int,
    *,
    stop_on_error: bool = False,
) -> List[BatchOutcome]:
    """
    Run zero-arg coroutine factories in consecutive windows of
    min(remaining, limit), each window awaited together.

    Outcomes come back in task order, not completion order. With
    stop_on_error, windows after the first one containing a failure are not
    started; their outcomes have started=False.
    """
    limit = max(1, int(limit))
    outcomes: List[BatchOutcome] = []
    failed = False

    for start in range(0, len(tasks), limit):
        window = tasks[start:start + limit]
        if failed and stop_on_error:
            outcomes.extend(
                BatchOutcome(index=start + i, started=False) for i in range(len(window))
            )
            continue

        results = await asyncio.gather(*(task() for task in window), return_exceptions=True)
        for i, res in enumerate(results):
            if isinstance(res, BaseException):
                if not isinstance(res, Exception):
                    # CancelledError / KeyboardInterrupt are not task failures
                    raise res
                failed = True
                outcomes.append(BatchOutcome(index=start + i, error=res))
            else:
                outcomes.append(BatchOutcome(index=start + i, result=res))

    return outcomes


class ProgressCounter:
    """
    Maps a running completed-count onto [low, high] percent.

    The value depends only on how many items finished, never on which one,
    so reports stay monotonic when completions race.
    """

    def __init__(self, total: int, low: int = 0, high: int = 100):
        self.total = total
        self.low = low
        self.high = high
        self.completed = 0

    def advance(self) -> int:
        self.completed += 1
        return self.value

    @property
    def value(self) -> int:
        if self.total <= 0:
            return self.high
        span = self.high - self.low
        return self.low + round(min(self.completed, self.total) / self.total * span)

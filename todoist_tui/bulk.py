"""Concurrent fan-out of one remote call per selected item, fanned back in as a single report."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Sequence, Tuple

logger = logging.getLogger('todoist_tui')

MAX_CONCURRENT_REQUESTS = 5


@dataclass(frozen=True)
class BulkReport:
    verb: str
    succeeded: int
    failed: int
    failed_ids: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    @property
    def message(self) -> str:
        if self.failed == 0:
            return f"{self.verb} {self.total} items"
        return f"{self.verb} {self.succeeded} items, {self.failed} failed"


async def _attempt(call: Callable[[str], object], item_id: str) -> bool:
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, call, item_id)
        return True
    except Exception:
        logger.warning("Bulk call failed for %s", item_id, exc_info=True)
        return False


async def run_bulk(
    verb: str,
    call: Callable[[str], object],
    item_ids: Sequence[str],
    limit: int = MAX_CONCURRENT_REQUESTS,
) -> BulkReport:
    """Run ``call(item_id)`` for every id and wait for all of them.

    Calls are independent: a failure neither cancels nor affects the others.
    Exactly ``len(item_ids)`` results are drained from the sink before the
    report is built.
    """
    ids = list(item_ids)
    n = len(ids)
    if n == 0:
        return BulkReport(verb, 0, 0)
    sink: asyncio.Queue = asyncio.Queue(maxsize=n)
    gate = asyncio.Semaphore(max(1, limit))

    async def _worker(item_id: str) -> None:
        async with gate:
            ok = await _attempt(call, item_id)
        await sink.put((item_id, ok))

    workers = [asyncio.create_task(_worker(i)) for i in ids]
    results: List[Tuple[str, bool]] = []
    for _ in range(n):
        results.append(await sink.get())
    await asyncio.gather(*workers)

    failed_ids = tuple(i for i, ok in results if not ok)
    report = BulkReport(verb, n - len(failed_ids), len(failed_ids), failed_ids)
    logger.info("Bulk %s: %s", verb.lower(), report.message)
    return report

"""
Grouped batch removal.

Images are processed in contiguous groups of `concurrency_limit`; a group
runs on a thread pool and settles completely before the next one starts, with
a fixed pause between groups to stay under provider rate limits. Results are
returned in input order regardless of completion order.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import logging
import time
from typing import Any, Callable, List, Optional, Sequence

from .errors import ServiceError
from .orchestrator import FallbackOrchestrator
from .schemas import BatchItemResult, BatchOutcome, ItemError, RemovalRequest

logger = logging.getLogger(__name__)


class BatchRunner:
    def __init__(
        self,
        orchestrator: FallbackOrchestrator,
        concurrency_limit: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        settings = orchestrator.settings
        self.orchestrator = orchestrator
        self.concurrency_limit = concurrency_limit or settings.batch_concurrency
        self.delay_seconds = settings.batch_delay_seconds if delay_seconds is None else delay_seconds
        self._sleep = sleep

    def _process_one(self, index: int, request: RemovalRequest, kwargs: dict) -> BatchItemResult:
        try:
            result = self.orchestrator.auto_remove(request, **kwargs)
        except ServiceError as exc:
            logger.warning("Batch item %d failed: %s", index, exc.message)
            return BatchItemResult(index=index, error=ItemError.from_exception(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Batch item %d raised unexpectedly", index)
            return BatchItemResult(index=index, error=ItemError.from_exception(exc))
        return BatchItemResult(index=index, result=result)

    def process_batch(
        self,
        requests: Sequence[RemovalRequest],
        concurrency_limit: Optional[int] = None,
        **auto_remove_kwargs: Any,
    ) -> BatchOutcome:
        """
        Run `auto_remove` over every request; never raises for item failures.

        Extra keyword arguments (priority, max_input_size, fallback_to_local)
        are forwarded to each `auto_remove` call.
        """
        limit = max(1, concurrency_limit or self.concurrency_limit)
        items: List[BatchItemResult] = []

        with ThreadPoolExecutor(max_workers=limit, thread_name_prefix="batch-remove") as executor:
            for start in range(0, len(requests), limit):
                group = requests[start:start + limit]
                indices = range(start, start + len(group))
                # map() yields in submission order, so each result stays bound to its index.
                items.extend(
                    executor.map(
                        lambda idx, req: self._process_one(idx, req, auto_remove_kwargs),
                        indices,
                        group,
                    )
                )
                logger.debug("Batch group %d-%d settled", start, start + len(group) - 1)

                if start + limit < len(requests) and self.delay_seconds > 0:
                    self._sleep(self.delay_seconds)

        successful = [item for item in items if item.success]
        cost = sum(item.result.cost_incurred for item in successful)
        return BatchOutcome(
            total=len(items),
            successful_count=len(successful),
            failed_count=len(items) - len(successful),
            items=items,
            estimated_total_cost=round(cost, 4),
        )

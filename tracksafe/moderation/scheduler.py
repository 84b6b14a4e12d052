"""Batch scheduler invoked by an external periodic trigger.

Each ``run_once`` call:

1. returns stale ``checking`` claims to ``pending_check``;
2. starts at most ``concurrency`` workers, each of which claims the oldest
   pending item only when it is free to process it, until ``batch_size``
   items have been claimed;
3. returns a ``BatchSummary``.

A claim is therefore stamped when processing of its item begins, so the
stale-claim timeout only has to outlast one item, never a whole batch.
Running several invocations at once is safe: the store's claim is an atomic
compare-and-transition, so each item is claimed by exactly one run.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Optional

from tracksafe.config import SchedulerConfig
from tracksafe.moderation.errors import TransientServiceError
from tracksafe.moderation.models import BatchSummary
from tracksafe.moderation.pipeline import (
    OUTCOME_CLEAN,
    OUTCOME_FLAGGED,
    OUTCOME_LOST_CLAIM,
    ItemPipeline,
)
from tracksafe.moderation.store import ModerationStore

logger = logging.getLogger(__name__)

OUTCOME_PARKED = "parked"
OUTCOME_ERROR = "error"


class BatchScheduler:
    """Stateless driver for one batch of pending items per invocation."""

    def __init__(
        self,
        store: ModerationStore,
        pipeline: ItemPipeline,
        config: Optional[SchedulerConfig] = None,
    ) -> None:
        self.store = store
        self.pipeline = pipeline
        self.config = config or SchedulerConfig()

    def _process_one(self, item, run_id: str) -> str:
        try:
            return self.pipeline.process(item, run_id)
        except TransientServiceError as exc:
            logger.warning(
                "Item %s parked in checking after transient failure: %s", item.id, exc
            )
            return OUTCOME_PARKED
        except Exception:
            # Left in checking; stale-claim recovery will pick it up again.
            logger.exception("Unexpected error processing item %s", item.id)
            return OUTCOME_ERROR

    def _worker(
        self, run_id: str, budget: threading.Semaphore, now: Optional[datetime]
    ) -> list[str]:
        outcomes: list[str] = []
        while budget.acquire(blocking=False):
            claimed = self.store.claim_pending(1, run_id, now=now)
            if not claimed:
                break
            outcomes.append(self._process_one(claimed[0], run_id))
        return outcomes

    def run_once(self, now: Optional[datetime] = None) -> BatchSummary:
        """Process one batch and return its summary."""
        started = time.monotonic()
        run_id = uuid.uuid4().hex[:12]
        summary = BatchSummary(run_id=run_id)

        summary.recovered = len(
            self.store.recover_stale(self.config.stale_claim_seconds, now=now)
        )
        logger.info("Run %s recovered %d stale claim(s)", run_id, summary.recovered)

        budget = threading.Semaphore(self.config.batch_size)
        workers = min(self.config.concurrency, self.config.batch_size)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"run-{run_id}") as pool:
            futures = [pool.submit(self._worker, run_id, budget, now) for _ in range(workers)]
            outcomes = [outcome for future in futures for outcome in future.result()]

        for outcome in outcomes:
            if outcome == OUTCOME_CLEAN:
                summary.processed += 1
                summary.clean += 1
            elif outcome == OUTCOME_FLAGGED:
                summary.processed += 1
                summary.flagged += 1
            elif outcome == OUTCOME_LOST_CLAIM:
                summary.skipped += 1
            else:
                summary.errors += 1

        summary.duration_seconds = time.monotonic() - started
        logger.info(
            "Run %s finished: claimed=%d processed=%d flagged=%d clean=%d errors=%d "
            "skipped=%d in %.2fs",
            run_id, len(outcomes), summary.processed, summary.flagged, summary.clean,
            summary.errors, summary.skipped, summary.duration_seconds,
        )
        return summary

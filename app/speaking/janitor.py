"""
Recovery sweeper ("janitor"). Runs at login, before the owner may start a new
session, and drives every session left OPEN through the finalizer.

Correctness under concurrent sweeps (two devices logging in at once) comes
from the finalizer's claim and conditional summary write, not from a lock here.
"""

from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Callable, Iterable

from .finalizer import FinalizeOutcome, FinalizeResult, Finalizer
from .interfaces import SessionStore
from .models import utcnow

logger = logging.getLogger(__name__)


class RecoverySweeper:
    def __init__(
        self,
        store: SessionStore,
        finalizer: Finalizer,
        *,
        grace_seconds: float = 120.0,
        parallelism: int = 4,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.finalizer = finalizer
        self.grace_seconds = grace_seconds
        self.parallelism = max(1, parallelism)
        self.clock = clock

    def cutoff(self) -> datetime:
        """Sessions untouched since this instant are past the grace window."""
        return self.clock() - timedelta(seconds=self.grace_seconds)

    def sweep(self, owner_id: str, exclude: Iterable[str] = ()) -> int:
        """
        Finalize the owner's orphaned sessions; returns how many this call finalized.
        `exclude` holds ids known to be live in this process.
        """
        cutoff = self.cutoff()
        skip = set(exclude)
        orphans = [
            sid
            for sid in self.store.list_open_sessions(owner_id, older_than=cutoff)
            if sid not in skip
        ]
        if not orphans:
            logger.debug("sweep %s: nothing to recover", owner_id)
            return 0

        logger.info("sweep %s: %d open session(s) to finalize", owner_id, len(orphans))
        if self.parallelism == 1 or len(orphans) == 1:
            results = [self.finalizer.finalize(sid) for sid in orphans]
        else:
            workers = min(self.parallelism, len(orphans))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sweep") as pool:
                results = list(pool.map(self.finalizer.finalize, orphans))

        return self._report(owner_id, results)

    def _report(self, owner_id: str, results: list[FinalizeResult]) -> int:
        finalized = sum(1 for r in results if r.outcome == FinalizeOutcome.FINALIZED)
        failed = [r for r in results if not r.ok]
        for r in failed:
            logger.warning(
                "sweep %s: session %s left open: %s", owner_id, r.session_id, r.error
            )
        logger.info(
            "sweep %s: finalized=%d skipped=%d failed=%d",
            owner_id,
            finalized,
            len(results) - finalized - len(failed),
            len(failed),
        )
        return finalized

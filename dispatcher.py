"""
Background submission of pipeline runs.

Callers hand a candidate to the dispatcher and return immediately; the only
completion signal is the candidate's persisted status.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

from data_models import CandidateStatus, RunSummary
from matcher import CandidateMatcher

LOGGER = logging.getLogger(__name__)

IN_FLIGHT_STATUSES = (CandidateStatus.PENDING, CandidateStatus.PROCESSING)


class PipelineDispatcher:
    """Runs CandidateMatcher jobs on a worker pool."""

    def __init__(
        self,
        matcher: CandidateMatcher,
        max_workers: int = 2,
        stale_after_seconds: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._matcher = matcher
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pipeline")
        self.stale_after_seconds = stale_after_seconds
        self._clock = clock
        self._submitted_at: Dict[str, float] = {}
        self._lock = threading.Lock()

    def submit(self, candidate_id: str, owner_id: str) -> Future:
        """
        Queue a pipeline run and return without waiting for it.

        The returned future is for bookkeeping only (tests, shutdown); callers
        observe progress through the candidate's status.

        Args:
            candidate_id: Candidate to process.
            owner_id: Requesting owner.

        Returns:
            Future resolving to the run's RunSummary.
        """
        with self._lock:
            self._submitted_at[candidate_id] = self._clock()
        LOGGER.info("Queued pipeline run for candidate %s", candidate_id)
        future = self._executor.submit(self._matcher.run, candidate_id, owner_id)
        future.add_done_callback(lambda f, cid=candidate_id: self._on_done(cid, f))
        return future

    def reprocess(self, candidate_id: str, owner_id: str) -> Future:
        """Reset a candidate's results and queue a fresh run."""
        self._matcher.reprocess(candidate_id)
        return self.submit(candidate_id, owner_id)

    def _on_done(self, candidate_id: str, future: Future) -> None:
        with self._lock:
            self._submitted_at.pop(candidate_id, None)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            LOGGER.error("Pipeline worker for %s crashed: %s", candidate_id, exc)
            return
        summary: RunSummary = future.result()
        LOGGER.info(
            "Pipeline run for %s finished with status %s (%d listings, %d matches)",
            candidate_id,
            summary.status.value,
            summary.listings_found,
            summary.matches_created,
        )

    def find_stale(self, max_age_seconds: Optional[float] = None) -> List[str]:
        """
        List candidates still pending or processing longer than allowed.

        Only runs submitted through this dispatcher are tracked; the pipeline
        itself has no heartbeat.

        Args:
            max_age_seconds: Age after which an unfinished run is suspect;
                defaults to stale_after_seconds.

        Returns:
            Candidate ids that look stuck.
        """
        if max_age_seconds is None:
            max_age_seconds = self.stale_after_seconds
        now = self._clock()
        with self._lock:
            tracked = dict(self._submitted_at)
        stale = []
        for candidate_id, submitted in tracked.items():
            if now - submitted <= max_age_seconds:
                continue
            candidate = self._matcher.store.get_candidate(candidate_id)
            if candidate is not None and candidate.status in IN_FLIGHT_STATUSES:
                stale.append(candidate_id)
        return stale

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; optionally wait for queued runs."""
        self._executor.shutdown(wait=wait)

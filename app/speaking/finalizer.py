"""
Finalizer: turns a session's final transcript into its memory summary and
analysis report, exactly once per session.

Order of operations for finalize(session_id):
1. Load the session; a non-null summary means it is already finalized.
2. Claim the session (short-lived, conditional). Someone else holding a live
   claim means the work is in progress elsewhere.
3. Read the transcript snapshot; summarize it while the analysis runs
   concurrently on the same snapshot.
4. Write the summary. This is the OPEN -> FINALIZED transition and the last
   step; a crash before it leaves the session OPEN for the next sweep.

Analysis is best-effort: its failure is logged and never undoes the summary.
Errors are reported through FinalizeResult, never raised to the caller.
"""

from __future__ import annotations
import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import SpeakingError, StoreWriteConflict
from .interfaces import Analyzer, SessionStore, Summarizer
from .models import AnalysisReport, Turn
from .utils.timeouts import call_with_timeout

logger = logging.getLogger(__name__)


class FinalizeOutcome(str, Enum):
    FINALIZED = "finalized"
    ALREADY_FINALIZED = "already_finalized"
    CONFLICT_RESOLVED = "conflict_resolved"
    IN_PROGRESS = "in_progress"
    FAILED = "failed"


@dataclass
class FinalizeResult:
    session_id: str
    outcome: FinalizeOutcome
    summary: Optional[str] = None
    analysis: Optional[AnalysisReport] = None
    error: Optional[Exception] = None
    analysis_error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.outcome != FinalizeOutcome.FAILED


class Finalizer:
    def __init__(
        self,
        store: SessionStore,
        summarizer: Summarizer,
        analyzer: Analyzer,
        *,
        timeout: Optional[float] = 30.0,
        claim_ttl_seconds: float = 300.0,
        analysis_workers: int = 2,
    ):
        self.store = store
        self.summarizer = summarizer
        self.analyzer = analyzer
        self.timeout = timeout
        self.claim_ttl_seconds = claim_ttl_seconds
        self._analysis_pool = ThreadPoolExecutor(
            max_workers=analysis_workers, thread_name_prefix="analysis"
        )

    def finalize(self, session_id: str) -> FinalizeResult:
        try:
            session = self.store.get(session_id)
        except SpeakingError as e:
            logger.error("finalize %s: cannot load session: %s", session_id, e)
            return FinalizeResult(session_id, FinalizeOutcome.FAILED, error=e)

        if session.memory_summary is not None:
            logger.debug("finalize %s: already finalized", session_id)
            return FinalizeResult(
                session_id,
                FinalizeOutcome.ALREADY_FINALIZED,
                summary=session.memory_summary,
                analysis=session.analysis_report,
            )

        token = uuid.uuid4().hex
        try:
            claimed = self.store.claim(session_id, token, self.claim_ttl_seconds)
        except SpeakingError as e:
            logger.error("finalize %s: claim failed: %s", session_id, e)
            return FinalizeResult(session_id, FinalizeOutcome.FAILED, error=e)
        if not claimed:
            return self._not_claimed(session_id)

        try:
            return self._run(session_id, session.topic, session.analysis_report)
        finally:
            try:
                self.store.release(session_id, token)
            except SpeakingError as e:
                logger.warning("finalize %s: releasing claim failed: %s", session_id, e)

    def _not_claimed(self, session_id: str) -> FinalizeResult:
        # claim() refuses both a live foreign claim and a summary written meanwhile
        try:
            session = self.store.get(session_id)
        except SpeakingError as e:
            return FinalizeResult(session_id, FinalizeOutcome.FAILED, error=e)
        if session.memory_summary is not None:
            return FinalizeResult(
                session_id,
                FinalizeOutcome.ALREADY_FINALIZED,
                summary=session.memory_summary,
                analysis=session.analysis_report,
            )
        logger.info("finalize %s: claimed by another worker, skipping", session_id)
        return FinalizeResult(session_id, FinalizeOutcome.IN_PROGRESS)

    def _run(
        self,
        session_id: str,
        topic: Optional[str],
        existing_report: Optional[AnalysisReport],
    ) -> FinalizeResult:
        try:
            transcript = self.store.read_transcript(session_id)
        except SpeakingError as e:
            logger.error("finalize %s: cannot read transcript: %s", session_id, e)
            return FinalizeResult(session_id, FinalizeOutcome.FAILED, error=e)

        analysis_future: Optional[Future] = None
        if existing_report is None:
            analysis_future = self._analysis_pool.submit(
                self._analyze, session_id, transcript
            )

        try:
            summary = call_with_timeout(
                "summarization",
                self._summarize,
                transcript,
                topic,
                timeout=self.timeout,
            )
            self.store.write_summary(session_id, summary)
        except StoreWriteConflict:
            logger.warning(
                "finalize %s: summary was written by another process; keeping theirs",
                session_id,
            )
            report, analysis_error = self._collect(analysis_future, existing_report)
            return FinalizeResult(
                session_id,
                FinalizeOutcome.CONFLICT_RESOLVED,
                summary=self._stored_summary(session_id),
                analysis=report,
                analysis_error=analysis_error,
            )
        except SpeakingError as e:
            logger.error("finalize %s failed, session stays open: %s", session_id, e)
            report, analysis_error = self._collect(analysis_future, existing_report)
            return FinalizeResult(
                session_id,
                FinalizeOutcome.FAILED,
                analysis=report,
                error=e,
                analysis_error=analysis_error,
            )

        report, analysis_error = self._collect(analysis_future, existing_report)
        logger.info(
            "finalized session %s (%d turns, analysis=%s)",
            session_id,
            len(transcript),
            "ok" if report is not None else "missing",
        )
        return FinalizeResult(
            session_id,
            FinalizeOutcome.FINALIZED,
            summary=summary,
            analysis=report,
            analysis_error=analysis_error,
        )

    def _summarize(self, transcript: list[Turn], topic: Optional[str]) -> str:
        return self.summarizer.summarize(transcript, topic=topic)

    def _stored_summary(self, session_id: str) -> Optional[str]:
        try:
            return self.store.get(session_id).memory_summary
        except SpeakingError:
            return None

    def _analyze(self, session_id: str, transcript: list[Turn]) -> AnalysisReport:
        report = call_with_timeout(
            "analysis", self.analyzer.analyze, transcript, timeout=self.timeout
        )
        self.store.write_analysis(session_id, report)
        return report

    def _collect(
        self, future: Optional[Future], existing: Optional[AnalysisReport]
    ) -> tuple[Optional[AnalysisReport], Optional[Exception]]:
        if future is None:
            return existing, None
        try:
            return future.result(), None
        except Exception as e:
            logger.warning("analysis failed (summary unaffected): %s", e)
            return None, e

    def shutdown(self, wait: bool = True) -> None:
        self._analysis_pool.shutdown(wait=wait)

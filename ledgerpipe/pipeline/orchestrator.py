"""Phase orchestrator - runs the enrichment pipeline for one import session.

Drives the fixed phase sequence tag -> normalize -> match -> detect against a
session's records on a detached background task.

Key features:
- Cooperative: the cancellation flag is checked before every phase and once
  more, atomically, before the session is marked completed
- Observable: progress flows through a ProgressChannel, durations per phase
- Resilient: per-item failures are counted; a phase-level failure fails the
  session with the phase name and cause, and never escapes the task
- Idempotent: phases overwrite their outputs, so a later reprocess starts clean
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable

from ledgerpipe.db import records as record_store
from ledgerpipe.enrichment.services import EnrichmentServices
from ledgerpipe.errors import CollaboratorUnavailable, ConflictError
from ledgerpipe.pipeline.progress import ProgressCallback, ProgressChannel
from ledgerpipe.pipeline.tracker import SessionTracker
from ledgerpipe.pipeline.types import (
    PHASE_SEQUENCE,
    LedgerRecord,
    OutcomeCounters,
    Phase,
    PipelineResult,
    PipelineStatus,
    ProgressEvent,
)

logger = logging.getLogger(__name__)

BeforeFinishHook = Callable[[OutcomeCounters], Awaitable[None]]


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class PhaseOrchestrator:
    """Runs the four enrichment phases for a session.

    Responsibilities:
    1. Check the cancellation flag at each phase boundary
    2. Reset progress with the phase's unit count and forward collaborator progress
    3. Persist each phase's output and duration
    4. Store outcome counters and finish (or fail/cancel) the session
    """

    def __init__(self, services: EnrichmentServices, tracker: SessionTracker | None = None):
        self.services = services
        self.tracker = tracker or SessionTracker()

    @staticmethod
    def unit_count(phase: Phase, records: list[LedgerRecord]) -> int:
        if phase is Phase.NORMALIZE:
            return len({r.description for r in records})
        return len(records)

    async def run(
        self,
        session_id: int,
        records: list[LedgerRecord] | None = None,
        before_finish: BeforeFinishHook | None = None,
    ) -> PipelineResult:
        """Execute every phase; never raises.

        Args:
            session_id: Session already in ``processing``
            records: Detached records; loaded from the store when omitted
            before_finish: Awaited after the last phase, before the session is
                marked completed (the reprocess manager snapshots here)

        Returns:
            PipelineResult with final status and counters
        """
        started = time.perf_counter()
        counters = OutcomeCounters()
        current: Phase | None = None

        async def apply(event: ProgressEvent) -> None:
            await self.tracker.update_progress(session_id, event.phase, event.current, event.total)

        logger.info(f"Starting pipeline for import session {session_id}")

        async with ProgressChannel(apply) as channel:
            try:
                if records is None:
                    records = await record_store.load_session_records(session_id)

                for phase in PHASE_SEQUENCE:
                    if await self._cancel_if_requested(session_id, f"before {phase.value}"):
                        return PipelineResult(
                            session_id, PipelineStatus.CANCELLED, counters,
                            duration_ms=_elapsed_ms(started),
                        )

                    current = phase
                    await self.tracker.update_progress(
                        session_id, phase, 0, self.unit_count(phase, records)
                    )
                    phase_started = time.perf_counter()
                    await self._run_phase(phase, session_id, records, counters, channel.reporter(phase))
                    await channel.drain()
                    await self.tracker.record_phase_duration(
                        session_id, phase, _elapsed_ms(phase_started)
                    )
                    if phase is Phase.TAG:
                        # Breakdown is visible while later phases run
                        await self.tracker.record_outcomes(session_id, counters.tagging.as_columns())
                current = None

                await self.tracker.record_outcomes(session_id, counters.as_columns())
                # A request that arrived during the last phase still wins over completion
                if not await self.tracker.begin_finishing(session_id):
                    await self.tracker.cancel(session_id)
                    logger.info(f"Import session {session_id} cancelled after the last phase")
                    return PipelineResult(
                        session_id, PipelineStatus.CANCELLED, counters,
                        duration_ms=_elapsed_ms(started),
                    )
                if before_finish is not None:
                    await before_finish(counters)
                total_ms = _elapsed_ms(started)
                await self.tracker.finish(session_id, total_ms=total_ms)

            except Exception as e:
                reason = (
                    f"{current.value} phase failed: {e}" if current else f"Pipeline failed: {e}"
                )
                logger.error(f"Import session {session_id}: {reason}", exc_info=True)
                await self._fail_quietly(session_id, reason)
                return PipelineResult(
                    session_id, PipelineStatus.FAILED, counters,
                    error=reason, duration_ms=_elapsed_ms(started),
                )

        logger.info(
            f"Pipeline for import session {session_id} completed: "
            f"{counters.tagging.total} tagged, {counters.names_normalized} names, "
            f"{counters.records_matched} matched"
        )
        return PipelineResult(session_id, PipelineStatus.COMPLETED, counters, duration_ms=total_ms)

    async def _cancel_if_requested(self, session_id: int, where: str) -> bool:
        if not await self.tracker.cancel_requested(session_id):
            return False
        await self.tracker.cancel(session_id)
        logger.info(f"Import session {session_id} cancelled {where}")
        return True

    async def _fail_quietly(self, session_id: int, reason: str) -> None:
        try:
            await self.tracker.fail(session_id, reason)
        except ConflictError as e:
            logger.warning(f"Could not mark import session {session_id} failed: {e}")
        except Exception:
            logger.error(f"Could not mark import session {session_id} failed", exc_info=True)

    async def _run_phase(
        self,
        phase: Phase,
        session_id: int,
        records: list[LedgerRecord],
        counters: OutcomeCounters,
        progress: ProgressCallback,
    ) -> None:
        if phase is Phase.TAG:
            await self._tag(records, counters, progress)
        elif phase is Phase.NORMALIZE:
            await self._normalize(records, counters, progress)
        elif phase is Phase.MATCH:
            await self._match(session_id, records, counters, progress)
        elif phase is Phase.DETECT:
            await self._detect(records, counters, progress)

    async def _tag(self, records, counters: OutcomeCounters, progress: ProgressCallback) -> None:
        classifier = self.services.classifier
        if classifier is None or not records:
            return
        counters.tagging = await classifier.assign(records, progress)
        await record_store.save_tags(records)

    async def _normalize(self, records, counters: OutcomeCounters, progress: ProgressCallback) -> None:
        normalizer = self.services.normalizer
        if normalizer is None or not records:
            return

        by_description: dict[str, list[LedgerRecord]] = {}
        for record in records:
            by_description.setdefault(record.description, []).append(record)

        total = len(by_description)
        for idx, (description, group) in enumerate(by_description.items()):
            hint = group[0].tags[0] if group[0].tags else None
            try:
                name = await normalizer.normalize(description, hint)
            except CollaboratorUnavailable:
                raise
            except Exception as e:
                counters.name_failures += 1
                logger.warning(f"Could not normalize {description!r}: {e}")
            else:
                if name:
                    for record in group:
                        record.normalized_name = name
                    counters.names_normalized += 1
            progress(idx + 1, total)

        await record_store.save_names(records)

    async def _match(self, session_id, records, counters: OutcomeCounters, progress) -> None:
        matcher = self.services.matcher
        if matcher is None or not records:
            return
        matched, checked = await matcher.auto_match(session_id, records, progress)
        counters.records_matched = matched
        counters.records_checked = checked

    async def _detect(self, records, counters: OutcomeCounters, progress) -> None:
        detector = self.services.detector
        if detector is None or not records:
            return
        counters.detection = await detector.detect_all(records, progress)

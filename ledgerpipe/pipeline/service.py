"""Import service: synchronous ingest, then a detached enrichment pipeline.

``import_statement`` is the only code on the caller's request path. It parses
the payload, creates the session, deduplicates and stores the records and
writes the ingest counters in one transaction, then spawns the orchestrator
and returns.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ledgerpipe.config import AppConfig, get_config
from ledgerpipe.core.tasks import BackgroundTasks
from ledgerpipe.db.connection import get_session
from ledgerpipe.enrichment.services import EnrichmentServices
from ledgerpipe.errors import PayloadError
from ledgerpipe.ingestion.dedupe import ingest
from ledgerpipe.ingestion.statements import ParsedStatement, parse_csv, parse_rows
from ledgerpipe.models import RowError
from ledgerpipe.pipeline.orchestrator import PhaseOrchestrator
from ledgerpipe.pipeline.tracker import SessionInit, SessionTracker
from ledgerpipe.pipeline.types import PipelineResult

logger = logging.getLogger(__name__)

ServicesFactory = Callable[[str | None], EnrichmentServices]


@dataclass
class ImportRequest:
    """Raw statement payload plus who/what it belongs to."""

    account_ref: str
    csv_data: str | bytes | None = None
    records: list[dict[str, Any]] | None = None
    filename: str | None = None
    model: str | None = None
    initiated_by: str | None = None


@dataclass
class ImportOutcome:
    session_id: int
    imported: int
    skipped: int
    errors: list[RowError] = field(default_factory=list)
    duplicate_of: list[int] = field(default_factory=list)


class ImportService:
    """Creates sessions and hands them to the phase orchestrator."""

    def __init__(
        self,
        tracker: SessionTracker,
        tasks: BackgroundTasks,
        services_factory: ServicesFactory,
        config: AppConfig | None = None,
    ):
        self.tracker = tracker
        self.tasks = tasks
        self.services_factory = services_factory
        self.config = config or get_config()

    def parse(self, request: ImportRequest) -> ParsedStatement:
        limits = self.config.pipeline
        if not request.account_ref or not request.account_ref.strip():
            raise PayloadError("account_ref is required")
        if request.csv_data is not None and request.records is not None:
            raise PayloadError("Send either csv_data or records, not both")
        if request.csv_data is not None:
            return parse_csv(request.csv_data, limits.max_payload_bytes, limits.max_rows)
        if request.records is not None:
            return parse_rows(request.records, limits.max_rows)
        raise PayloadError("Payload must include csv_data or records")

    async def import_statement(self, request: ImportRequest) -> ImportOutcome:
        """Ingest a statement and start enrichment in the background.

        Raises:
            PayloadError: If the payload is unreadable (no session is created)
        """
        parsed = self.parse(request)
        # Build collaborators before writing anything so bad config fails fast
        services = self.services_factory(request.model)

        payload_bytes = None
        if isinstance(request.csv_data, (str, bytes)):
            payload_bytes = len(
                request.csv_data if isinstance(request.csv_data, bytes) else request.csv_data.encode("utf-8")
            )

        async with get_session() as session:
            session_id = await self.tracker.create(
                SessionInit(
                    account_ref=request.account_ref.strip(),
                    filename=request.filename,
                    payload_bytes=payload_bytes,
                    initiated_by=request.initiated_by,
                    model_variant=services.variant,
                ),
                session,
            )
            result = await ingest(session, parsed.records, session_id, request.account_ref.strip())
            await self.tracker.record_ingest(session_id, result.imported, result.skipped, session)

        logger.info(
            f"Import session {session_id}: {result.imported} imported, "
            f"{result.skipped} skipped, {len(parsed.errors)} rejected rows"
        )

        await self.tracker.start(session_id)
        if result.imported > 0:
            self.spawn(session_id, services)
        else:
            # Nothing new to enrich
            await self.tracker.finish(session_id, total_ms=0)

        return ImportOutcome(
            session_id=session_id,
            imported=result.imported,
            skipped=result.skipped,
            errors=parsed.errors,
            duplicate_of=[existing_id for _, existing_id in result.duplicates],
        )

    def spawn(self, session_id: int, services: EnrichmentServices, before_finish=None, after=None):
        """Run the orchestrator for ``session_id`` on a detached task.

        ``after`` receives the PipelineResult once the run has ended.
        """

        async def _run() -> PipelineResult:
            result = await PhaseOrchestrator(services, self.tracker).run(
                session_id, before_finish=before_finish
            )
            if after is not None:
                await after(result)
            return result

        return self.tasks.spawn(session_id, _run())

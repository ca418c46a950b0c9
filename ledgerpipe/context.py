"""Process-wide wiring shared by the web app and the CLI."""

from __future__ import annotations

from dataclasses import dataclass

from ledgerpipe.config import AppConfig, get_config
from ledgerpipe.core.tasks import BackgroundTasks
from ledgerpipe.enrichment.services import EnrichmentServices, build_services
from ledgerpipe.pipeline.service import ImportService, ServicesFactory
from ledgerpipe.pipeline.tracker import SessionTracker
from ledgerpipe.reprocess.manager import ReprocessManager


@dataclass
class PipelineContext:
    """Tracker, task registry and the two entry points into the pipeline."""

    config: AppConfig
    tracker: SessionTracker
    tasks: BackgroundTasks
    imports: ImportService
    reprocess: ReprocessManager


def build_context(
    config: AppConfig | None = None,
    services_factory: ServicesFactory | None = None,
) -> PipelineContext:
    """Build the pipeline context; tests pass their own collaborators."""
    config = config or get_config()

    if services_factory is None:

        def services_factory(variant: str | None) -> EnrichmentServices:
            return build_services(config, variant)

    tracker = SessionTracker()
    tasks = BackgroundTasks()
    imports = ImportService(tracker, tasks, services_factory, config)
    return PipelineContext(
        config=config,
        tracker=tracker,
        tasks=tasks,
        imports=imports,
        reprocess=ReprocessManager(imports, config),
    )

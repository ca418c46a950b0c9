"""Collaborator interfaces consumed by the phase orchestrator.

The orchestrator depends only on these abstract classes; concrete backends
(rules, model server, heuristics) are swapped in through
``EnrichmentServices``. Every method receives a ``progress(done, total)``
callable and must call it at least once per finished unit of work.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ledgerpipe.pipeline.progress import ProgressCallback
from ledgerpipe.pipeline.types import DetectionCounters, LedgerRecord, TaggingBreakdown


class Classifier(ABC):
    """Assigns tags to records (sets ``tags`` and ``tag_source`` in place)."""

    @abstractmethod
    async def assign(
        self, records: list[LedgerRecord], progress: ProgressCallback
    ) -> TaggingBreakdown:
        """Tag every record; per-record failures are counted, not raised.

        Raises:
            CollaboratorUnavailable: If the backend cannot be reached at all
        """


class Normalizer(ABC):
    """Turns a raw statement description into a display name."""

    @abstractmethod
    async def normalize(self, description: str, context_hint: str | None = None) -> str:
        """Called once per distinct description; ``context_hint`` is a tag."""


class Matcher(ABC):
    """Cross-references a session's records."""

    @abstractmethod
    async def auto_match(
        self, session_id: int, records: list[LedgerRecord], progress: ProgressCallback
    ) -> tuple[int, int]:
        """Return ``(matched_count, checked_count)``."""


class Detector(ABC):
    """Finds recurring-charge anomalies."""

    @abstractmethod
    async def detect_all(
        self, records: list[LedgerRecord], progress: ProgressCallback
    ) -> DetectionCounters:
        ...

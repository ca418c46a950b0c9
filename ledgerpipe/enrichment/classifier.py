"""YAML-driven tag classifier for ledgerpipe.

Assigns one tag per record using an ordered tier list; the first tier that
produces a tag wins and is recorded as the record's ``tag_source``:
1. learned       - exact description -> tag confirmed earlier
2. rule          - keyword substring rules
3. pattern       - regular expressions
4. model         - optional model server
5. bank_category - category supplied in the statement export
6. fallback      - configured catch-all tag
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import yaml

from ledgerpipe.enrichment.base import Classifier
from ledgerpipe.enrichment.model_client import ModelClient
from ledgerpipe.errors import CollaboratorUnavailable
from ledgerpipe.ingestion.dedupe import normalize_description
from ledgerpipe.pipeline.progress import ProgressCallback
from ledgerpipe.pipeline.types import LedgerRecord, TaggingBreakdown

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Tag rules file is invalid or missing."""

    pass


def load_tag_rules(path: Path) -> dict[str, Any]:
    """Read and sanity-check a tag rules YAML file.

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    if not path.exists():
        raise ConfigurationError(f"Tag rules not found: {path}")
    try:
        with path.open(encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}")

    if not isinstance(config, dict):
        raise ConfigurationError(f"Tag rules in {path} must be a mapping")
    for rule in config.get("rules") or []:
        if "tag" not in rule or not rule.get("keywords"):
            raise ConfigurationError(f"Rule without tag/keywords in {path}: {rule}")
    for pattern in config.get("patterns") or []:
        try:
            re.compile(pattern["regex"])
        except (KeyError, re.error) as e:
            raise ConfigurationError(f"Bad pattern in {path}: {pattern} ({e})")
    return config


class RuleClassifier(Classifier):
    """Tiered classifier built from a tag rules mapping."""

    def __init__(
        self,
        rules: dict[str, Any],
        model: ModelClient | None = None,
        fallback_tag: str = "Other",
    ):
        self._learned = {
            normalize_description(desc): tag for desc, tag in (rules.get("learned") or {}).items()
        }
        self._rules = [
            (rule["tag"], [normalize_description(k) for k in rule["keywords"]])
            for rule in rules.get("rules") or []
        ]
        self._patterns = [
            (p["tag"], re.compile(p["regex"], re.IGNORECASE)) for p in rules.get("patterns") or []
        ]
        self._bank_categories = {
            str(k).lower(): v for k, v in (rules.get("bank_categories") or {}).items()
        }
        self._model = model
        self.fallback_tag = fallback_tag

    @classmethod
    def from_file(cls, path: Path, model: ModelClient | None = None, fallback_tag: str = "Other") -> RuleClassifier:
        return cls(load_tag_rules(path), model=model, fallback_tag=fallback_tag)

    @property
    def known_tags(self) -> list[str]:
        tags = {tag for tag, _ in self._rules} | {tag for tag, _ in self._patterns}
        tags |= set(self._learned.values()) | set(self._bank_categories.values())
        tags.add(self.fallback_tag)
        return sorted(tags)

    def _match_local(self, text: str) -> tuple[str, str] | None:
        if text in self._learned:
            return self._learned[text], "learned"
        for tag, keywords in self._rules:
            if any(keyword in text for keyword in keywords):
                return tag, "rule"
        for tag, regex in self._patterns:
            if regex.search(text):
                return tag, "pattern"
        return None

    async def assign(
        self, records: list[LedgerRecord], progress: ProgressCallback
    ) -> TaggingBreakdown:
        breakdown = TaggingBreakdown()
        total = len(records)

        for idx, record in enumerate(records):
            text = normalize_description(record.description)
            hit = self._match_local(text)

            if hit is None and self._model is not None:
                try:
                    tag = await self._model.classify(record.description, self.known_tags)
                except CollaboratorUnavailable:
                    raise
                except Exception as e:
                    breakdown.failures += 1
                    logger.warning(f"Model classification failed for record {record.id}: {e}")
                else:
                    if tag:
                        hit = (tag, "model")

            if hit is None and record.bank_category:
                mapped = self._bank_categories.get(record.bank_category.lower())
                hit = (mapped or record.bank_category.strip().title(), "bank_category")

            if hit is None:
                hit = (self.fallback_tag, "fallback")

            tag, source = hit
            record.tags = [tag]
            record.tag_source = source
            breakdown.count(source)
            progress(idx + 1, total)

        return breakdown

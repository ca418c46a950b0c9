"""Wiring of concrete collaborators into the set the orchestrator uses."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ledgerpipe.config import AppConfig, get_config
from ledgerpipe.enrichment.base import Classifier, Detector, Matcher, Normalizer
from ledgerpipe.enrichment.classifier import RuleClassifier
from ledgerpipe.enrichment.detector import RecurringChargeDetector
from ledgerpipe.enrichment.matcher import TransferMatcher
from ledgerpipe.enrichment.model_client import ModelClient
from ledgerpipe.enrichment.normalizer import ModelNormalizer, PrefixNormalizer

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentServices:
    """Collaborators for one pipeline run; ``None`` makes that phase a no-op."""

    classifier: Classifier | None = None
    normalizer: Normalizer | None = None
    matcher: Matcher | None = None
    detector: Detector | None = None
    variant: str | None = None


def build_services(config: AppConfig | None = None, variant: str | None = None) -> EnrichmentServices:
    """Default collaborators from configuration.

    Args:
        config: Application config (defaults to the process singleton)
        variant: Model name overriding ``OLLAMA_MODEL``; enables the model
            server even when ``OLLAMA_HOST`` is unset
    """
    config = config or get_config()
    pipeline = config.pipeline

    model: ModelClient | None = None
    if config.model.enabled or variant:
        model = ModelClient.from_config(config.model)
        if variant:
            model = model.with_model(variant)
        logger.info(f"Model-backed enrichment enabled ({model.model} at {model.base_url})")

    return EnrichmentServices(
        classifier=RuleClassifier.from_file(
            config.tag_rules_file, model=model, fallback_tag=pipeline.fallback_tag
        ),
        normalizer=ModelNormalizer(model) if model else PrefixNormalizer(),
        matcher=TransferMatcher(window_days=pipeline.match_window_days),
        detector=RecurringChargeDetector(
            similarity=pipeline.detector_similarity,
            min_occurrences=pipeline.detector_min_occurrences,
            zombie_min_charges=pipeline.zombie_min_charges,
        ),
        variant=model.model if model else None,
    )

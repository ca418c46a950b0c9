"""Merchant name normalizers."""

from __future__ import annotations

import logging
import re

from ledgerpipe.enrichment.base import Normalizer
from ledgerpipe.enrichment.model_client import ModelClient

logger = logging.getLogger(__name__)

# Card network / processor noise that precedes the merchant name
_PREFIXES = re.compile(
    r"^(?:POS\s+(?:PURCHASE\s+)?|DEBIT\s+CARD\s+PURCHASE\s+|CHECKCARD\s+\d*\s*|"
    r"PURCHASE\s+AUTHORIZED\s+ON\s+\d{2}/\d{2}\s+|ACH\s+(?:DEBIT\s+)?|"
    r"SQ\s*\*\s*|TST\s*\*\s*|PAYPAL\s*\*\s*|PP\s*\*\s*)+",
    re.IGNORECASE,
)
# Store numbers, card suffixes, dates and reference codes after the merchant
_SUFFIXES = re.compile(
    r"(?:\s+#?\d{3,}.*$|\s+\d{2}/\d{2}.*$|\s+X{2,}\d+.*$|\s+CARD\s+\d+.*$|\s+REF\s*[:#].*$)",
    re.IGNORECASE,
)
_DOMAIN = re.compile(r"\.(COM|NET|ORG|IO)\b.*$", re.IGNORECASE)


class PrefixNormalizer(Normalizer):
    """Deterministic cleanup of processor prefixes and trailing noise."""

    async def normalize(self, description: str, context_hint: str | None = None) -> str:
        return self.clean(description)

    @staticmethod
    def clean(description: str) -> str:
        text = " ".join(description.split())
        text = _PREFIXES.sub("", text)
        text = _SUFFIXES.sub("", text)
        text = _DOMAIN.sub("", text)
        text = text.strip(" -*#")
        if not text:
            return " ".join(description.split()).title()
        return text.title()


class ModelNormalizer(Normalizer):
    """Asks the model server, falling back to prefix cleanup on empty answers."""

    def __init__(self, model: ModelClient, fallback: Normalizer | None = None):
        self._model = model
        self._fallback = fallback or PrefixNormalizer()
        self._cache: dict[str, str] = {}

    async def normalize(self, description: str, context_hint: str | None = None) -> str:
        key = " ".join(description.split()).upper()
        if key in self._cache:
            return self._cache[key]
        try:
            name = await self._model.normalize_merchant(description, context_hint)
        except ValueError:
            name = await self._fallback.normalize(description, context_hint)
        self._cache[key] = name
        return name

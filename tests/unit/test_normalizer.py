"""Unit tests for merchant name normalizers."""

from __future__ import annotations

import pytest

from ledgerpipe.enrichment.normalizer import ModelNormalizer, PrefixNormalizer
from ledgerpipe.errors import CollaboratorUnavailable


class TestPrefixNormalizer:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("SQ *BLUE BOTTLE COFFEE", "Blue Bottle Coffee"),
            ("WHOLE FOODS MARKET #10234", "Whole Foods Market"),
            ("NETFLIX.COM", "Netflix"),
            ("POS PURCHASE SHELL OIL 57442", "Shell Oil"),
            ("PAYPAL *SPOTIFY", "Spotify"),
            ("UBER   TRIP 01/14 HELP.UBER.COM", "Uber Trip"),
            ("AMAZON MKTPLACE XX4821", "Amazon Mktplace"),
        ],
    )
    def test_clean(self, raw, expected):
        assert PrefixNormalizer.clean(raw) == expected

    def test_all_noise_falls_back_to_original(self):
        assert PrefixNormalizer.clean("SQ *") == "Sq *"

    @pytest.mark.asyncio
    async def test_normalize_ignores_hint(self):
        assert await PrefixNormalizer().normalize("TST* CORNER DELI", "Dining") == "Corner Deli"


class StubModel:
    def __init__(self, answer=None, error=None):
        self.answer = answer
        self.error = error
        self.calls: list[tuple[str, str | None]] = []

    async def normalize_merchant(self, description, hint=None):
        self.calls.append((description, hint))
        if self.error is not None:
            raise self.error
        return self.answer


class TestModelNormalizer:
    @pytest.mark.asyncio
    async def test_results_cached_per_description(self):
        model = StubModel(answer="Netflix")
        normalizer = ModelNormalizer(model)

        assert await normalizer.normalize("NETFLIX.COM", "Subscriptions") == "Netflix"
        assert await normalizer.normalize("netflix.com") == "Netflix"
        assert model.calls == [("NETFLIX.COM", "Subscriptions")]

    @pytest.mark.asyncio
    async def test_empty_answer_falls_back_to_prefix_cleanup(self):
        normalizer = ModelNormalizer(StubModel(error=ValueError("empty merchant name")))

        assert await normalizer.normalize("SQ *BLUE BOTTLE COFFEE") == "Blue Bottle Coffee"

    @pytest.mark.asyncio
    async def test_unavailable_model_propagates(self):
        normalizer = ModelNormalizer(
            StubModel(error=CollaboratorUnavailable("model server", "connection refused"))
        )

        with pytest.raises(CollaboratorUnavailable):
            await normalizer.normalize("ANY")

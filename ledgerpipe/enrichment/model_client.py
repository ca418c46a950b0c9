"""Async client for an Ollama-compatible model server.

Only ``/api/generate`` with ``stream: false`` is used. A server that cannot
be reached raises ``CollaboratorUnavailable`` (the phase aborts); an HTTP
error or unusable answer for one prompt is an ordinary exception the caller
counts as a per-item failure.
"""

from __future__ import annotations

import logging

import httpx

from ledgerpipe.config import ModelConfig
from ledgerpipe.errors import CollaboratorUnavailable

logger = logging.getLogger(__name__)

CLASSIFY_PROMPT = """Classify this bank transaction into exactly one category.

Transaction: {description}
Categories: {tags}

Answer with the category name only. If none fits, answer NONE."""

NORMALIZE_PROMPT = """Extract the merchant name from this bank transaction description.

Description: {description}
{hint}
Answer with the merchant name only, in title case, without store numbers or payment processor prefixes."""


class ModelClient:
    """Thin wrapper over httpx for prompt -> text generation."""

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config: ModelConfig) -> ModelClient:
        return cls(config.base_url, config.model, config.timeout_seconds)

    def with_model(self, model: str) -> ModelClient:
        """Same server, different model (reprocess variant override)."""
        return ModelClient(self.base_url, model, self.timeout, self._transport)

    async def generate(self, prompt: str) -> str:
        payload = {"model": self.model, "prompt": prompt, "stream": False}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post("/api/generate", json=payload)
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            raise CollaboratorUnavailable(f"model server {self.base_url}", str(e) or type(e).__name__) from e

        response.raise_for_status()
        text = response.json().get("response", "")
        return text.strip()

    async def classify(self, description: str, tags: list[str]) -> str | None:
        """Pick one of ``tags`` for a description, or None."""
        answer = await self.generate(
            CLASSIFY_PROMPT.format(description=description, tags=", ".join(tags))
        )
        answer = answer.strip().strip(".\"'")
        for tag in tags:
            if answer.lower() == tag.lower():
                return tag
        if answer and answer.upper() != "NONE":
            logger.debug(f"Model answered unknown category {answer!r} for {description!r}")
        return None

    async def normalize_merchant(self, description: str, hint: str | None = None) -> str:
        hint_line = f"Category: {hint}" if hint else ""
        answer = await self.generate(
            NORMALIZE_PROMPT.format(description=description, hint=hint_line)
        )
        name = answer.splitlines()[0].strip().strip(".\"'") if answer else ""
        if not name:
            raise ValueError(f"empty merchant name for {description!r}")
        return name

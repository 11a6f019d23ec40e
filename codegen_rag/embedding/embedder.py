"""
OpenAI Embedding Client
------------------------
Wraps an OpenAI-compatible embeddings endpoint with:
  - One async API call per embed() invocation
  - Dimensionality check against the configured vector size
  - Token usage logging

Embedding failures are NOT retried here: a failed call aborts the current
indexing or retrieval stage and surfaces as EmbeddingError.
"""
from __future__ import annotations

import time
from typing import Optional

from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from codegen_rag.errors import EmbeddingError

MODEL = "text-embedding-3-small"
DIMENSIONS = 1536          # text-embedding-3-small native dimensions


class Embedder:
    """Turns text into fixed-length float vectors."""

    def __init__(
        self,
        model: str = MODEL,
        dimensions: int = DIMENSIONS,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        # SDK-level retries are disabled: retry policy lives in the completion client only
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        self.total_tokens_used: int = 0
        self.total_api_calls: int = 0

    async def embed(self, text: str) -> list[float]:
        """Embed a single string. Raises EmbeddingError on any failure."""
        # Empty input is rejected by the API
        safe_text = text if text.strip() else " "
        start = time.perf_counter()
        try:
            response = await self._client.embeddings.create(model=self.model, input=safe_text)
        except OpenAIError as exc:
            logger.error(f"[Embedder] API call failed: {exc}")
            raise EmbeddingError(f"Embedding request failed: {exc}", stage="embedding") from exc
        elapsed = time.perf_counter() - start

        self.total_api_calls += 1
        if not response.data or not response.data[0].embedding:
            raise EmbeddingError("Embedding response contained no vector", stage="embedding")

        vector = list(response.data[0].embedding)
        if len(vector) != self.dimensions:
            raise EmbeddingError(
                f"Embedding has {len(vector)} dimensions, expected {self.dimensions}",
                stage="embedding",
            )

        tokens_used = response.usage.total_tokens if response.usage else 0
        self.total_tokens_used += tokens_used
        logger.debug(f"[Embedder] API call: {tokens_used} tokens, {elapsed:.2f}s")
        return vector

    def usage_summary(self) -> dict:
        return {
            "model": self.model,
            "total_api_calls": self.total_api_calls,
            "total_tokens_used": self.total_tokens_used,
            # text-embedding-3-small: $0.020 per million tokens
            "estimated_cost_usd": round(self.total_tokens_used / 1_000_000 * 0.020, 6),
        }

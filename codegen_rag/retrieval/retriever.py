"""
Version-scoped Retriever
-------------------------
Embeds the user request and runs a dense search over the vector index,
restricted to a single version.  Also renders the retrieved chunks into
the context block that the prompt templates embed.

The retriever is stateless per query -- call retrieve_context() as many
times as you like from the same instance.
"""
from __future__ import annotations

from typing import Optional

from langsmith import traceable
from loguru import logger

from codegen_rag.embedding.embedder import Embedder
from codegen_rag.embedding.faiss_index import VectorIndex
from codegen_rag.schemas import ContextChunk
from codegen_rag.utils.helpers import truncate_text

NO_CONTEXT_FOUND = "No relevant context found."
CONTEXT_DELIMITER = "\n\n---\n\n"


class Retriever:
    """Embed query -> filtered vector search -> ranked ContextChunks."""

    def __init__(self, index: VectorIndex, embedder: Embedder, top_k: int = 5) -> None:
        self.index = index
        self.embedder = embedder
        self.top_k = top_k

    @traceable(name="retrieve_context", run_type="retriever")
    async def retrieve_context(
        self,
        query: str,
        version_id: str,
        top_k: Optional[int] = None,
    ) -> list[ContextChunk]:
        """
        Return the most similar chunks of `version_id`, best first.

        An empty list means the version has nothing indexed; callers decide
        whether that is fatal.
        """
        limit = self.top_k if top_k is None else top_k
        logger.debug(f"[Retriever] version={version_id} top_k={limit} query={truncate_text(query, 80)!r}")

        query_vec = await self.embedder.embed(query)
        hits = await self.index.search(query_vec, version_id=version_id, top_k=limit)

        chunks = [
            ContextChunk(
                content=hit.payload.content,
                source=hit.payload.filename,
                relevance_score=hit.score,
                version_id=hit.payload.version_id,
                file_id=hit.payload.file_id,
                filename=hit.payload.filename,
                chunk_index=hit.payload.chunk_index,
            )
            for hit in hits
        ]

        logger.info(
            f"[Retriever] Retrieved {len(chunks)} chunks "
            f"(top score: {chunks[0].relevance_score:.4f})" if chunks else "[Retriever] No results"
        )
        return chunks

    @staticmethod
    def build_context_string(chunks: list[ContextChunk]) -> str:
        """Join chunks in ranked order, each tagged with source and relevance."""
        if not chunks:
            return NO_CONTEXT_FOUND
        return CONTEXT_DELIMITER.join(
            f"[Source: {chunk.source}, Relevance: {chunk.relevance_score:.3f}]\n{chunk.content}"
            for chunk in chunks
        )

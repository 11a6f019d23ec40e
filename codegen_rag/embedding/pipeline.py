"""
Indexing Pipeline - Chunk, Embed, Upsert
-----------------------------------------
Invoked by the file-management collaborator whenever a DDL file or a
supporting document is uploaded or deleted, keeping the vector index in
sync with the files of each version.

A document is always indexed as a whole:
  1. Chunk the text with TextChunker
  2. Embed every chunk sequentially (order is carried in chunk_index)
  3. Drop any previous points of the same file
  4. Upsert the new batch

Steps 3-4 only run once every chunk has been embedded, so an embedding
failure leaves the previously indexed version of the file untouched.
"""
from __future__ import annotations

import time
import uuid
from pathlib import Path
from typing import Optional

from loguru import logger

from codegen_rag.chunking.chunker import TextChunker
from codegen_rag.chunking.extract import extract_text
from codegen_rag.embedding.embedder import Embedder
from codegen_rag.embedding.faiss_index import VectorIndex
from codegen_rag.schemas import DocumentChunk, VectorPoint


class DocumentIndexer:
    """Keeps the vector index synchronised with uploaded files."""

    def __init__(self, chunker: TextChunker, embedder: Embedder, index: VectorIndex) -> None:
        self.chunker = chunker
        self.embedder = embedder
        self.index = index

    async def index_document(
        self,
        content: str,
        version_id: str,
        file_id: str,
        filename: str,
    ) -> int:
        """
        Chunk, embed and store one document.

        Returns:
            Number of chunks written.

        Raises:
            EmbeddingError / VectorIndexError -- indexing of this file is
            aborted; other files are unaffected.
        """
        started = time.perf_counter()
        texts = self.chunker.chunk(content)
        if not texts:
            logger.warning(f"[Indexer] {filename}: no text to index (file_id={file_id})")
            await self.index.delete_by_file_id(file_id)
            return 0

        points: list[VectorPoint] = []
        for i, text in enumerate(texts):
            vector = await self.embedder.embed(text)
            chunk = DocumentChunk(
                content=text,
                version_id=version_id,
                file_id=file_id,
                filename=filename,
                chunk_index=i,
                total_chunks=len(texts),
            )
            points.append(VectorPoint(id=chunk.chunk_id, vector=vector, payload=chunk))

        removed = await self.index.delete_by_file_id(file_id)
        await self.index.upsert(points)

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"[Indexer] Indexed {filename} | version={version_id} file_id={file_id} | "
            f"{len(points)} chunks ({removed} replaced) | {elapsed_ms:.0f}ms"
        )
        return len(points)

    async def index_file(
        self,
        path: str | Path,
        version_id: str,
        file_id: Optional[str] = None,
    ) -> tuple[str, int]:
        """Read a file from disk and index it. Returns (file_id, chunk_count)."""
        path = Path(path)
        file_id = file_id or str(uuid.uuid4())
        content = extract_text(path.name, path.read_bytes())
        count = await self.index_document(content, version_id, file_id, path.name)
        return file_id, count

    async def delete_file_embeddings(self, file_id: str) -> int:
        removed = await self.index.delete_by_file_id(file_id)
        logger.info(f"[Indexer] Deleted {removed} chunks for file {file_id}")
        return removed

    async def delete_version_embeddings(self, version_id: str) -> int:
        removed = await self.index.delete_by_version_id(version_id)
        logger.info(f"[Indexer] Deleted {removed} chunks for version {version_id}")
        return removed

"""
Shared test fixtures for the codegen-rag test suite.

Provides fakes for the two network collaborators (embedding and completion)
and a real in-memory FAISS index with a small dimensionality.
"""
import asyncio
import re
import zlib
from typing import AsyncIterator, Callable, Optional, Union

import pytest

from codegen_rag.chunking.chunker import TextChunker
from codegen_rag.embedding.faiss_index import VectorIndex
from codegen_rag.embedding.pipeline import DocumentIndexer
from codegen_rag.errors import EmbeddingError
from codegen_rag.generation.completion import CompletionClient, CompletionResponse
from codegen_rag.retrieval.retriever import Retriever

DIMS = 8
_TOKEN = re.compile(r"\w+")


class FakeEmbedder:
    """Deterministic bag-of-words vectors: each token bumps one crc32 bucket."""

    def __init__(self, dimensions: int = DIMS) -> None:
        self.dimensions = dimensions
        self.calls: list[str] = []
        self.fail = False

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingError("embedding backend down", stage="embedding")
        vector = [0.0] * self.dimensions
        for token in _TOKEN.findall(text.lower()):
            vector[zlib.crc32(token.encode()) % self.dimensions] += 1.0
        return vector


Reply = Union[str, Exception, Callable[[str, str], str]]


class FakeCompletionClient(CompletionClient):
    """Returns scripted replies in order; the last reply repeats."""

    def __init__(self, *replies: Reply, model: str = "fake-model", delay_s: float = 0.0) -> None:
        self.replies = list(replies) or [""]
        self.model = model
        self.delay_s = delay_s
        self.calls: list[dict] = []

    def _next(self) -> Reply:
        return self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]

    async def complete(self, system_prompt: str, user_prompt: str, temperature: float = 0.7) -> CompletionResponse:
        self.calls.append({"system": system_prompt, "user": user_prompt, "temperature": temperature})
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        reply = self._next()
        if isinstance(reply, Exception):
            raise reply
        content = reply(system_prompt, user_prompt) if callable(reply) else reply
        return CompletionResponse(content=content, tokens_used=42, model=self.model)

    async def stream(self, system_prompt: str, user_prompt: str, temperature: float = 0.7) -> AsyncIterator[str]:
        response = await self.complete(system_prompt, user_prompt, temperature)
        for word in response.content.split(" "):
            yield word + " "


def run(coro):
    return asyncio.run(coro)


def make_index(persist_dir: Optional[str] = None) -> VectorIndex:
    index = VectorIndex(persist_dir=persist_dir)
    run(index.ensure_collection(DIMS))
    return index


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def index() -> VectorIndex:
    return make_index()


@pytest.fixture
def indexer(embedder, index) -> DocumentIndexer:
    return DocumentIndexer(TextChunker(chunk_size=200, chunk_overlap=40), embedder, index)


@pytest.fixture
def retriever(embedder, index) -> Retriever:
    return Retriever(index, embedder, top_k=5)


@pytest.fixture
def orders_ddl() -> str:
    return "CREATE TABLE orders (id INT PRIMARY KEY, customer_id INT, total DECIMAL(10, 2));"

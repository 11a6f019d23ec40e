"""
Generation Orchestrator
------------------------
Runs the per-request generation lifecycle:

    GenerationRequest
        |
        v
    input validation (request text, version id, output type)
        |
        v
    Retriever (embed request -> version-filtered vector search, top_k=5)
        |
        v
    build_prompts (system + user prompt for the output grammar)
        |
        v
    CompletionClient (retry / backoff / per-attempt timeout)
        |
        v
    validate_output (structural checks, informational only)
        |
        v
    GenerationResult (code + metadata + validation report)

Stages run strictly in order and any failure aborts the request with a
typed CodegenError; there is no partial result.  The outer generate_code()
method is decorated with @traceable so LangSmith captures the whole chain
in a single trace.

Collaborators are constructed by build_components() and injected, so each
external call (embedding, vector search, completion) can be replaced
independently in tests.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from langsmith import traceable
from loguru import logger

from codegen_rag.chunking.chunker import TextChunker
from codegen_rag.config import Settings
from codegen_rag.embedding.embedder import Embedder
from codegen_rag.embedding.faiss_index import VectorIndex
from codegen_rag.embedding.pipeline import DocumentIndexer
from codegen_rag.errors import (
    CodegenError,
    GenerationTimeoutError,
    InvalidRequestError,
    NoContextError,
)
from codegen_rag.generation.ambiguity import AmbiguityDetector
from codegen_rag.generation.completion import (
    AnthropicCompletionClient,
    CompletionClient,
    OpenAICompletionClient,
)
from codegen_rag.generation.prompts import PromptPair, build_prompts
from codegen_rag.retrieval.retriever import Retriever
from codegen_rag.schemas import (
    AmbiguityResult,
    ContextChunk,
    GenerationMetadata,
    GenerationRequest,
    GenerationResult,
    OutputType,
)
from codegen_rag.utils.helpers import truncate_text
from codegen_rag.validation.validator import validate_output

REQUEST_DEADLINE_S = 30.0


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class GenerationOrchestrator:
    """
    End-to-end code generation for one version's indexed context.

    Usage:
        orchestrator = build_components(settings).orchestrator
        result = await orchestrator.generate_code(
            GenerationRequest(request="get all orders", output_type="sql", version_id="v1")
        )
        print(result.generated_code)
    """

    def __init__(
        self,
        retriever: Retriever,
        completion_client: CompletionClient,
        ambiguity_detector: Optional[AmbiguityDetector] = None,
        top_k: int = 5,
        temperature: float = 0.7,
    ) -> None:
        self.retriever = retriever
        self.completion_client = completion_client
        self.ambiguity_detector = ambiguity_detector or AmbiguityDetector()
        self.top_k = top_k
        self.temperature = temperature
        # deadline-expired tasks still running in the background
        self._abandoned: set[asyncio.Task] = set()

    # --- Input validation -----------------------------------------------------

    @staticmethod
    def _validate_request(request: GenerationRequest) -> OutputType:
        if not request.request or not request.request.strip():
            raise InvalidRequestError("Request text must not be empty", stage="input")
        if not request.version_id or not request.version_id.strip():
            raise InvalidRequestError("version_id must not be empty", stage="input")
        return OutputType.parse(request.output_type)

    async def _prepare(
        self, request: GenerationRequest, request_id: str
    ) -> tuple[OutputType, list[ContextChunk], PromptPair]:
        """Validate input, retrieve context and build prompts."""
        output_type = self._validate_request(request)

        chunks = await self.retriever.retrieve_context(request.request, request.version_id, self.top_k)
        if not chunks:
            raise NoContextError(
                f"No indexed context for version {request.version_id!r}",
                stage="retrieval",
                suggestions=["Upload DDL files or documentation for this version first"],
            )

        context = self.retriever.build_context_string(chunks)
        prompts = build_prompts(output_type, context, request.request)
        logger.debug(
            f"[Orchestrator:{request_id}] Context: {len(chunks)} chunks, "
            f"{len(context)} chars"
        )
        return output_type, chunks, prompts

    # --- Main path ------------------------------------------------------------

    @traceable(name="generate_code", run_type="chain")
    async def generate_code(self, request: GenerationRequest) -> GenerationResult:
        """
        Run the full pipeline for a single request.

        Steps:
            1. Validate input (InvalidRequestError / UnsupportedOutputTypeError)
            2. Retrieve version-scoped context (NoContextError when empty)
            3. Build the prompts for the output type
            4. Obtain a completion (CompletionError once retries are exhausted)
            5. Validate the generated code (never raises)

        Returns:
            GenerationResult with the generated code, metadata and the
            validation report.  An invalid report does not suppress the code.
        """
        start = time.perf_counter()
        request_id = uuid.uuid4().hex[:8]
        logger.info(
            f"[Orchestrator:{request_id}] {request.output_type} | version={request.version_id} | "
            f"user={request.user_id or '-'} | {truncate_text(request.request, 100)!r}"
        )

        stage = "input"
        try:
            output_type, chunks, prompts = await self._prepare(request, request_id)
            stage = "completion"
            response = await self.completion_client.complete(
                prompts.system_prompt, prompts.user_prompt, temperature=self.temperature
            )
        except CodegenError as exc:
            logger.error(
                f"[Orchestrator:{request_id}] Failed at stage={exc.stage or stage} | "
                f"{exc.code}: {exc}"
            )
            raise

        validation = validate_output(response.content, output_type)
        elapsed_ms = int((time.perf_counter() - start) * 1000)

        logger.info(
            f"[Orchestrator:{request_id}] Complete | {elapsed_ms}ms | "
            f"tokens={response.tokens_used} | valid={validation.is_valid}"
            + (f" | errors={validation.errors}" if validation.errors else "")
        )

        return GenerationResult(
            generated_code=response.content,
            metadata=GenerationMetadata(
                tokens_used=response.tokens_used,
                processing_time_ms=elapsed_ms,
                context_files=list(dict.fromkeys(c.filename for c in chunks)),
                model=response.model,
            ),
            validation=validation,
        )

    async def generate_code_with_deadline(
        self,
        request: GenerationRequest,
        deadline_s: float = REQUEST_DEADLINE_S,
    ) -> GenerationResult:
        """
        Race generate_code() against a deadline.

        On expiry the in-flight task is abandoned, not cancelled or awaited:
        the upstream call may still finish server-side.
        """
        task = asyncio.ensure_future(self.generate_code(request))
        done, _ = await asyncio.wait({task}, timeout=deadline_s)
        if task in done:
            return task.result()

        self._abandoned.add(task)
        task.add_done_callback(self._discard_abandoned)
        logger.warning(
            f"[Orchestrator] Deadline of {deadline_s:.1f}s exceeded for version="
            f"{request.version_id}; abandoning in-flight request"
        )
        raise GenerationTimeoutError(
            f"Generation exceeded the {deadline_s:.1f}s deadline", stage="deadline"
        )

    def _discard_abandoned(self, task: asyncio.Task) -> None:
        self._abandoned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"[Orchestrator] Abandoned request finished with: {task.exception()!r}")

    # --- Streaming ------------------------------------------------------------

    async def stream_code(self, request: GenerationRequest) -> AsyncIterator[str]:
        """
        Same retrieval and prompting as generate_code(), then yield the
        completion fragments as they arrive.  No retry and no validation.
        """
        request_id = uuid.uuid4().hex[:8]
        _, _, prompts = await self._prepare(request, request_id)
        logger.info(f"[Orchestrator:{request_id}] Streaming {request.output_type} completion")
        async for fragment in self.completion_client.stream(
            prompts.system_prompt, prompts.user_prompt, temperature=self.temperature
        ):
            yield fragment

    # --- Ambiguity ------------------------------------------------------------

    async def detect_ambiguity(self, request: str) -> AmbiguityResult:
        """Advisory pre-check; the caller decides whether to block."""
        return await self.ambiguity_detector.detect(request)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

@dataclass
class Components:
    """Every collaborator of the core, built once per process."""

    settings: Settings
    embedder: Embedder
    index: VectorIndex
    indexer: DocumentIndexer
    retriever: Retriever
    completion_client: CompletionClient
    orchestrator: GenerationOrchestrator

    async def start(self) -> None:
        """Create (or load) the vector collection. Call once before use."""
        await self.index.ensure_collection(
            self.settings.embedding.dimensions, self.settings.vector_index.distance
        )


def build_completion_client(settings: Settings) -> CompletionClient:
    cfg = settings.completion
    retry_options = dict(
        max_retries=cfg.max_retries,
        initial_delay_ms=cfg.initial_delay_ms,
        max_delay_ms=cfg.max_delay_ms,
        timeout_s=cfg.timeout_ms / 1000,
    )
    if cfg.provider == "anthropic":
        return AnthropicCompletionClient(
            model=cfg.model,
            api_key=cfg.api_key,
            base_url=cfg.base_url,
            max_tokens=cfg.max_tokens,
            **retry_options,
        )
    return OpenAICompletionClient(
        model=cfg.model,
        api_key=cfg.api_key,
        base_url=cfg.base_url,
        max_tokens=cfg.max_tokens,
        **retry_options,
    )


def build_components(settings: Settings) -> Components:
    """Construct and wire every collaborator from explicit settings."""
    embedder = Embedder(
        model=settings.embedding.model,
        dimensions=settings.embedding.dimensions,
        api_key=settings.embedding.api_key,
        base_url=settings.embedding.base_url,
    )
    index = VectorIndex(persist_dir=settings.vector_index.path)
    chunker = TextChunker(settings.chunking.chunk_size, settings.chunking.chunk_overlap)
    retriever = Retriever(index, embedder, top_k=settings.retrieval.top_k)
    completion_client = build_completion_client(settings)
    orchestrator = GenerationOrchestrator(
        retriever=retriever,
        completion_client=completion_client,
        ambiguity_detector=AmbiguityDetector.with_llm(completion_client),
        top_k=settings.retrieval.top_k,
        temperature=settings.completion.temperature,
    )
    logger.info(
        f"[Components] Ready | embedding={settings.embedding.model} | "
        f"completion={settings.completion.provider}:{settings.completion.model} | "
        f"index={settings.vector_index.path or 'in-memory'}"
    )
    return Components(
        settings=settings,
        embedder=embedder,
        index=index,
        indexer=DocumentIndexer(chunker, embedder, index),
        retriever=retriever,
        completion_client=completion_client,
        orchestrator=orchestrator,
    )

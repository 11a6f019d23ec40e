"""End-to-end tests for the generation orchestrator with faked network calls."""
import asyncio

import pytest

from codegen_rag.config import Settings
from codegen_rag.errors import (
    CompletionError,
    GenerationTimeoutError,
    InvalidRequestError,
    NoContextError,
    UnsupportedOutputTypeError,
)
from codegen_rag.generation.completion import AnthropicCompletionClient, OpenAICompletionClient
from codegen_rag.generation.prompts import SQL_SYSTEM_PROMPT
from codegen_rag.schemas import GenerationRequest
from codegen_rag.serving.pipeline import GenerationOrchestrator, build_components

from conftest import FakeCompletionClient, run

ORDERS_SQL = "-- all orders\nSELECT id, customer_id, total FROM orders;"


def _request(text="get all orders", output_type="sql", version_id="V"):
    return GenerationRequest(request=text, output_type=output_type, version_id=version_id, user_id="u1")


@pytest.fixture
def completion():
    return FakeCompletionClient(ORDERS_SQL, model="gpt-4o-mini")


@pytest.fixture
def orchestrator(retriever, completion):
    return GenerationOrchestrator(retriever, completion)


@pytest.fixture
def indexed(indexer, orders_ddl):
    run(indexer.index_document(orders_ddl, "V", "ddl-1", "ecommerce.sql"))


class TestGenerateCode:

    def test_orders_end_to_end(self, indexed, orchestrator, completion):
        result = run(orchestrator.generate_code(_request()))

        assert "SELECT" in result.generated_code
        assert "orders" in result.generated_code
        assert result.validation.is_valid
        assert result.metadata.context_files == ["ecommerce.sql"]
        assert result.metadata.tokens_used == 42
        assert result.metadata.model == "gpt-4o-mini"
        assert result.metadata.processing_time_ms >= 0

        call = completion.calls[0]
        assert call["system"] == SQL_SYSTEM_PROMPT
        assert "[Source: ecommerce.sql, Relevance: " in call["user"]
        assert "CREATE TABLE orders" in call["user"]
        assert call["temperature"] == 0.7

    def test_invalid_output_is_returned_with_report(self, indexed, retriever):
        orchestrator = GenerationOrchestrator(retriever, FakeCompletionClient("SELECT (id FROM orders"))
        result = run(orchestrator.generate_code(_request()))

        assert result.generated_code == "SELECT (id FROM orders"
        assert not result.validation.is_valid

    def test_context_files_are_distinct_in_rank_order(self, indexer, orchestrator, orders_ddl):
        long_doc = orders_ddl + " " + " ".join(f"Orders note {i}." for i in range(40))
        run(indexer.index_document(long_doc, "V", "notes", "orders_notes.md"))
        result = run(orchestrator.generate_code(_request()))

        files = result.metadata.context_files
        assert files == ["orders_notes.md"]

    def test_empty_version_raises_without_calling_completion(self, orchestrator, completion):
        with pytest.raises(NoContextError):
            run(orchestrator.generate_code(_request(version_id="empty")))
        assert completion.calls == []

    def test_completion_failure_propagates(self, indexed, retriever):
        orchestrator = GenerationOrchestrator(retriever, FakeCompletionClient(CompletionError("down", attempts=4)))
        with pytest.raises(CompletionError) as exc_info:
            run(orchestrator.generate_code(_request()))
        assert exc_info.value.code == "GENERATION_UNAVAILABLE"

    @pytest.mark.parametrize(
        "request_kwargs, error",
        [
            ({"text": "   "}, InvalidRequestError),
            ({"version_id": ""}, InvalidRequestError),
            ({"output_type": "xml"}, UnsupportedOutputTypeError),
        ],
    )
    def test_input_validated_before_retrieval(self, orchestrator, embedder, request_kwargs, error):
        with pytest.raises(error):
            run(orchestrator.generate_code(_request(**request_kwargs)))
        assert embedder.calls == []

    def test_output_type_is_case_insensitive(self, indexed, orchestrator):
        assert run(orchestrator.generate_code(_request(output_type="SQL"))).validation.is_valid


class TestDeadline:

    def test_expired_deadline_abandons_request(self, indexed, retriever):
        slow = FakeCompletionClient(ORDERS_SQL, delay_s=1.0)
        orchestrator = GenerationOrchestrator(retriever, slow)

        async def scenario():
            with pytest.raises(GenerationTimeoutError):
                await orchestrator.generate_code_with_deadline(_request(), deadline_s=0.05)
            return len(orchestrator._abandoned)

        assert run(scenario()) == 1

    def test_fast_request_beats_deadline(self, indexed, orchestrator):
        result = run(orchestrator.generate_code_with_deadline(_request(), deadline_s=5.0))
        assert result.validation.is_valid

    def test_errors_inside_deadline_propagate(self, orchestrator):
        with pytest.raises(NoContextError):
            run(orchestrator.generate_code_with_deadline(_request(version_id="none"), deadline_s=5.0))

    def test_abandoned_task_is_released_when_it_finishes(self, indexed, retriever):
        orchestrator = GenerationOrchestrator(retriever, FakeCompletionClient(ORDERS_SQL, delay_s=0.1))

        async def scenario():
            with pytest.raises(GenerationTimeoutError):
                await orchestrator.generate_code_with_deadline(_request(), deadline_s=0.01)
            await asyncio.sleep(0.3)
            return len(orchestrator._abandoned)

        assert run(scenario()) == 0


class TestStreamingAndAmbiguity:

    def test_stream_yields_fragments(self, indexed, orchestrator):
        async def collect():
            return [f async for f in orchestrator.stream_code(_request())]

        fragments = run(collect())
        assert "".join(fragments).strip() == ORDERS_SQL

    def test_stream_requires_context(self, orchestrator):
        async def collect():
            return [f async for f in orchestrator.stream_code(_request(version_id="none"))]

        with pytest.raises(NoContextError):
            run(collect())

    def test_detect_ambiguity_defaults_to_heuristics(self, orchestrator, completion):
        assert run(orchestrator.detect_ambiguity("it")).is_ambiguous
        assert not run(orchestrator.detect_ambiguity("get all orders placed today")).is_ambiguous
        assert completion.calls == []


class TestBuildComponents:

    def test_wires_openai_backend(self):
        settings = Settings.model_validate({
            "completion": {"api_key": "sk-test", "max_retries": 2, "timeout_ms": 5000},
            "embedding": {"api_key": "sk-test", "dimensions": 8},
            "vector_index": {"path": None},
        })
        components = build_components(settings)

        assert isinstance(components.completion_client, OpenAICompletionClient)
        assert components.completion_client.max_retries == 2
        assert components.completion_client.timeout_s == 5.0
        assert components.orchestrator.retriever is components.retriever
        assert components.indexer.index is components.index

        run(components.start())
        assert components.index.dimensions == 8

    def test_wires_anthropic_backend(self):
        settings = Settings.model_validate({
            "completion": {"provider": "anthropic", "model": "claude-haiku-4-5", "api_key": "sk-ant-test"},
            "embedding": {"api_key": "sk-test"},
            "vector_index": {"path": None},
        })
        components = build_components(settings)
        assert isinstance(components.completion_client, AnthropicCompletionClient)
        assert components.completion_client.model == "claude-haiku-4-5"

"""Tests for the ambiguity strategy chain."""
import pytest

from codegen_rag.errors import CompletionError
from codegen_rag.generation.ambiguity import (
    TOO_SHORT_PROMPT,
    UNDERSPECIFIED_PROMPT,
    VAGUE_PRONOUN_PROMPT,
    AmbiguityDetector,
    HeuristicCheck,
    LLMAmbiguityCheck,
)

from conftest import FakeCompletionClient, run


def _detector(*replies):
    client = FakeCompletionClient(*replies)
    return AmbiguityDetector.with_llm(client), client


class TestHeuristics:

    def test_short_request_needs_no_network(self):
        detector, client = _detector('{"isAmbiguous": false}')
        result = run(detector.detect("it"))

        assert result.is_ambiguous
        assert result.clarification_prompt == TOO_SHORT_PROMPT
        assert client.calls == []

    @pytest.mark.parametrize("request_text", ["That table from before please", "  these rows need updating soon"])
    def test_leading_pronoun(self, request_text):
        detector, client = _detector('{"isAmbiguous": false}')
        result = run(detector.detect(request_text))
        assert result.is_ambiguous
        assert result.clarification_prompt == VAGUE_PRONOUN_PROMPT
        assert result.source == "heuristic:vague_pronoun"
        assert client.calls == []

    def test_pronoun_must_be_a_whole_word(self):
        detector, _ = _detector('{"isAmbiguous": false}')
        assert not run(detector.detect("items sold per region last month")).is_ambiguous

    def test_repeated_question_marks(self):
        detector, _ = _detector('{"isAmbiguous": false}')
        result = run(detector.detect("get orders maybe by region??"))
        assert result.source == "heuristic:uncertain"

    def test_short_verbless_request(self):
        detector, _ = _detector('{"isAmbiguous": false}')
        result = run(detector.detect("orders today"))
        assert result.is_ambiguous
        assert result.clarification_prompt == UNDERSPECIFIED_PROMPT

    def test_short_request_with_verb_passes_heuristics(self):
        detector, client = _detector('{"isAmbiguous": false}')
        result = run(detector.detect("list all users"))
        assert not result.is_ambiguous
        assert len(client.calls) == 1

    def test_long_verbless_request_passes_heuristics(self):
        detector, client = _detector('{"isAmbiguous": false}')
        assert not run(detector.detect("monthly revenue per product category")).is_ambiguous
        assert len(client.calls) == 1


class TestLLMTier:

    def test_llm_verdict_is_used(self):
        detector, client = _detector(
            'Sure! {"isAmbiguous": true, "clarificationPrompt": "Which date range?"} Hope that helps.'
        )
        result = run(detector.detect("get the revenue numbers for the report"))

        assert result.is_ambiguous
        assert result.clarification_prompt == "Which date range?"
        assert result.source == "llm"
        assert client.calls[0]["temperature"] == 0.3

    def test_clear_verdict_drops_prompt(self):
        detector, _ = _detector('{"isAmbiguous": false, "clarificationPrompt": "n/a"}')
        result = run(detector.detect("get all orders placed in 2024"))
        assert not result.is_ambiguous
        assert result.clarification_prompt is None

    @pytest.mark.parametrize("reply", ["I think it is fine.", "{not json}", "[1, 2]"])
    def test_unparsable_reply_fails_open(self, reply):
        detector, _ = _detector(reply)
        result = run(detector.detect("get all orders placed in 2024"))
        assert not result.is_ambiguous
        assert result.source == "default"

    def test_completion_failure_fails_open(self):
        detector, _ = _detector(CompletionError("down", attempts=4))
        result = run(detector.detect("get all orders placed in 2024"))
        assert not result.is_ambiguous

    def test_unexpected_backend_error_fails_open(self):
        detector, client = _detector(RuntimeError("backend exploded"))
        result = run(detector.detect("get all orders placed in 2024"))
        assert not result.is_ambiguous
        assert result.source == "default"
        assert len(client.calls) == 1

    def test_reply_without_text_fails_open(self):
        detector, _ = _detector(lambda system, user: None)
        result = run(detector.detect("get all orders placed in 2024"))
        assert not result.is_ambiguous
        assert result.source == "default"


def test_custom_chain_first_hit_wins():
    calls = []

    def rule(name, hit):
        def predicate(text):
            calls.append(name)
            return hit
        return HeuristicCheck(name, predicate, f"{name} prompt")

    detector = AmbiguityDetector([rule("a", False), rule("b", True), rule("c", True)])
    result = run(detector.detect("anything at all"))

    assert result.clarification_prompt == "b prompt"
    assert calls == ["a", "b"]


def test_empty_chain_defaults_to_clear():
    assert not run(AmbiguityDetector([]).detect("it")).is_ambiguous


def test_llm_check_alone():
    check = LLMAmbiguityCheck(FakeCompletionClient('{"isAmbiguous": true}'))
    result = run(check("it"))
    assert result.is_ambiguous
    assert result.clarification_prompt is None

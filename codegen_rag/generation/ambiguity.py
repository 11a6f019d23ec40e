"""
Ambiguity Detection
--------------------
Decides whether a request needs clarification before generation.

Checks run in order and the first one that returns a verdict wins:

  1. HeuristicCheck  -- cheap regex/length rules, no network
  2. LLMAmbiguityCheck -- asks the completion model for a JSON verdict

If no check reaches a verdict the request is treated as clear.  The LLM
tier fails open: an unparsable reply or a completion failure yields no
verdict rather than an error.
"""
from __future__ import annotations

import json
import re
from typing import Callable, Optional, Protocol

from loguru import logger

from codegen_rag.generation.completion import CompletionClient
from codegen_rag.schemas import AmbiguityResult

ACTION_VERBS = re.compile(
    r"\b(get|find|list|show|create|generate|fetch|retrieve|select|query|search|"
    r"filter|calculate|count|sum|average)\b",
    re.IGNORECASE,
)
VAGUE_PRONOUN = re.compile(r"^(it|that|this|those|these)\b", re.IGNORECASE)
REPEATED_QUESTION_MARKS = re.compile(r"\?{2,}")
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

MIN_REQUEST_LENGTH = 10
MIN_VERBLESS_LENGTH = 20

TOO_SHORT_PROMPT = (
    "Your request is too short. Could you please provide more specific details "
    "about what you want to generate?"
)
VAGUE_PRONOUN_PROMPT = (
    "Your request starts with a vague pronoun. Could you please specify what you are referring to?"
)
UNCERTAIN_PROMPT = "Your request seems uncertain. Could you please clarify exactly what you need?"
UNDERSPECIFIED_PROMPT = (
    "Could you please provide more specific details about what you want to generate? "
    "Include what data you need and any specific conditions."
)

AMBIGUITY_SYSTEM_PROMPT = """\
You are an expert at analyzing user requests for code generation. Your task is to \
determine if a request is ambiguous or lacks sufficient detail to generate accurate code.

A request is ambiguous if:
- It lacks specific details about what needs to be generated
- It references undefined entities or concepts
- It has conflicting requirements
- It's too vague to understand the user's intent
- It requires information that wasn't provided

Respond with a JSON object in this format:
{
  "isAmbiguous": true/false,
  "clarificationPrompt": "A specific question to ask the user (only if ambiguous)"
}"""

AMBIGUITY_USER_TEMPLATE = """\
Analyze this code generation request and determine if it's ambiguous:

"{request}"

Is this request clear enough to generate code, or does it need clarification?"""


class AmbiguityCheck(Protocol):
    async def __call__(self, request: str) -> Optional[AmbiguityResult]:
        ...


class HeuristicCheck:
    """One regex/length rule. Returns an ambiguous verdict when `predicate` holds."""

    def __init__(self, name: str, predicate: Callable[[str], bool], clarification_prompt: str) -> None:
        self.name = name
        self.predicate = predicate
        self.clarification_prompt = clarification_prompt

    async def __call__(self, request: str) -> Optional[AmbiguityResult]:
        if not self.predicate(request):
            return None
        return AmbiguityResult(
            is_ambiguous=True,
            clarification_prompt=self.clarification_prompt,
            source=f"heuristic:{self.name}",
        )

    def __repr__(self) -> str:
        return f"HeuristicCheck({self.name!r})"


def default_heuristics() -> list[HeuristicCheck]:
    return [
        HeuristicCheck(
            "too_short",
            lambda r: len(r.strip()) < MIN_REQUEST_LENGTH,
            TOO_SHORT_PROMPT,
        ),
        HeuristicCheck(
            "vague_pronoun",
            lambda r: VAGUE_PRONOUN.search(r.strip()) is not None,
            VAGUE_PRONOUN_PROMPT,
        ),
        HeuristicCheck(
            "uncertain",
            lambda r: REPEATED_QUESTION_MARKS.search(r) is not None,
            UNCERTAIN_PROMPT,
        ),
        HeuristicCheck(
            "underspecified",
            lambda r: ACTION_VERBS.search(r) is None and len(r.strip()) < MIN_VERBLESS_LENGTH,
            UNDERSPECIFIED_PROMPT,
        ),
    ]


class LLMAmbiguityCheck:
    """Asks the completion model for a verdict. Any failure means no verdict."""

    temperature = 0.3

    def __init__(self, completion_client: CompletionClient) -> None:
        self.completion_client = completion_client

    async def __call__(self, request: str) -> Optional[AmbiguityResult]:
        try:
            response = await self.completion_client.complete(
                AMBIGUITY_SYSTEM_PROMPT,
                AMBIGUITY_USER_TEMPLATE.format(request=request),
                temperature=self.temperature,
            )
        except Exception as exc:
            logger.warning(f"[Ambiguity] LLM check failed, treating request as clear: {exc!r}")
            return None

        if not isinstance(response.content, str):
            logger.debug("[Ambiguity] LLM reply had no text content")
            return None
        match = _JSON_OBJECT.search(response.content)
        if not match:
            logger.debug("[Ambiguity] LLM reply contained no JSON object")
            return None
        try:
            verdict = json.loads(match.group(0))
        except (json.JSONDecodeError, RecursionError) as exc:
            logger.debug(f"[Ambiguity] Could not parse LLM verdict: {exc}")
            return None
        if not isinstance(verdict, dict):
            return None

        is_ambiguous = verdict.get("isAmbiguous") is True
        prompt = verdict.get("clarificationPrompt") if is_ambiguous else None
        return AmbiguityResult(
            is_ambiguous=is_ambiguous,
            clarification_prompt=prompt if isinstance(prompt, str) else None,
            source="llm",
        )


class AmbiguityDetector:
    """Runs an ordered chain of checks; the first verdict wins."""

    def __init__(self, checks: Optional[list[AmbiguityCheck]] = None) -> None:
        self.checks: list[AmbiguityCheck] = list(checks) if checks is not None else default_heuristics()

    @classmethod
    def with_llm(cls, completion_client: CompletionClient) -> "AmbiguityDetector":
        """Heuristics first, then the LLM check."""
        return cls([*default_heuristics(), LLMAmbiguityCheck(completion_client)])

    async def detect(self, request: str) -> AmbiguityResult:
        for check in self.checks:
            result = await check(request)
            if result is not None:
                logger.info(
                    f"[Ambiguity] {result.source} -> "
                    f"{'ambiguous' if result.is_ambiguous else 'clear'}"
                )
                return result
        return AmbiguityResult(is_ambiguous=False)

"""
Completion Clients
-------------------
Two backends with an identical complete()/stream() interface:

  OpenAICompletionClient     -- any OpenAI-compatible chat completions API
  AnthropicCompletionClient  -- Anthropic messages API

Retry policy (shared, RetryingCompletionClient):
  - up to `max_retries` retries (4 attempts by default)
  - delay before retry n (0-based) = min(initial_delay_ms * 2**n, max_delay_ms)
  - each attempt is bounded by `timeout_s`; a timed-out attempt is retryable
  - retryable: HTTP 429, HTTP >= 500, connection resets and timeouts
  - anything else fails after the first attempt

Retries exist only in this layer.  SDK-level retries are disabled so one
attempt here is one HTTP request.
"""
from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx
import openai
from langsmith import traceable
from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception, stop_after_attempt

from codegen_rag.errors import CompletionError

MAX_RETRIES = 3
INITIAL_DELAY_MS = 1000
MAX_DELAY_MS = 10000
TIMEOUT_S = 30.0

_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    TimeoutError,
    asyncio.TimeoutError,
    ConnectionError,
    httpx.TimeoutException,
    httpx.NetworkError,
    openai.APIConnectionError,   # includes APITimeoutError
)


@dataclass
class CompletionResponse:
    """Provider-agnostic result of a single completion call."""

    content: str
    tokens_used: int
    model: str


def compute_backoff_delay(
    attempt: int,
    initial_delay_ms: int = INITIAL_DELAY_MS,
    max_delay_ms: int = MAX_DELAY_MS,
) -> int:
    """Delay in ms before retrying after the 0-based `attempt` failed."""
    return min(initial_delay_ms * (2 ** attempt), max_delay_ms)


def is_retryable_error(
    exc: BaseException,
    transient: tuple[type[BaseException], ...] = _TRANSIENT_ERRORS,
) -> bool:
    """Rate limits, server errors and network failures are worth another attempt."""
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status == 429 or status >= 500
    return isinstance(exc, transient)


class CompletionClient(ABC):
    """Interface the orchestrator depends on. Swap backends without touching it."""

    model: str

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
    ) -> CompletionResponse:
        ...

    @abstractmethod
    def stream(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
    ) -> AsyncIterator[str]:
        """Yield text fragments in upstream order. Single call, no retry."""
        ...


class RetryingCompletionClient(CompletionClient):
    """Owns the retry / backoff / per-attempt timeout loop."""

    transient_errors: tuple[type[BaseException], ...] = _TRANSIENT_ERRORS

    def __init__(
        self,
        model: str,
        max_retries: int = MAX_RETRIES,
        initial_delay_ms: int = INITIAL_DELAY_MS,
        max_delay_ms: int = MAX_DELAY_MS,
        timeout_s: float = TIMEOUT_S,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.model = model
        self.max_retries = max_retries
        self.initial_delay_ms = initial_delay_ms
        self.max_delay_ms = max_delay_ms
        self.timeout_s = timeout_s
        self._sleep = sleep or asyncio.sleep

    @abstractmethod
    async def _complete_once(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
    ) -> CompletionResponse:
        """One request against the backend, no retry."""
        ...

    def _wait(self, retry_state: RetryCallState) -> float:
        delay_ms = compute_backoff_delay(
            retry_state.attempt_number - 1, self.initial_delay_ms, self.max_delay_ms
        )
        return delay_ms / 1000

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"[{self.__class__.__name__}] Attempt {retry_state.attempt_number}/"
            f"{self.max_retries + 1} failed ({type(exc).__name__}: {exc}) | "
            f"retrying in {delay * 1000:.0f}ms"
        )

    @traceable(name="complete", run_type="llm")
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
    ) -> CompletionResponse:
        attempts = 0
        start = time.perf_counter()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception(lambda exc: is_retryable_error(exc, self.transient_errors)),
            before_sleep=self._log_retry,
            sleep=self._sleep,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    response = await asyncio.wait_for(
                        self._complete_once(system_prompt, user_prompt, temperature),
                        timeout=self.timeout_s,
                    )
        except RetryError as exc:
            last = exc.last_attempt.exception()
            logger.error(
                f"[{self.__class__.__name__}] Giving up after {attempts} attempts: "
                f"{type(last).__name__}: {last}"
            )
            raise CompletionError(
                f"Completion failed after {attempts} attempts: {last}",
                attempts=attempts,
                stage="completion",
            ) from last
        except Exception as exc:
            logger.error(
                f"[{self.__class__.__name__}] Non-retryable failure on attempt {attempts}: "
                f"{type(exc).__name__}: {exc}"
            )
            raise CompletionError(
                f"Completion failed: {exc}", attempts=attempts, stage="completion"
            ) from exc

        elapsed = time.perf_counter() - start
        logger.info(
            f"[{self.__class__.__name__}] Done | model={response.model} | "
            f"tokens={response.tokens_used} | attempts={attempts} | {elapsed:.2f}s"
        )
        return response


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

class OpenAICompletionClient(RetryingCompletionClient):
    """Chat completions against OpenAI or any compatible base URL."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_tokens: int = 4096,
        client: Optional[openai.AsyncOpenAI] = None,
        **retry_options,
    ) -> None:
        super().__init__(model, **retry_options)
        self.max_tokens = max_tokens
        self._client = client or openai.AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)

    def _messages(self, system_prompt: str, user_prompt: str) -> list[dict]:
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

    async def _complete_once(self, system_prompt: str, user_prompt: str, temperature: float) -> CompletionResponse:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=self._messages(system_prompt, user_prompt),
            temperature=temperature,
            max_tokens=self.max_tokens,
        )
        if not response.choices:
            raise ValueError("Completion response contained no choices")
        return CompletionResponse(
            content=response.choices[0].message.content or "",
            tokens_used=response.usage.total_tokens if response.usage else 0,
            model=response.model or self.model,
        )

    async def stream(self, system_prompt: str, user_prompt: str, temperature: float = 0.7) -> AsyncIterator[str]:
        try:
            stream = await self._client.chat.completions.create(
                model=self.model,
                messages=self._messages(system_prompt, user_prompt),
                temperature=temperature,
                max_tokens=self.max_tokens,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                fragment = chunk.choices[0].delta.content
                if fragment:
                    yield fragment
        except openai.OpenAIError as exc:
            raise CompletionError(f"Streaming completion failed: {exc}", attempts=1, stage="completion") from exc


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

class AnthropicCompletionClient(RetryingCompletionClient):
    """
    Completions against Anthropic Claude models.

    The Anthropic SDK passes the system prompt as a separate `system`
    parameter (not inside the messages list) -- handled here transparently.
    """

    def __init__(
        self,
        model: str = "claude-haiku-4-5-20251001",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_tokens: int = 4096,
        client=None,
        **retry_options,
    ) -> None:
        import anthropic  # lazy import

        super().__init__(model, **retry_options)
        self.max_tokens = max_tokens
        self._anthropic = anthropic
        self.transient_errors = _TRANSIENT_ERRORS + (anthropic.APIConnectionError,)
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key, base_url=base_url, max_retries=0)

    async def _complete_once(self, system_prompt: str, user_prompt: str, temperature: float) -> CompletionResponse:
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        if not response.content:
            raise ValueError("Completion response contained no content blocks")
        text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        return CompletionResponse(
            content=text,
            tokens_used=response.usage.input_tokens + response.usage.output_tokens,
            model=response.model or self.model,
        )

    async def stream(self, system_prompt: str, user_prompt: str, temperature: float = 0.7) -> AsyncIterator[str]:
        try:
            async with self._client.messages.stream(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            ) as stream:
                async for fragment in stream.text_stream:
                    if fragment:
                        yield fragment
        except self._anthropic.AnthropicError as exc:
            raise CompletionError(f"Streaming completion failed: {exc}", attempts=1, stage="completion") from exc

"""
Typed error taxonomy for the generation core.

Each error carries a machine-readable `code` and a `user_message` that the
request-handling layer can show verbatim.  Validation findings and ambiguity
advisories are NOT exceptions -- they travel inside successful results.
"""
from __future__ import annotations

from typing import Optional


class CodegenError(Exception):
    """Base class for every error raised by the core."""

    code: str = "INTERNAL_ERROR"
    user_message: str = "An unexpected error occurred."

    def __init__(
        self,
        message: str = "",
        *,
        stage: Optional[str] = None,
        suggestions: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message or self.user_message)
        self.stage = stage
        self.suggestions = list(suggestions or [])

    def to_dict(self) -> dict:
        """Render the standard error envelope returned to callers."""
        body: dict = {"code": self.code, "message": self.user_message}
        if self.suggestions:
            body["suggestions"] = self.suggestions
        return {"error": body}


class InvalidRequestError(CodegenError):
    code = "INVALID_REQUEST"
    user_message = "The generation request is invalid."


class UnsupportedOutputTypeError(InvalidRequestError):
    code = "INVALID_OUTPUT_TYPE"
    user_message = "Output type must be one of: sql, n8n, formio."


class EmbeddingError(CodegenError):
    code = "EMBEDDING_UNAVAILABLE"
    user_message = "The embedding service is unavailable."


class VectorIndexError(CodegenError):
    code = "SEARCH_UNAVAILABLE"
    user_message = "The search service is unavailable."


class NoContextError(CodegenError):
    code = "NO_CONTEXT"
    user_message = (
        "No context is configured for this version. "
        "Upload DDL files or documentation first."
    )


class CompletionError(CodegenError):
    code = "GENERATION_UNAVAILABLE"
    user_message = "The generation service is temporarily unavailable, please retry later."

    def __init__(self, message: str = "", *, attempts: int = 0, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.attempts = attempts


class GenerationTimeoutError(CodegenError):
    code = "GENERATION_TIMEOUT"
    user_message = "Code generation took too long. Please try again."

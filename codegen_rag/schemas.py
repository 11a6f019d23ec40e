"""
Core Pydantic schemas for the code generation pipeline.

Indexing and generation share these models: DocumentChunk is the only
persisted entity (stored as the payload of a vector point); everything else
lives for the duration of a single request.
"""
from __future__ import annotations

import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from codegen_rag.errors import UnsupportedOutputTypeError


# --- Enumerations ------------------------------------------------------------

class OutputType(str, Enum):
    SQL = "sql"
    N8N = "n8n"          # n8n workflow JSON
    FORMIO = "formio"    # Form.io form JSON

    @classmethod
    def parse(cls, value: "OutputType | str") -> "OutputType":
        """Coerce a raw value into an OutputType or raise UnsupportedOutputTypeError."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnsupportedOutputTypeError(
                f"Unsupported output type: {value!r}",
                stage="input",
                suggestions=["Specify whether you want SQL, n8n workflow, or Form.io form"],
            ) from None


# --- Indexed Content ---------------------------------------------------------

class DocumentChunk(BaseModel):
    """
    A contiguous slice of a source document, stored alongside its vector.

    All chunks of a (version_id, file_id) pair are written and deleted
    together; a chunk is never updated in place.
    """

    chunk_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    content: str
    version_id: str
    file_id: str
    filename: str
    chunk_index: int                     # 0-based position within the file
    total_chunks: int


class VectorPoint(BaseModel):
    """One entry of the vector index: id + embedding + chunk payload."""

    id: str
    vector: list[float]
    payload: DocumentChunk


class SearchHit(BaseModel):
    """A ranked search result. Higher score = more similar."""

    id: str
    payload: DocumentChunk
    score: float


class ContextChunk(BaseModel):
    """A retrieved chunk plus its relevance score (retrieval-time only)."""

    content: str
    source: str                          # filename the chunk came from
    relevance_score: float
    version_id: str
    file_id: str
    filename: str
    chunk_index: int = 0


# --- Generation --------------------------------------------------------------

class GenerationRequest(BaseModel):
    request: str
    output_type: str
    version_id: str
    user_id: str = ""


class ValidationResult(BaseModel):
    """Structural check outcome. Errors flag the result, they never block it."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class GenerationMetadata(BaseModel):
    tokens_used: int = 0
    processing_time_ms: int = 0
    context_files: list[str] = Field(default_factory=list)
    model: str = ""


class GenerationResult(BaseModel):
    generated_code: str
    metadata: GenerationMetadata
    validation: ValidationResult


class AmbiguityResult(BaseModel):
    """Advisory verdict from the ambiguity pre-check (not an error)."""

    is_ambiguous: bool
    clarification_prompt: Optional[str] = None
    source: str = "default"              # heuristic name, "llm" or "default"

"""
Configuration loading.

Settings come from config/config.yaml (optional) and are overridden by
environment variables (a .env file is loaded first via python-dotenv).
The resulting Settings object is passed explicitly to build_components();
nothing in the core reads the environment on its own.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

DEFAULT_CONFIG_PATH = "config/config.yaml"


class EmbeddingSettings(BaseModel):
    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    api_key: Optional[str] = None
    base_url: Optional[str] = None


class CompletionSettings(BaseModel):
    provider: Literal["openai", "anthropic"] = "openai"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 4096
    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10000
    timeout_ms: int = 30000


class VectorIndexSettings(BaseModel):
    path: Optional[str] = "data/index"   # None keeps the index in memory only
    distance: Literal["cosine", "dot"] = "cosine"


class ChunkingSettings(BaseModel):
    chunk_size: int = 1000
    chunk_overlap: int = 200

    @model_validator(mode="after")
    def _overlap_below_size(self) -> "ChunkingSettings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than "
                f"chunk_size ({self.chunk_size})"
            )
        return self


class RetrievalSettings(BaseModel):
    top_k: int = 5
    request_deadline_s: float = 30.0


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: Optional[str] = "logs/codegen.log"
    json_file: bool = False


class Settings(BaseModel):
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    completion: CompletionSettings = Field(default_factory=CompletionSettings)
    vector_index: VectorIndexSettings = Field(default_factory=VectorIndexSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# Environment variable -> (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "LLM_PROVIDER": ("completion", "provider"),
    "LLM_API_KEY": ("completion", "api_key"),
    "LLM_API_URL": ("completion", "base_url"),
    "LLM_MODEL": ("completion", "model"),
    "LLM_MAX_RETRIES": ("completion", "max_retries"),
    "LLM_INITIAL_DELAY_MS": ("completion", "initial_delay_ms"),
    "LLM_MAX_DELAY_MS": ("completion", "max_delay_ms"),
    "LLM_TIMEOUT_MS": ("completion", "timeout_ms"),
    "EMBEDDING_API_KEY": ("embedding", "api_key"),
    "EMBEDDING_API_URL": ("embedding", "base_url"),
    "EMBEDDING_MODEL": ("embedding", "model"),
    "EMBEDDING_DIMENSIONS": ("embedding", "dimensions"),
    "VECTOR_INDEX_PATH": ("vector_index", "path"),
    "CHUNK_SIZE": ("chunking", "chunk_size"),
    "CHUNK_OVERLAP": ("chunking", "chunk_overlap"),
    "RETRIEVAL_TOP_K": ("retrieval", "top_k"),
    "LOG_LEVEL": ("logging", "level"),
    "LOG_FILE": ("logging", "file"),
    "LOG_JSON": ("logging", "json_file"),
}


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def apply_env_overrides(raw: dict[str, Any], environ: Optional[dict[str, str]] = None) -> dict[str, Any]:
    """Merge recognised environment variables into a raw config dict."""
    env = os.environ if environ is None else environ
    merged = {section: dict(values or {}) for section, values in raw.items()}
    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value == "":
            continue
        merged.setdefault(section, {})[key] = value

    # An OpenAI completion endpoint also serves embeddings unless set apart
    embedding = merged.setdefault("embedding", {})
    completion = merged.get("completion", {})
    if completion.get("provider", "openai") == "openai":
        embedding.setdefault("api_key", completion.get("api_key"))
        embedding.setdefault("base_url", completion.get("base_url"))
    return merged


def load_settings(
    path: Optional[str] = DEFAULT_CONFIG_PATH,
    environ: Optional[dict[str, str]] = None,
) -> Settings:
    """
    Build Settings from YAML + environment.

    A missing YAML file is not an error; defaults and environment variables
    still apply.
    """
    if environ is None:
        load_dotenv()
    raw: dict[str, Any] = {}
    if path and Path(path).exists():
        raw = _read_yaml(Path(path))
    return Settings.model_validate(apply_env_overrides(raw, environ))

"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

ENV_PREFIX = "VRAG_"
DEFAULT_CONFIG_PATH = Path("~/.config/vault-rag/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "data_dir"): "data_dir",
    ("storage", "secrets_path"): "secrets_path",
    ("llm", "provider"): "llm_provider",
    ("llm", "ollama_base_url"): "ollama_base_url",
    ("llm", "ollama_model"): "ollama_model",
    ("llm", "gemini_model"): "gemini_model",
    ("llm", "timeout_seconds"): "llm_timeout_seconds",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "gemini_model"): "gemini_embedding_model",
    ("embeddings", "base_url"): "embedding_base_url",
    ("embeddings", "batch_size"): "embedding_batch_size",
    ("embeddings", "max_tokens"): "embedding_max_tokens",
    ("embeddings", "max_chars"): "embedding_max_chars",
    ("embeddings", "output_dimension"): "embedding_output_dimension",
    ("vector_store", "backend"): "vector_backend",
    ("vector_store", "chroma_base_url"): "chroma_base_url",
    ("vector_store", "chroma_tenant"): "chroma_tenant",
    ("vector_store", "chroma_database"): "chroma_database",
    ("vector_store", "collection_prefix"): "collection_prefix",
    ("chunking", "target_tokens"): "chunk_target_tokens",
    ("chunking", "min_tokens"): "chunk_min_tokens",
    ("chunking", "max_tokens"): "chunk_max_tokens",
    ("chunking", "overlap_tokens"): "chunk_overlap_tokens",
    ("chunking", "chars_per_token"): "chars_per_token",
    ("retrieval", "max_k"): "max_k",
    ("retrieval", "display_k"): "display_k",
    ("retrieval", "similarity_threshold"): "similarity_threshold",
    ("retrieval", "query_rewriting"): "query_rewriting_enabled",
    ("retrieval", "multi_query"): "multi_query_enabled",
    ("retrieval", "default_mode"): "default_retrieval_mode",
    ("rerank", "enabled"): "rerank_enabled",
    ("rerank", "model"): "rerank_model",
    ("web", "enabled"): "web_search_enabled",
    ("web", "max_results"): "web_max_results",
    ("indexing", "commit_every"): "metadata_commit_every",
    ("watch", "enabled"): "watch_enabled",
    ("watch", "vaults"): "watch_vaults",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    data_dir: Path = Field(default=Path.home() / ".vault-rag")
    secrets_path: Path = Field(default=Path("~/.config/vault-rag/secrets.yaml"))

    llm_provider: Literal["ollama", "gemini"] = "ollama"
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2:1b"
    gemini_model: str = "gemini-2.0-flash"
    llm_timeout_seconds: float = 60.0

    embedding_model: str = "nomic-embed-text"
    gemini_embedding_model: str = "gemini-embedding-001"
    embedding_base_url: str = "http://localhost:11434"
    embedding_batch_size: int = Field(default=32, ge=1)
    embedding_max_tokens: int = Field(default=500, ge=1)
    embedding_max_chars: int = Field(default=2000, ge=1)
    embedding_output_dimension: int = 768

    vector_backend: Literal["chromadb", "chroma_cloud", "memory"] = "chromadb"
    chroma_base_url: str = "http://localhost:8000"
    chroma_tenant: str = "default_tenant"
    chroma_database: str = "default_database"
    collection_prefix: str = "vault"

    chunk_target_tokens: int = Field(default=400, ge=1)
    chunk_min_tokens: int = Field(default=300, ge=0)
    chunk_max_tokens: int = Field(default=512, ge=1)
    chunk_overlap_tokens: int = Field(default=50, ge=0)
    chars_per_token: int = Field(default=4, ge=1)

    max_k: int = Field(default=10, ge=1)
    display_k: int = Field(default=5, ge=1)
    similarity_threshold: float = 0.25
    query_rewriting_enabled: bool = False
    multi_query_enabled: bool = False
    default_retrieval_mode: Literal["none", "rag", "web", "hybrid"] = "rag"

    rerank_enabled: bool = True
    rerank_model: str | None = "xitao/bge-reranker-v2-m3"

    web_search_enabled: bool = False
    web_max_results: int = Field(default=5, ge=1, le=20)

    metadata_commit_every: int = Field(default=10, ge=1)

    watch_enabled: bool = False
    watch_vaults: list[str] = Field(default_factory=list)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("data_dir", "secrets_path", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("path settings must be a path or string")

    @field_validator("similarity_threshold")
    @classmethod
    def _check_threshold(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("similarity_threshold must be between 0 and 1")
        return value

    @field_validator("rerank_model", mode="before")
    @classmethod
    def _blank_model_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("watch_vaults", mode="before")
    @classmethod
    def _split_vaults(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @model_validator(mode="after")
    def _check_bounds(self) -> "Settings":
        if self.display_k > self.max_k:
            raise ValueError(f"display_k ({self.display_k}) must not exceed max_k ({self.max_k})")
        if self.chunk_min_tokens > self.chunk_max_tokens:
            raise ValueError("chunk_min_tokens must not exceed chunk_max_tokens")
        return self

    @property
    def metadata_dir(self) -> Path:
        return self.data_dir / "metadata"

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with VRAG_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]

"""Settings loading and validation tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from vault_rag.core.config import Settings
from vault_rag.security.secrets import get_secret


def test_defaults_match_documented_values() -> None:
    settings = Settings()
    assert (settings.chunk_target_tokens, settings.chunk_min_tokens, settings.chunk_max_tokens) == (400, 300, 512)
    assert settings.chunk_overlap_tokens == 50
    assert settings.display_k <= settings.max_k
    assert settings.rerank_model == "xitao/bge-reranker-v2-m3"


def test_display_k_above_max_k_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(max_k=3, display_k=5)


def test_threshold_must_be_a_fraction() -> None:
    with pytest.raises(ValidationError):
        Settings(similarity_threshold=1.5)


def test_yaml_sections_are_flattened(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("VRAG_VECTOR_BACKEND", raising=False)
    config = tmp_path / "config.yaml"
    config.write_text(
        "retrieval:\n  max_k: 20\n  display_k: 8\n"
        "vector_store:\n  backend: chroma_cloud\n  chroma_tenant: me\n"
        "rerank:\n  model: ''\n"
        "watch:\n  vaults: ~/notes, ~/work\n",
        encoding="utf-8",
    )

    settings = Settings.from_yaml(config)

    assert (settings.max_k, settings.display_k) == (20, 8)
    assert settings.vector_backend == "chroma_cloud"
    assert settings.chroma_tenant == "me"
    assert settings.rerank_model is None
    assert settings.watch_vaults == ["~/notes", "~/work"]


def test_environment_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("retrieval:\n  similarity_threshold: 0.5\n", encoding="utf-8")
    monkeypatch.setenv("VRAG_SIMILARITY_THRESHOLD", "0.1")

    settings = Settings.from_yaml(config)

    assert settings.similarity_threshold == pytest.approx(0.1)
    assert settings.metadata_dir == tmp_path / "data" / "metadata"


def test_secret_lookup_prefers_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    secrets = tmp_path / "secrets.yaml"
    secrets.write_text("TAVILY_API_KEY: from-file\nGEMINI_API_KEY: '  '\n", encoding="utf-8")

    assert get_secret("TAVILY_API_KEY", secrets) == "from-file"
    assert get_secret("GEMINI_API_KEY", secrets) is None
    assert get_secret("CHROMA_API_KEY", tmp_path / "missing.yaml") is None

    monkeypatch.setenv("TAVILY_API_KEY", "from-env")
    assert get_secret("TAVILY_API_KEY", secrets) == "from-env"

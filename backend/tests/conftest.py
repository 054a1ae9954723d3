"""Test fixtures for Vault RAG."""

from __future__ import annotations

import math
import re
import sys
from pathlib import Path
from typing import Sequence

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from vault_rag.core.errors import EmbeddingError, LanguageModelError  # noqa: E402

_WORD_RE = re.compile(r"[a-z0-9]+")


class FakeEmbedder:
    """Bag-of-words embedder: every new word gets its own dimension, so only shared words score."""

    def __init__(self, dim: int = 256) -> None:
        self.dim = dim
        self.vocabulary: dict[str, int] = {}
        self.calls: list[list[str]] = []
        self.fail_on: set[str] = set()

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        for text in texts:
            if any(marker in text for marker in self.fail_on):
                raise EmbeddingError("embedding backend rejected input")
        return [self.vector(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    def vector(self, text: str) -> list[float]:
        vector = [0.0] * self.dim
        for word in _WORD_RE.findall(text.lower()):
            index = self.vocabulary.setdefault(word, len(self.vocabulary) % self.dim)
            vector[index] += 1.0
        norm = math.sqrt(sum(value * value for value in vector))
        return [value / norm for value in vector] if norm else vector


class FakeLLM:
    """Returns queued responses in order, or a fixed default; records every prompt."""

    def __init__(self, default: str = "ok", responses: Sequence[str] | None = None, fail: bool = False) -> None:
        self.default = default
        self.responses = list(responses or [])
        self.fail = fail
        self.prompts: list[str] = []
        self.models: list[str | None] = []

    async def complete(self, prompt: str, *, model: str | None = None, temperature: float | None = None) -> str:
        self.prompts.append(prompt)
        self.models.append(model)
        if self.fail:
            raise LanguageModelError("model offline")
        if self.responses:
            return self.responses.pop(0)
        return self.default


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("VRAG_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("VRAG_VECTOR_BACKEND", "memory")
    monkeypatch.setenv("VRAG_SECRETS_PATH", str(tmp_path / "secrets.yaml"))
    monkeypatch.delenv("VRAG_CONFIG", raising=False)
    for name in ("GEMINI_API_KEY", "CHROMA_API_KEY", "TAVILY_API_KEY"):
        monkeypatch.delenv(name, raising=False)

    from vault_rag.api import dependencies as deps

    deps.reset_dependencies()
    yield
    deps.reset_dependencies()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    (root / "projects").mkdir(parents=True)
    (root / "cooking.md").write_text(
        "# Cooking\n\nSourdough bread needs a starter fed with flour and water.\n",
        encoding="utf-8",
    )
    (root / "projects" / "garden.md").write_text(
        "# Garden\n\nTomatoes need full sun and regular watering.\n\n"
        "## Pests\n\nAphids can be washed off with soapy water.\n",
        encoding="utf-8",
    )
    (root / ".obsidian").mkdir()
    (root / ".obsidian" / "workspace.md").write_text("ignored", encoding="utf-8")
    return root

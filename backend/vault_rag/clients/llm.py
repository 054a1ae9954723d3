"""Text generation backends."""

from __future__ import annotations

from typing import Any, Protocol

import httpx
import orjson

from vault_rag.clients.http import OwnedClient, describe, send_with_retries
from vault_rag.core.errors import LanguageModelError
from vault_rag.core.logging import get_logger

logger = get_logger(__name__)

GEMINI_MODELS_URL = "https://generativelanguage.googleapis.com/v1beta/models"


class LanguageModelClient(Protocol):
    """Prompt in, text out. Raises ``LanguageModelError`` on backend failure."""

    async def complete(
        self,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
    ) -> str: ...


class OllamaClient(OwnedClient):
    """Ollama ``/api/generate`` client."""

    def __init__(
        self,
        base_url: str,
        model: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
        retry_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._init_client(client, timeout=timeout)

    async def complete(
        self,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
    ) -> str:
        body: dict[str, Any] = {"model": model or self.model, "prompt": prompt, "stream": False}
        if temperature is not None:
            body["options"] = {"temperature": temperature}
        try:
            response = await send_with_retries(
                lambda: self._client.post(f"{self.base_url}/api/generate", json=body),
                label="ollama generate",
                attempts=self.retry_attempts,
                base_delay=self.retry_delay,
            )
        except httpx.HTTPError as exc:
            raise LanguageModelError(f"ollama generate failed: {describe(exc)}") from exc
        return parse_ollama_generate(response.text)


def parse_ollama_generate(body: str) -> str:
    """Join ``response`` fields; servers may stream NDJSON even with ``stream: false``."""
    parts: list[str] = []
    for line in body.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            item = orjson.loads(line)
        except orjson.JSONDecodeError as exc:
            raise LanguageModelError(f"ollama returned malformed JSON: {line[:120]}") from exc
        if isinstance(item, dict):
            if item.get("error"):
                raise LanguageModelError(f"ollama error: {item['error']}")
            parts.append(str(item.get("response", "")))
    return "".join(parts).strip()


class GeminiClient(OwnedClient):
    """Gemini ``generateContent`` client."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        base_url: str = GEMINI_MODELS_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
        retry_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        if not api_key:
            raise LanguageModelError("Gemini generation requires an API key")
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._init_client(client, timeout=timeout, headers={"x-goog-api-key": api_key})

    async def complete(
        self,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
    ) -> str:
        body: dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        if temperature is not None:
            body["generationConfig"] = {"temperature": temperature}
        url = f"{self.base_url}/{model or self.model}:generateContent"
        try:
            response = await send_with_retries(
                lambda: self._client.post(url, json=body),
                label="gemini generateContent",
                attempts=self.retry_attempts,
                base_delay=self.retry_delay,
            )
            payload = response.json()
        except httpx.HTTPError as exc:
            raise LanguageModelError(f"gemini generateContent failed: {describe(exc)}") from exc
        except ValueError as exc:
            raise LanguageModelError("gemini returned a non-JSON response") from exc
        return _gemini_text(payload)


def _gemini_text(payload: dict[str, Any]) -> str:
    candidates = payload.get("candidates") or []
    if not candidates:
        raise LanguageModelError("gemini response has no candidates")
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(str(part.get("text", "")) for part in parts).strip()


__all__ = ["LanguageModelClient", "OllamaClient", "GeminiClient", "parse_ollama_generate"]

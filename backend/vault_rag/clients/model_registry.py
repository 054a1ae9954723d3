"""Model availability checks against an Ollama server."""

from __future__ import annotations

from typing import Protocol

import httpx

from vault_rag.clients.http import OwnedClient, describe
from vault_rag.core.logging import get_logger

logger = get_logger(__name__)


class ModelRegistry(Protocol):
    async def has_model(self, name: str) -> bool: ...


class OllamaModelRegistry(OwnedClient):
    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self._init_client(client, timeout=timeout)

    async def has_model(self, name: str) -> bool:
        """True when ``/api/tags`` lists ``name`` exactly or as ``name:<tag>``.

        An unreachable server counts as "not available".
        """
        try:
            response = await self._client.get(f"{self.base_url}/api/tags")
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            logger.warning("Could not list Ollama models: %s", describe(exc))
            return False
        except ValueError:
            logger.warning("Ollama /api/tags returned a non-JSON body")
            return False

        for entry in payload.get("models") or []:
            for candidate in (entry.get("name"), entry.get("model")):
                if candidate and (candidate == name or candidate.startswith(f"{name}:")):
                    logger.debug("Model %s is available", name)
                    return True
        logger.info("Model %s not found on %s", name, self.base_url)
        return False


__all__ = ["ModelRegistry", "OllamaModelRegistry"]

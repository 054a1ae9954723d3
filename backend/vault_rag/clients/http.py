"""Shared HTTP plumbing for backend clients."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import httpx

from vault_rag.core.logging import get_logger

logger = get_logger(__name__)

RETRY_ATTEMPTS = 3
RETRY_BASE_DELAY = 0.5
DEFAULT_TIMEOUT = 60.0


def is_retryable(exc: httpx.HTTPError) -> bool:
    """Transport failures, 429 and 5xx are worth another attempt; other 4xx are not."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return isinstance(exc, httpx.TransportError)


async def send_with_retries(
    send: Callable[[], Awaitable[httpx.Response]],
    *,
    label: str,
    attempts: int = RETRY_ATTEMPTS,
    base_delay: float = RETRY_BASE_DELAY,
) -> httpx.Response:
    """Run ``send`` with exponential backoff; raises the last ``httpx.HTTPError``."""
    attempt = 1
    while True:
        try:
            response = await send()
            response.raise_for_status()
            return response
        except httpx.HTTPError as exc:
            if attempt >= attempts or not is_retryable(exc):
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                "%s failed (attempt %s/%s): %s; retrying in %.2fs",
                label,
                attempt,
                attempts,
                exc,
                delay,
            )
            await asyncio.sleep(delay)
            attempt += 1


def status_of(exc: httpx.HTTPError) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def describe(exc: httpx.HTTPError) -> str:
    """Short human-readable summary including a body excerpt for status errors."""
    if isinstance(exc, httpx.HTTPStatusError):
        body = exc.response.text[:200]
        return f"HTTP {exc.response.status_code}: {body}"
    return f"{type(exc).__name__}: {exc}"


def is_auth_failure(exc: httpx.HTTPError) -> bool:
    return status_of(exc) in (401, 403)


class OwnedClient:
    """Mixin holding an ``httpx.AsyncClient`` that is closed only if created here."""

    _client: httpx.AsyncClient
    _owns_client: bool

    def _init_client(
        self,
        client: httpx.AsyncClient | None,
        timeout: float = DEFAULT_TIMEOUT,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)
        if client is not None and headers:
            self._client.headers.update(headers)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = [
    "OwnedClient",
    "describe",
    "is_auth_failure",
    "is_retryable",
    "send_with_retries",
    "status_of",
]

"""Filesystem watcher that refreshes vault sync status on note changes."""

from __future__ import annotations

import asyncio
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict

from watchdog.events import FileSystemEvent, PatternMatchingEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from vault_rag.core.logging import get_logger
from vault_rag.models.entities import SyncStatus

logger = get_logger(__name__)

StatusCheck = Callable[[Path], Awaitable[SyncStatus]]
StatusCallback = Callable[[Path, SyncStatus], None]

NOTE_PATTERNS = ["*.md", "*.markdown"]
IGNORED_PATTERNS = ["*/.git/*", "*/.obsidian/*", "*/.trash/*", "*/node_modules/*"]


@dataclass
class WatchedVault:
    path: Path
    callback: StatusCallback


class VaultEventHandler(PatternMatchingEventHandler):
    """Schedule a status re-check on the event loop for every note change.

    Changes are never reindexed here; the caller decides whether to index.
    """

    def __init__(self, vault: WatchedVault, watcher: "VaultWatcher") -> None:
        super().__init__(
            patterns=NOTE_PATTERNS,
            ignore_patterns=IGNORED_PATTERNS,
            ignore_directories=True,
            case_sensitive=False,
        )
        self.vault = vault
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        if event.event_type in {"created", "modified", "moved", "deleted"}:
            self.watcher.refresh(self.vault)


class VaultWatcher:
    """watchdog observer bound to an asyncio loop; at most one pending check per vault."""

    def __init__(self, check: StatusCheck, loop: asyncio.AbstractEventLoop) -> None:
        self._check = check
        self._loop = loop
        self._observer: BaseObserver = Observer()
        self._lock = threading.Lock()
        self._vaults: Dict[Path, WatchedVault] = {}
        self._pending: Dict[Path, Future] = {}
        self._started = False

    @property
    def vaults(self) -> list[Path]:
        with self._lock:
            return list(self._vaults)

    def add_vault(self, path: Path, callback: StatusCallback) -> None:
        normalized_path = path.expanduser().resolve()
        watched = WatchedVault(path=normalized_path, callback=callback)
        with self._lock:
            if normalized_path in self._vaults:
                return
            self._observer.schedule(VaultEventHandler(watched, self), str(normalized_path), recursive=True)
            self._vaults[normalized_path] = watched

    def refresh(self, vault: WatchedVault) -> Future | None:
        """Thread-safe: schedule a status check unless one is already pending."""
        with self._lock:
            pending = self._pending.get(vault.path)
            if pending is not None and not pending.done():
                return None
            future = asyncio.run_coroutine_threadsafe(self._publish(vault), self._loop)
            self._pending[vault.path] = future
            return future

    async def _publish(self, vault: WatchedVault) -> None:
        status = await self._check(vault.path)
        logger.info("Vault %s is %s", vault.path, status.value)
        vault.callback(vault.path, status)

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._observer.start()
            self._started = True

    def stop(self) -> None:
        with self._lock:
            if not self._started:
                return
            self._observer.stop()
            self._observer.join(timeout=5)
            self._started = False

    def close(self) -> None:
        self.stop()
        with self._lock:
            self._observer.unschedule_all()
            self._vaults.clear()
            for future in self._pending.values():
                future.cancel()
            self._pending.clear()


__all__ = ["StatusCallback", "StatusCheck", "VaultWatcher"]

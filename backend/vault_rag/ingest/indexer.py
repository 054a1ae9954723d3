"""Incremental vault indexing."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Mapping

from vault_rag.clients.embedders import Embedder
from vault_rag.clients.vector_store import VectorStore
from vault_rag.core.errors import EmbeddingError, IndexingFileError, VectorStoreError
from vault_rag.core.logging import get_logger, log_context
from vault_rag.core.metrics import INDEX_DURATION, INDEXED_FILES
from vault_rag.ingest.chunker import MarkdownChunker
from vault_rag.ingest.filesystem import FileSystem, relative_key
from vault_rag.ingest.metadata_store import VaultMetadataStore
from vault_rag.ingest.sanitizer import EmbeddingTextSanitizer
from vault_rag.models.entities import EmbeddedChunk, IndexReport, VaultMetadata
from vault_rag.utils.hashing import content_hash
from vault_rag.utils.ids import collection_name_for_vault, vault_key
from vault_rag.utils.time import elapsed_seconds, now_ms

logger = get_logger(__name__)


class Indexer:
    """Chunk, embed and upsert changed notes; track per-file hashes in vault metadata.

    Unchanged files (hash equal to the recorded one) cost no embedding or upsert calls.
    A failing file is logged and skipped; metadata is committed every ``commit_every``
    successful files so an interrupted pass keeps its progress. Callers serialize index
    operations per vault.
    """

    def __init__(
        self,
        fs: FileSystem,
        chunker: MarkdownChunker,
        embedder: Embedder,
        vector_store: VectorStore,
        metadata_store: VaultMetadataStore,
        sanitizer: EmbeddingTextSanitizer | None = None,
        collection_prefix: str = "vault",
        commit_every: int = 10,
    ) -> None:
        self.fs = fs
        self.chunker = chunker
        self.embedder = embedder
        self.vector_store = vector_store
        self.metadata_store = metadata_store
        self.sanitizer = sanitizer or EmbeddingTextSanitizer()
        self.collection_prefix = collection_prefix
        self.commit_every = max(1, commit_every)

    def collection_for(self, root_path: str | Path) -> str:
        return collection_name_for_vault(root_path, self.collection_prefix)

    async def index_vault(
        self,
        root_path: str | Path,
        existing_file_hashes: Mapping[str, str] | None = None,
    ) -> IndexReport:
        root = Path(root_path).expanduser().resolve()
        collection = self.collection_for(root)
        started = time.perf_counter()

        if existing_file_hashes is None:
            stored = await self.metadata_store.load(root)
            existing = dict(stored.indexed_file_hashes) if stored else {}
        else:
            existing = dict(existing_file_hashes)

        files = await self.fs.list_files(root)
        logger.info(
            "Indexing vault %s (%s markdown files, %s previously indexed)",
            root,
            len(files),
            len(existing),
            extra=log_context(vault=str(root), collection=collection),
        )

        hashes = dict(existing)
        report = IndexReport()
        live_keys: set[str] = set()
        uncommitted = 0
        try:
            for path in files:
                key = relative_key(root, path)
                live_keys.add(key)
                digest = await self._process_file(collection, path, key, existing.get(key), report)
                if digest is None:
                    continue
                hashes[key] = digest
                uncommitted += 1
                if uncommitted >= self.commit_every:
                    await self._commit(root, hashes)
                    uncommitted = 0

            for key in sorted(set(existing) - live_keys):
                try:
                    await self.vector_store.delete_by_source(collection, key)
                except VectorStoreError as exc:
                    if exc.unreachable:
                        raise
                    _record_failure(report, key, f"delete failed: {exc}")
                    continue
                hashes.pop(key, None)
                report.removed += 1
                INDEXED_FILES.labels(status="removed").inc()
        except (asyncio.CancelledError, VectorStoreError):
            logger.warning("Index pass for %s interrupted; keeping committed progress", root)
            await self._commit(root, hashes)
            raise

        if report.indexed or report.skipped or report.removed or not report.failed:
            await self._commit(root, hashes)
        INDEX_DURATION.observe(elapsed_seconds(started))
        logger.info(
            "Indexed vault %s: %s indexed, %s unchanged, %s removed, %s failed",
            root,
            report.indexed,
            report.skipped,
            report.removed,
            report.failed,
            extra=log_context(vault=str(root), **report.to_dict()),
        )
        return report

    async def index_file(self, root_path: str | Path, path: str | Path) -> IndexReport:
        """Reindex one file unconditionally and record its hash."""
        root = Path(root_path).expanduser().resolve()
        absolute, key = _resolve(root, path)
        if not await self.fs.exists(absolute):
            logger.info("%s no longer exists; removing it from the index", key)
            return await self.remove_file(root, absolute)

        report = IndexReport()
        digest = await self._process_file(self.collection_for(root), absolute, key, None, report)
        if digest is not None:
            metadata = await self._load_or_new(root)
            metadata.indexed_file_hashes[key] = digest
            await self._commit(root, metadata.indexed_file_hashes)
        return report

    async def remove_file(self, root_path: str | Path, path: str | Path) -> IndexReport:
        """Drop every chunk of one file and forget its hash."""
        root = Path(root_path).expanduser().resolve()
        _, key = _resolve(root, path)
        await self.vector_store.delete_by_source(self.collection_for(root), key)
        metadata = await self._load_or_new(root)
        metadata.indexed_file_hashes.pop(key, None)
        await self._commit(root, metadata.indexed_file_hashes)
        INDEXED_FILES.labels(status="removed").inc()
        logger.info("Removed %s from index", key, extra=log_context(vault=str(root)))
        return IndexReport(removed=1)

    async def clear(self, root_path: str | Path) -> None:
        """Drop the vault's collection and its metadata record."""
        root = Path(root_path).expanduser().resolve()
        await self.vector_store.drop_collection(self.collection_for(root))
        await self.metadata_store.delete(root)
        logger.info("Cleared index for vault %s", root)

    async def _process_file(
        self,
        collection: str,
        path: Path,
        key: str,
        previous_hash: str | None,
        report: IndexReport,
    ) -> str | None:
        """Index one file; return its new hash, or None when skipped or failed."""
        try:
            data = await self.fs.read_bytes(path)
        except OSError as exc:
            _record_failure(report, key, f"read failed: {exc}")
            return None

        digest = content_hash(data)
        if previous_hash == digest:
            report.skipped += 1
            INDEXED_FILES.labels(status="skipped").inc()
            return None

        try:
            report.chunks += await self._index_content(collection, key, data)
        except IndexingFileError as exc:
            _record_failure(report, key, str(exc))
            return None
        report.indexed += 1
        INDEXED_FILES.labels(status="indexed").inc()
        return digest

    async def _index_content(self, collection: str, key: str, data: bytes) -> int:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise IndexingFileError(key, "file is not valid UTF-8") from exc

        pieces = [piece for chunk in self.chunker.chunk(key, text) for piece in self.sanitizer.split_chunk(chunk)]
        vectors = []
        if pieces:
            try:
                vectors = await self.embedder.embed([piece.text for piece in pieces])
            except EmbeddingError as exc:
                raise IndexingFileError(key, f"embedding failed: {exc}") from exc
            if len(vectors) != len(pieces):
                raise IndexingFileError(key, f"expected {len(pieces)} embeddings, got {len(vectors)}")

        try:
            # line-range IDs shift on edit, so stale chunks go first
            await self.vector_store.delete_by_source(collection, key)
            if pieces:
                await self.vector_store.upsert(
                    collection,
                    [EmbeddedChunk(chunk=piece, embedding=vector) for piece, vector in zip(pieces, vectors)],
                )
        except VectorStoreError as exc:
            if exc.unreachable:
                raise
            raise IndexingFileError(key, f"upsert failed: {exc}") from exc
        logger.debug("Indexed %s into %s chunks", key, len(pieces))
        return len(pieces)

    async def _load_or_new(self, root: Path) -> VaultMetadata:
        stored = await self.metadata_store.load(root)
        return stored or VaultMetadata(vault_path=vault_key(root))

    async def _commit(self, root: Path, hashes: Mapping[str, str]) -> None:
        await self.metadata_store.save(
            VaultMetadata(
                vault_path=vault_key(root),
                indexed_file_hashes=dict(hashes),
                last_indexed_at_millis=now_ms(),
            )
        )


def _resolve(root: Path, path: str | Path) -> tuple[Path, str]:
    candidate = Path(path).expanduser()
    absolute = candidate if candidate.is_absolute() else root / candidate
    absolute = absolute.resolve()
    try:
        return absolute, relative_key(root, absolute)
    except ValueError as exc:
        raise ValueError(f"{path} is not inside vault {root}") from exc


def _record_failure(report: IndexReport, key: str, reason: str) -> None:
    logger.warning("Skipping %s: %s", key, reason, extra=log_context(file=key))
    report.failed += 1
    report.failures[key] = reason
    INDEXED_FILES.labels(status="failed").inc()


__all__ = ["Indexer"]

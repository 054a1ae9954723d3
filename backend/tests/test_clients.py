"""HTTP client tests using httpx.MockTransport."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from vault_rag.clients.chroma import ChromaVectorStore, build_where, parse_query_response
from vault_rag.clients.embedders import GeminiEmbedder, OllamaEmbedder
from vault_rag.clients.llm import GeminiClient, OllamaClient, parse_ollama_generate
from vault_rag.clients.model_registry import OllamaModelRegistry
from vault_rag.clients.web_search import TavilySearchClient
from vault_rag.core.errors import EmbeddingError, LanguageModelError, VectorStoreError, WebSearchError
from vault_rag.ingest.filesystem import LocalFileSystem
from vault_rag.ingest.metadata_store import VaultMetadataStore
from vault_rag.models.entities import Chunk, EmbeddedChunk, SyncStatus
from vault_rag.retrieval.sync import SyncStatusService
from vault_rag.utils.ids import collection_name_for_vault


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_ollama_embedder_batches_and_prefixes() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        return httpx.Response(200, json={"embeddings": [[0.1, 0.2] for _ in body["input"]]})

    embedder = OllamaEmbedder("http://ollama:11434/", "nomic-embed-text", batch_size=2, client=_client(handler))
    vectors = await embedder.embed(["a", "b", "c"])

    assert len(vectors) == 3
    assert [len(body["input"]) for body in bodies] == [2, 1]
    assert bodies[0]["input"][0] == "search_document: a"
    assert bodies[0]["model"] == "nomic-embed-text"

    await embedder.embed_query("q")
    assert bodies[-1]["input"] == ["search_query: q"]


@pytest.mark.asyncio
async def test_embedder_count_mismatch_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"embeddings": [[0.1]]})

    embedder = OllamaEmbedder("http://ollama", "m", client=_client(handler))
    with pytest.raises(EmbeddingError):
        await embedder.embed(["a", "b"])


@pytest.mark.asyncio
async def test_gemini_auth_failure_is_flagged_without_retry() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(403, json={"error": "bad key"})

    embedder = GeminiEmbedder("key", client=_client(handler), retry_delay=0)
    with pytest.raises(EmbeddingError) as excinfo:
        await embedder.embed_query("q")

    assert excinfo.value.auth is True
    assert len(calls) == 1
    assert calls[0].headers["x-goog-api-key"] == "key"
    assert json.loads(calls[0].content)["requests"][0]["taskType"] == "RETRIEVAL_QUERY"


@pytest.mark.asyncio
async def test_server_errors_are_retried() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"response": "done"})

    llm = OllamaClient("http://ollama", "llama3.2:1b", client=_client(handler), retry_delay=0)
    assert await llm.complete("hi", temperature=0.0) == "done"
    assert len(attempts) == 3
    assert json.loads(attempts[0].content)["options"] == {"temperature": 0.0}


def test_parse_ollama_generate_joins_stream_lines() -> None:
    body = '{"response": "Hel"}\n{"response": "lo"}\n{"done": true}\n'
    assert parse_ollama_generate(body) == "Hello"
    with pytest.raises(LanguageModelError):
        parse_ollama_generate('{"error": "model not found"}')


@pytest.mark.asyncio
async def test_gemini_client_extracts_candidate_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/gemini-2.0-flash:generateContent")
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "Answer"}]}}]})

    llm = GeminiClient("key", client=_client(handler))
    assert await llm.complete("question") == "Answer"


@pytest.mark.asyncio
async def test_model_registry_matches_tagged_names() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"models": [{"name": "xitao/bge-reranker-v2-m3:latest"}]})

    registry = OllamaModelRegistry("http://ollama", client=_client(handler))
    assert await registry.has_model("xitao/bge-reranker-v2-m3")
    assert not await registry.has_model("other-model")


@pytest.mark.asyncio
async def test_model_registry_unreachable_means_missing() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    registry = OllamaModelRegistry("http://ollama", client=_client(handler))
    assert await registry.has_model("anything") is False


@pytest.mark.asyncio
async def test_chroma_creates_collection_and_upserts() -> None:
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        if request.method == "GET" and request.url.path.endswith("/collections/vault_abc"):
            return httpx.Response(404, json={"error": "not found"})
        if request.method == "POST" and request.url.path.endswith("/collections"):
            body = json.loads(request.content)
            assert body["metadata"] == {"hnsw:space": "cosine"}
            return httpx.Response(200, json={"id": "c-1", "name": body["name"]})
        if request.url.path.endswith("/collections/c-1/upsert"):
            body = json.loads(request.content)
            assert body["ids"] == ["n.md:1:2"]
            assert body["metadatas"][0]["filePath"] == "n.md"
            return httpx.Response(200, json={})
        return httpx.Response(500)

    store = ChromaVectorStore("http://chroma:8000", client=_client(handler), retry_delay=0)
    chunk = Chunk(id="n.md:1:2", text="hello", source_path="n.md")
    await store.upsert("vault_abc", [EmbeddedChunk(chunk=chunk, embedding=[0.1, 0.2])])
    await store.upsert("vault_abc", [EmbeddedChunk(chunk=chunk, embedding=[0.1, 0.2])])

    collection_base = "/api/v2/tenants/default_tenant/databases/default_database/collections"
    assert seen[:3] == [
        ("GET", f"{collection_base}/vault_abc"),
        ("POST", collection_base),
        ("POST", f"{collection_base}/c-1/upsert"),
    ]
    # the collection ID is cached after the first lookup
    assert seen[3] == ("POST", f"{collection_base}/c-1/upsert")


@pytest.mark.asyncio
async def test_chroma_search_on_missing_collection_is_empty() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "not found"})

    store = ChromaVectorStore(client=_client(handler))
    assert await store.search("vault_missing", [0.1], 5) == []
    assert await store.has_data("vault_missing") is False


@pytest.mark.asyncio
async def test_chroma_collection_dropped_after_lookup_reads_as_absent(tmp_path: Path) -> None:
    vault = tmp_path / "vault"
    vault.mkdir()
    (vault / "n.md").write_text("# N\n\nhello\n", encoding="utf-8")
    name = collection_name_for_vault(vault, "vault")
    collections = {name: "c-1"}

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/heartbeat"):
            return httpx.Response(200, json={"nanosecond heartbeat": 1})
        if request.method == "GET" and path.endswith(f"/collections/{name}"):
            if name not in collections:
                return httpx.Response(404, json={"error": "NotFoundError"})
            return httpx.Response(200, json={"id": collections[name]})
        collection_id = path.split("/collections/")[1].split("/")[0]
        if collection_id not in collections.values():
            return httpx.Response(404, json={"error": "NotFoundError"})
        if path.endswith("/count"):
            return httpx.Response(200, json=3)
        return httpx.Response(200, json={})

    store = ChromaVectorStore(client=_client(handler), retry_delay=0)
    sync = SyncStatusService(LocalFileSystem(), store, VaultMetadataStore(tmp_path / "metadata"))
    assert await sync.check_sync_status(vault) is SyncStatus.OUT_OF_SYNC

    # dropped by another process while its ID is still cached here
    collections.clear()

    assert await sync.check_sync_status(vault) is SyncStatus.NOT_INDEXED
    assert await store.search(name, [0.1], 5) == []
    await store.delete_by_source(name, "n.md")
    await store.delete(name, ["n.md:1:2"])


@pytest.mark.asyncio
async def test_chroma_upsert_recreates_a_dropped_collection() -> None:
    seen: list[tuple[str, str]] = []
    state = {"id": "c-1"}

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        seen.append((request.method, path))
        if request.method == "GET" and path.endswith("/collections/vault_abc"):
            return httpx.Response(404, json={"error": "NotFoundError"})
        if request.method == "POST" and path.endswith("/collections"):
            state["id"] = "c-2"
            return httpx.Response(200, json={"id": "c-2"})
        if path.endswith(f"/{state['id']}/upsert"):
            return httpx.Response(200, json={})
        return httpx.Response(404, json={"error": "NotFoundError"})

    store = ChromaVectorStore(client=_client(handler), retry_delay=0)
    store._collection_ids["vault_abc"] = "c-1"
    chunk = Chunk(id="n.md:1:2", text="hello", source_path="n.md")

    await store.upsert("vault_abc", [EmbeddedChunk(chunk=chunk, embedding=[0.1])])

    assert seen[-1][1].endswith("/collections/c-2/upsert")
    assert store._collection_ids["vault_abc"] == "c-2"


@pytest.mark.asyncio
async def test_chroma_connection_failure_is_unreachable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    store = ChromaVectorStore(client=_client(handler), retry_delay=0)
    with pytest.raises(VectorStoreError) as excinfo:
        await store.health_check()
    assert excinfo.value.unreachable


def test_parse_query_response_scores_by_distance() -> None:
    payload = {
        "ids": [["a", "b"]],
        "documents": [["far", "near"]],
        "metadatas": [[{"filePath": "a.md"}, {"filePath": "b.md", "startLine": 3}]],
        "distances": [[0.8, 0.1]],
    }
    results = parse_query_response(payload)
    assert [result.chunk.id for result in results] == ["b", "a"]
    assert results[0].score == pytest.approx(0.9)
    assert results[0].chunk.source_path == "b.md"
    assert results[0].chunk.metadata["startLine"] == "3"


def test_build_where_combines_filters() -> None:
    assert build_where(None) is None
    assert build_where({"filePath": "a.md"}) == {"filePath": "a.md"}
    assert build_where({"filePath": "a.md", "sectionTitle": "x"}) == {
        "$and": [{"filePath": "a.md"}, {"sectionTitle": "x"}]
    }


@pytest.mark.asyncio
async def test_tavily_maps_results_and_skips_missing_urls() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer tvly-key"
        assert json.loads(request.content)["max_results"] == 2
        return httpx.Response(
            200,
            json={
                "results": [
                    {"title": "One", "url": "https://one.example", "content": "first"},
                    {"title": "No URL", "content": "dropped"},
                ]
            },
        )

    client = TavilySearchClient("tvly-key", client=_client(handler))
    snippets = await client.search("query", max_results=2)
    assert [(snippet.title, snippet.url, snippet.snippet) for snippet in snippets] == [
        ("One", "https://one.example", "first")
    ]


@pytest.mark.asyncio
async def test_tavily_failure_raises_web_search_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"detail": "unauthorized"})

    client = TavilySearchClient("bad", client=_client(handler))
    with pytest.raises(WebSearchError):
        await client.search("query")

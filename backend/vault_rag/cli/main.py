"""CLI entrypoint for Vault RAG."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List, Optional

import requests
import typer

app = typer.Typer(name="vrag", help="Vault RAG command-line interface")

DEFAULT_HOST = "http://127.0.0.1:5173"
MODES = ("none", "rag", "web", "hybrid")


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("VRAG_HOST")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    try:
        resp = requests.request(method, url, timeout=300, **kwargs)
    except requests.ConnectionError as exc:
        typer.echo(f"Cannot reach {base}: {exc}", err=True)
        raise typer.Exit(code=2)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _vault(path: Path) -> str:
    return str(path.expanduser().resolve())


def _query_payload(
    q: str,
    vault: Optional[Path],
    mode: Optional[str],
    k: Optional[int],
    rerank: Optional[bool],
) -> dict[str, object]:
    if mode is not None and mode not in MODES:
        raise typer.BadParameter(f"mode must be one of {', '.join(MODES)}")
    payload: dict[str, object] = {"query": q}
    if vault is not None:
        payload["vault_path"] = _vault(vault)
    if mode is not None:
        payload["mode"] = mode
    if k is not None:
        payload["display_k"] = k
    if rerank is not None:
        payload["rerank"] = rerank
    return payload


@app.command()
def index(
    vault: Path = typer.Argument(..., help="Vault directory"),
    path: Optional[List[str]] = typer.Option(None, "--path", help="Reindex only this note (repeatable)"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Index a vault incrementally, or reindex selected notes."""
    body: dict[str, object] = {"vault_path": _vault(vault)}
    if path:
        body["paths"] = list(path)
    resp = _request("POST", "/index", host=host, json=body)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def remove(
    vault: Path = typer.Argument(..., help="Vault directory"),
    path: str = typer.Argument(..., help="Note path relative to the vault"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Remove one note from the index."""
    resp = _request("DELETE", "/index/file", host=host, json={"vault_path": _vault(vault), "path": path})
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def sync(
    vault: Path = typer.Argument(..., help="Vault directory"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show whether the index matches the vault."""
    resp = _request("GET", "/sync", host=host, params={"vault_path": _vault(vault)})
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def retrieve(
    q: str = typer.Argument(..., help="Query text"),
    vault: Optional[Path] = typer.Option(None, "--vault", help="Vault directory"),
    mode: Optional[str] = typer.Option(None, "--mode", help="none, rag, web or hybrid"),
    k: Optional[int] = typer.Option(None, "--k", help="Number of chunks to return"),
    rerank: Optional[bool] = typer.Option(None, "--rerank/--no-rerank", help="Force reranking on/off"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Retrieve context without generating an answer."""
    resp = _request("POST", "/retrieve", host=host, json=_query_payload(q, vault, mode, k, rerank))
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def answer(
    q: str = typer.Argument(..., help="Question"),
    vault: Optional[Path] = typer.Option(None, "--vault", help="Vault directory"),
    mode: Optional[str] = typer.Option(None, "--mode", help="none, rag, web or hybrid"),
    k: Optional[int] = typer.Option(None, "--k", help="Number of chunks to use"),
    rerank: Optional[bool] = typer.Option(None, "--rerank/--no-rerank", help="Force reranking on/off"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Answer a question from notes and/or the web."""
    resp = _request("POST", "/answer", host=host, json=_query_payload(q, vault, mode, k, rerank))
    payload = resp.json()
    typer.echo(payload["answer"])
    for chunk in payload.get("chunks", []):
        typer.echo(f"  - {chunk.get('section_title') or chunk['source_path']} ({chunk['score']:.2f})")


if __name__ == "__main__":
    app()

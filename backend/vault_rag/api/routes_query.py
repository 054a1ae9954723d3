"""Retrieval and answer API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from vault_rag.api.dependencies import get_answer_composer, get_app_settings, get_retrieval_service
from vault_rag.core.config import Settings
from vault_rag.core.errors import LanguageModelError, RetrievalError
from vault_rag.models.dto import AnswerResponse, RetrieveRequest, RetrieveResponse
from vault_rag.models.entities import RetrievalMode
from vault_rag.retrieval.answer import AnswerComposer
from vault_rag.retrieval.retriever import RetrievalOptions
from vault_rag.retrieval.service import RetrievalService

router = APIRouter()


@router.post("/retrieve", response_model=RetrieveResponse, summary="Retrieve context for a query")
async def retrieve(
    request: RetrieveRequest,
    service: RetrievalService = Depends(get_retrieval_service),
    settings: Settings = Depends(get_app_settings),
) -> RetrieveResponse:
    mode = _mode(request, settings)
    try:
        context = await service.retrieve(request.query, mode, request.vault_path, _options(request))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RetrievalError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return RetrieveResponse.from_context(mode.value, context)


@router.post("/answer", response_model=AnswerResponse, summary="Answer a query from retrieved context")
async def answer(
    request: RetrieveRequest,
    composer: AnswerComposer = Depends(get_answer_composer),
    settings: Settings = Depends(get_app_settings),
) -> AnswerResponse:
    mode = _mode(request, settings)
    try:
        result = await composer.answer(request.query, mode, request.vault_path, _options(request))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (RetrievalError, LanguageModelError) as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return AnswerResponse.from_result(result)


def _mode(request: RetrieveRequest, settings: Settings) -> RetrievalMode:
    return RetrievalMode(request.mode or settings.default_retrieval_mode)


def _options(request: RetrieveRequest) -> RetrievalOptions:
    return RetrievalOptions(
        max_k=request.max_k,
        display_k=request.display_k,
        similarity_threshold=request.similarity_threshold,
        filters=request.filters,
        rerank=request.rerank,
    )


__all__ = ["router"]

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from mailscout.api.deps import enforce_rate_limit, get_orchestrator
from mailscout.config import settings
from mailscout.models.schemas import ChatRequest, ExportRequest, ExportResponse
from mailscout.services.exporter import format_history
from mailscout.services.orchestrator import ChatOrchestrator

router = APIRouter(prefix="/api", tags=["chat"])


@router.post("/chat", dependencies=[Depends(enforce_rate_limit)])
async def chat(
    request: ChatRequest,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_limit, ge=1, le=settings.max_page_limit),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """Classify the message and answer directly or with a business report."""
    envelope = await orchestrator.handle(request.message, request.history, page=page, limit=limit)
    return JSONResponse(envelope.to_payload())


@router.post("/export", response_model=ExportResponse)
async def export(request: ExportRequest):
    return ExportResponse(data=format_history(request.history, request.format))

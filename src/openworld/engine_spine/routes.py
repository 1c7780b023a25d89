"""FastAPI routes for the engine bridge."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from openworld.engine_spine.errors import EngineError, EngineRequestError
from openworld.engine_spine.models import (
    ChatRequest,
    ChatResponse,
    EngineStatusResponse,
    ModelInfo,
    PullRequest,
)
from openworld.engine_spine.status import EngineServices
from openworld.engine_spine.stream import create_sse_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["engine"])


def get_services(request: Request) -> EngineServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Engine bridge not initialized")
    return services


def _engine_failure(e: EngineError) -> HTTPException:
    detail = {"code": e.code, "message": str(e)}
    if isinstance(e, EngineRequestError):
        detail["engine_status"] = e.status_code
    return HTTPException(status_code=502, detail=detail)


# --- Engine ---


@router.get(
    "/engine/status",
    response_model=EngineStatusResponse,
    summary="Get engine status",
)
async def get_engine_status(
    services: EngineServices = Depends(get_services),
) -> EngineStatusResponse:
    return await services.get_status()


@router.post(
    "/engine/ensure",
    summary="Make sure the engine is installed, running and ready",
    description="Progress is published on the SSE stream as engine.status events.",
)
async def ensure_engine(services: EngineServices = Depends(get_services)) -> dict:
    result = await services.controller.ensure_ready()
    return result.to_dict()


# --- Models ---


@router.get("/models", response_model=List[ModelInfo], summary="List installed models")
async def list_models(
    services: EngineServices = Depends(get_services),
) -> List[ModelInfo]:
    try:
        return await services.client.list_models()
    except EngineError as e:
        raise _engine_failure(e)


@router.post("/models/pull", summary="Pull a model")
async def pull_model(
    request: PullRequest,
    services: EngineServices = Depends(get_services),
) -> dict:
    """Blocks until the pull ends; progress goes out as model.pull_progress."""
    try:
        events = await services.chat.pull_model(request.name)
    except EngineError as e:
        raise _engine_failure(e)
    return {"name": request.name, "events": events}


@router.delete("/models/{name:path}", status_code=204, summary="Delete a model")
async def delete_model(
    name: str,
    services: EngineServices = Depends(get_services),
) -> Response:
    try:
        await services.client.delete_model(name)
    except EngineError as e:
        raise _engine_failure(e)
    return Response(status_code=204)


# --- Chat ---


@router.post("/chat", response_model=ChatResponse, summary="Send a chat message")
async def send_chat(
    request: ChatRequest,
    services: EngineServices = Depends(get_services),
) -> ChatResponse:
    """Tokens stream out as chat.token events; the full reply is returned."""
    try:
        content = await services.chat.send_message(
            request.conversation_id, request.messages, request.model
        )
    except EngineError as e:
        raise _engine_failure(e)
    return ChatResponse(conversation_id=request.conversation_id, content=content)


# --- SSE ---


@router.get("/stream", summary="SSE event stream")
async def stream_events(
    event_type: Optional[List[str]] = Query(None, description="Filter by event type"),
    services: EngineServices = Depends(get_services),
):
    return create_sse_response(
        services.broadcaster,
        set(event_type) if event_type else None,
    )

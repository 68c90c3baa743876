"""
HTTP and WebSocket interface for the planner chat service.

Session and user identity are supplied by the fronting auth layer in the
``X-Session-Id`` and ``X-User-Id`` headers (or the WebSocket frame).
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

from planner_chat.chat_service import ChatService, ChatServiceError

logger = structlog.get_logger(__name__)


class ChatRequest(BaseModel):
    message: str


class ChatResponse(BaseModel):
    message: str
    session_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SessionStatusResponse(BaseModel):
    session_id: str
    is_active: bool
    active_sessions_count: int


class WebSocketPayload(BaseModel):
    text: str = ""


class WebSocketFrame(BaseModel):
    action: str
    request_id: str = ""
    session_id: str = ""
    user_id: str = ""
    payload: WebSocketPayload = Field(default_factory=WebSocketPayload)


def _require_identity(session_id: str | None, user_id: str | None) -> tuple[str, str]:
    if not session_id:
        raise HTTPException(status_code=400, detail="Session ID header is required")
    if not user_id:
        raise HTTPException(status_code=400, detail="User ID header is required")
    return session_id, user_id


def _chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


router = APIRouter(prefix="/api/chat")


@router.post("/message", response_model=ChatResponse)
async def send_message(
    body: ChatRequest,
    request: Request,
    x_session_id: Annotated[str | None, Header()] = None,
    x_user_id: Annotated[str | None, Header()] = None,
) -> ChatResponse:
    if not body.message.strip():
        raise HTTPException(status_code=400, detail="Message cannot be empty")
    session_id, user_id = _require_identity(x_session_id, x_user_id)

    logger.info("Processing chat message", session_id=session_id, user_id=user_id)
    try:
        reply = await _chat_service(request).respond(session_id, user_id, body.message)
    except ChatServiceError as e:
        raise HTTPException(status_code=500, detail=e.message) from e

    return ChatResponse(message=reply, session_id=session_id)


@router.post("/clear")
async def clear_session(
    request: Request,
    x_session_id: Annotated[str | None, Header()] = None,
) -> dict[str, str]:
    if not x_session_id:
        raise HTTPException(status_code=400, detail="Session ID header is required")

    await _chat_service(request).clear_session(x_session_id)
    return {"message": "Chat session cleared", "session_id": x_session_id}


@router.get("/status", response_model=SessionStatusResponse)
async def session_status(
    request: Request,
    x_session_id: Annotated[str | None, Header()] = None,
) -> SessionStatusResponse:
    if not x_session_id:
        raise HTTPException(status_code=400, detail="Session ID header is required")

    status = _chat_service(request).session_status(x_session_id)
    return SessionStatusResponse(
        session_id=status.session_id,
        is_active=status.is_active,
        active_sessions_count=status.active_session_count,
    )


@router.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    return {
        "status": "healthy",
        "active_sessions": _chat_service(request).registry.active_count(),
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def _handle_frame(service: ChatService, raw: Any) -> dict[str, Any]:
    try:
        frame = WebSocketFrame.model_validate(raw)
    except ValidationError as e:
        return {"status": "error", "chunk": {"error": f"Invalid frame: {e.error_count()} errors"}}

    base = {"request_id": frame.request_id}
    if frame.action == "clear":
        await service.clear_session(frame.session_id)
        return {**base, "status": "complete", "chunk": {"type": "cleared", "data": frame.session_id}}

    if frame.action != "chat":
        return {**base, "status": "error", "chunk": {"error": f"Unknown action '{frame.action}'"}}

    try:
        reply = await service.respond(frame.session_id, frame.user_id, frame.payload.text)
    except ValueError as e:
        return {**base, "status": "error", "chunk": {"error": str(e)}}
    except ChatServiceError as e:
        return {**base, "status": "error", "chunk": {"error": e.message}}

    return {**base, "status": "complete", "chunk": {"type": "text", "data": reply}}


async def chat_websocket(websocket: WebSocket) -> None:
    service: ChatService = websocket.app.state.chat_service
    await websocket.accept()
    logger.info("WebSocket connected")
    try:
        while True:
            text = await websocket.receive_text()
            try:
                raw = json.loads(text)
            except json.JSONDecodeError:
                await websocket.send_json(
                    {"status": "error", "chunk": {"error": "Invalid JSON frame"}}
                )
                continue
            await websocket.send_json(await _handle_frame(service, raw))
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected")


def create_app(chat_service: ChatService) -> FastAPI:
    """Build the FastAPI app; the lifespan starts and closes the service."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await chat_service.start()
        try:
            yield
        finally:
            await chat_service.close()

    app = FastAPI(title="Planner Chat", lifespan=lifespan)
    app.state.chat_service = chat_service
    app.include_router(router)
    app.add_api_websocket_route("/ws/chat", chat_websocket)
    return app

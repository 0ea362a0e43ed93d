from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import APIRouter, BackgroundTasks, Depends, status

from ..config import Settings, get_settings
from ..models import ChatRequest, ChatResponse, SessionSnapshot
from ..services.delivery import ReplyDelivery, get_reply_delivery
from ..services.engine import ConversationEngine, get_engine
from ..services.errors import BadRequestError, SessionNotFoundError
from ..utils.logging import get_request_logger

router = APIRouter(prefix="/api/chat", tags=["chat"])
logger = logging.getLogger(__name__)


@router.post("/message", response_model=ChatResponse)
def post_message(
    request: ChatRequest,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_settings),
    engine: ConversationEngine = Depends(get_engine),
    delivery: ReplyDelivery = Depends(get_reply_delivery),
) -> ChatResponse:
    if not request.user_id.strip():
        raise BadRequestError(
            "user_id must not be empty",
            reason="empty_user_id",
            http_status=status.HTTP_400_BAD_REQUEST,
        )

    trace_id = request.trace_id or uuid4().hex
    request_logger = get_request_logger(logger, trace_id=trace_id, user_id=request.user_id)
    request_logger.info("Incoming chat message chars=%d", len(request.message))

    result = engine.handle(request.user_id, request.message, trace_id=trace_id)
    background_tasks.add_task(delivery.deliver, request.user_id, result.reply, trace_id=trace_id)

    response = ChatResponse.from_result(result)
    if not settings.debug:
        response.debug = None
    request_logger.info("Reply ready intent=%s action=%s mode=%s", result.intent, result.action, result.mode)
    return response


@router.get("/sessions/{user_id}", response_model=SessionSnapshot)
def get_session(
    user_id: str,
    engine: ConversationEngine = Depends(get_engine),
) -> SessionSnapshot:
    snapshot = engine.snapshot(user_id)
    if snapshot is None:
        raise SessionNotFoundError(f"No active session for {user_id}", reason="session_not_found")
    return snapshot


@router.delete("/sessions/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_session(
    user_id: str,
    engine: ConversationEngine = Depends(get_engine),
) -> None:
    engine.reset(user_id)

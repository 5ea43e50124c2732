from typing import Optional
import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, StreamingResponse

from ..chat.controller import StreamingController
from ..chat.models import ChatRequest, ErrorEvent
from ..chat.sessions import SessionManager
from ..deps import get_chat_controller, get_session_manager
from ..errors import PersistenceError, SessionNotFound, ValidationError
from ..sse import event_stream, single_events


router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _sse_error(message: str, status_code: int) -> StreamingResponse:
    return StreamingResponse(
        single_events([ErrorEvent(message=message)]),
        status_code=status_code,
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_chat_session(
    req: ChatRequest,
    sessions: SessionManager = Depends(get_session_manager),
):
    try:
        session_id = await sessions.create_session(req.conversation_id, req.message)
    except ValidationError as e:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": e.message})
    except PersistenceError as e:
        logging.error("Failed to create chat session: %s", e.message)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Unable to start chat session"},
        )
    return {"sessionId": session_id}


@router.get("/events/{session_id}")
async def chat_events(
    session_id: str,
    request: Request,
    controller: Optional[StreamingController] = Depends(get_chat_controller),
):
    if controller is None:
        return _sse_error(
            "OPENAI_API_KEY must be configured on the server",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    try:
        session = await controller.open(session_id)
    except SessionNotFound as e:
        return _sse_error(e.message, status.HTTP_404_NOT_FOUND)
    except PersistenceError as e:
        logging.error("Failed to load chat session %s: %s", session_id, e.message)
        return _sse_error("Unable to load chat session", status.HTTP_500_INTERNAL_SERVER_ERROR)

    return StreamingResponse(
        event_stream(controller.run(session_id, session, request.is_disconnected)),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    sessions: SessionManager = Depends(get_session_manager),
):
    try:
        history = await sessions.load_history(conversation_id)
    except PersistenceError as e:
        logging.error("Failed to fetch conversation %s: %s", conversation_id, e.message)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Unable to load conversation history"},
        )
    if history is None:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"messages": []})
    return {"messages": [m.to_wire() for m in history]}

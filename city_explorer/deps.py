from typing import Optional
import httpx

from fastapi import HTTPException, status, Request

from .breaker import CircuitBreaker
from .chat.controller import StreamingController
from .chat.sessions import SessionManager
from .services.geoapify import GeoapifyGateway
from .store import KeyValueStore


def _state(request: Request, name: str, detail: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
        )
    return value


def get_http_client(request: Request) -> httpx.AsyncClient:
    return _state(request, "http_client", "HTTP client not initialized")


def get_store(request: Request) -> KeyValueStore:
    return _state(request, "store", "Store not initialized")


def get_geo_gateway(request: Request) -> GeoapifyGateway:
    return _state(request, "geo_gateway", "Geo gateway not initialized")


def get_session_manager(request: Request) -> SessionManager:
    return _state(request, "session_manager", "Session manager not initialized")


def get_places_breaker(request: Request) -> CircuitBreaker:
    return _state(request, "places_breaker", "Places cache not initialized")


def get_chat_controller(request: Request) -> Optional[StreamingController]:
    # None when no model provider key is configured.
    return getattr(request.app.state, "chat_controller", None)

from typing import Optional
import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from ..breaker import CircuitBreaker
from ..config import CONFIG
from ..deps import get_geo_gateway, get_places_breaker, get_store
from ..errors import GatewayError
from ..services.geoapify import GeoapifyGateway
from ..store import KeyValueStore


router = APIRouter()


def cache_key_for_query(query: str) -> str:
    return f"places:{query.strip().lower()}"


@router.get("")
async def list_places(
    query: Optional[str] = None,
    geo: GeoapifyGateway = Depends(get_geo_gateway),
    store: KeyValueStore = Depends(get_store),
    breaker: CircuitBreaker = Depends(get_places_breaker),
):
    if not query or not query.strip():
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "query required"})

    trimmed = query.strip()
    key = cache_key_for_query(trimmed)

    cached = await breaker.attempt(lambda: store.get_json(key))
    if isinstance(cached, list):
        return cached

    try:
        features = await geo.places(trimmed)
    except GatewayError as e:
        logging.error("Failed to fetch attractions for %r: %s", trimmed, e.message)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": e.message},
        )

    await breaker.attempt(lambda: store.set_json(key, features, CONFIG.places_cache_ttl_sec))
    return features

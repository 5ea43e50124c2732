import os
import logging

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import httpx
from openai import AsyncOpenAI
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
import uvicorn
from city_explorer.routers.chat import router as chat_router
from city_explorer.routers.geo import router as geo_router
from city_explorer.routers.places import router as places_router
from city_explorer.routers.route import router as route_router
from .breaker import CircuitBreaker
from .chat.controller import StreamingController
from .chat.sessions import SessionManager
from .chat.tools import ToolOrchestrator
from .config import CONFIG
from .deps import get_store
from .services.geoapify import GeoapifyGateway
from .services.llm import OpenAIGateway
from .store import KeyValueStore, create_redis_client


# --- Logging Configuration ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler()  # Ensure logs go to stdout/stderr
    ]
)
# --------------------------

SYSTEM_PROMPT = (
    "You are a co-pilot for exploring cities. Answer questions about destinations "
    "and landmarks. When the user asks how to get somewhere, call plan_route and "
    "summarize the distance and travel time it returns."
)

limiter = Limiter(key_func=get_remote_address, default_limits=[CONFIG.rate_limit])


class EventStreamAwareGZip(GZipMiddleware):
    """GZip everything except push-channel responses, which must flush per frame."""

    def __init__(self, app, skip_prefixes=("/chat/events/",), **kwargs) -> None:
        super().__init__(app, **kwargs)
        self.skip_prefixes = tuple(skip_prefixes)

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] == "http" and scope["path"].startswith(self.skip_prefixes):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return JSONResponse(status_code=400, content={"error": "Invalid request: " + "; ".join(parts)})


@asynccontextmanager
async def lifespan(app: FastAPI):
    http_client = httpx.AsyncClient(timeout=CONFIG.http_timeout_sec)
    store = KeyValueStore(create_redis_client())
    geo = GeoapifyGateway(http_client)
    sessions = SessionManager(store)
    app.state.http_client = http_client
    app.state.store = store
    app.state.geo_gateway = geo
    app.state.session_manager = sessions
    app.state.places_breaker = CircuitBreaker(
        "places cache",
        failure_threshold=CONFIG.cache_failure_threshold,
        recovery_sec=CONFIG.cache_recovery_sec,
    )

    openai_client = None
    if CONFIG.openai_api_key:
        openai_client = AsyncOpenAI(api_key=CONFIG.openai_api_key, timeout=CONFIG.http_timeout_sec * 6)
        app.state.chat_controller = StreamingController(
            sessions,
            OpenAIGateway(openai_client, CONFIG.openai_model, SYSTEM_PROMPT),
            ToolOrchestrator(geo),
        )
    else:
        app.state.chat_controller = None
        logging.warning("OPENAI_API_KEY is not configured; chat streaming is disabled")
    try:
        yield
    finally:
        if openai_client is not None:
            await openai_client.close()
        await store.close()
        await http_client.aclose()


app = FastAPI(title="City Explorer", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(EventStreamAwareGZip, minimum_size=512)
app.include_router(chat_router, prefix="/chat")
app.include_router(route_router, prefix="/route")
app.include_router(geo_router, prefix="/geo")
app.include_router(places_router, prefix="/places")


@app.get("/health")
async def health(store: KeyValueStore = Depends(get_store)):
    store_up = await store.ping()
    return {"status": "ok", "store": "up" if store_up else "down"}


if __name__ == "__main__":
    port = int(os.getenv("PORT", "4000"))
    uvicorn.run(app, host="0.0.0.0", port=port)

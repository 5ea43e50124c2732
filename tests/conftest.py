"""Shared fixtures and in-memory fakes for the store and upstream gateways."""

import asyncio
import json
import os
from typing import Any, Dict, List, Optional, Sequence

os.environ.setdefault("RATE_LIMIT", "10000/minute")

import pytest
from fastapi.testclient import TestClient

from city_explorer.breaker import CircuitBreaker
from city_explorer.chat.controller import StreamingController
from city_explorer.chat.models import GeocodeResult, LatLng, RoutePayload
from city_explorer.chat.sessions import SessionManager
from city_explorer.chat.tools import ToolOrchestrator
from city_explorer.errors import GatewayError, PersistenceError
from city_explorer.services.llm import ProbeResult, StreamChunk


def run(coro):
    return asyncio.run(coro)


async def collect(agen) -> List[Any]:
    return [item async for item in agen]


class FakeStore:
    def __init__(self) -> None:
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.deletes: List[str] = []

    async def get_json(self, key: str) -> Optional[Any]:
        if self.fail_reads:
            raise PersistenceError(f"Store read failed for {key}")
        raw = self.data.get(key)
        return json.loads(raw) if raw is not None else None

    async def pop_json(self, key: str) -> Optional[Any]:
        value = await self.get_json(key)
        self.data.pop(key, None)
        return value

    async def set_json(self, key: str, value: Any, ttl_sec: int) -> None:
        if self.fail_writes:
            raise PersistenceError(f"Store write failed for {key}")
        self.data[key] = json.dumps(value)
        self.ttls[key] = ttl_sec

    async def delete(self, key: str) -> None:
        self.deletes.append(key)
        self.data.pop(key, None)

    async def ping(self) -> bool:
        return not self.fail_reads


class FakeGeo:
    def __init__(self, known: Optional[Dict[str, GeocodeResult]] = None) -> None:
        self.known = known or {}
        self.geocode_calls: List[str] = []
        self.route_calls: List[Dict[str, Any]] = []
        self.route_error: Optional[GatewayError] = None
        self.place_features: List[Dict[str, Any]] = [{"type": "Feature", "properties": {"name": "Louvre"}}]
        self.places_calls: List[str] = []

    async def geocode(self, query: str) -> Optional[GeocodeResult]:
        self.geocode_calls.append(query)
        return self.known.get(query)

    async def route(self, waypoints: Sequence[LatLng], mode: str = "driving") -> RoutePayload:
        self.route_calls.append({"waypoints": list(waypoints), "mode": mode})
        if self.route_error is not None:
            raise self.route_error
        return RoutePayload(
            coordinates=list(waypoints),
            distanceMeters=1200.0 * (len(waypoints) - 1),
            durationSeconds=300.0 * (len(waypoints) - 1),
        )

    async def places(self, query: str) -> List[Dict[str, Any]]:
        self.places_calls.append(query)
        return self.place_features


class FakeModel:
    """Scripted model: probe results are consumed in order, then `stop`."""

    def __init__(self, probes=None, tokens=("Hi", " there"), stream_error: Optional[Exception] = None) -> None:
        self.probes = list(probes or [])
        self.tokens = list(tokens)
        self.stream_error = stream_error
        self.probe_calls: List[list] = []
        self.stream_calls: List[list] = []
        self.stream_closed = False

    async def probe(self, messages, tools):
        self.probe_calls.append(list(messages))
        if self.probes:
            result = self.probes.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return ProbeResult(finish_reason="stop", content="")

    async def stream(self, messages, tools=None):
        self.stream_calls.append(list(messages))
        try:
            for token in self.tokens:
                yield StreamChunk(content=token)
            if self.stream_error is not None:
                raise self.stream_error
            yield StreamChunk(finish_reason="stop")
            yield StreamChunk(content="after stop")
        finally:
            self.stream_closed = True


EIFFEL = GeocodeResult(lat=48.8584, lng=2.2945, formatted="Eiffel Tower, Paris, France")
LOUVRE = GeocodeResult(lat=48.8606, lng=2.3376, formatted=None)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def geo() -> FakeGeo:
    return FakeGeo({"Eiffel Tower": EIFFEL, "Louvre": LOUVRE})


@pytest.fixture
def model() -> FakeModel:
    return FakeModel()


@pytest.fixture
def sessions(store) -> SessionManager:
    return SessionManager(store, history_limit=20, session_ttl_sec=300, conversation_ttl_sec=3600)


@pytest.fixture
def orchestrator(geo) -> ToolOrchestrator:
    return ToolOrchestrator(geo)


@pytest.fixture
def controller(sessions, model, orchestrator) -> StreamingController:
    return StreamingController(sessions, model, orchestrator, max_tool_rounds=5)


@pytest.fixture
def breaker() -> CircuitBreaker:
    return CircuitBreaker("places cache", failure_threshold=2, recovery_sec=30.0)


@pytest.fixture
def client(store, geo, sessions, controller, breaker):
    from city_explorer import deps
    from city_explorer.main import app

    app.dependency_overrides[deps.get_store] = lambda: store
    app.dependency_overrides[deps.get_geo_gateway] = lambda: geo
    app.dependency_overrides[deps.get_session_manager] = lambda: sessions
    app.dependency_overrides[deps.get_chat_controller] = lambda: controller
    app.dependency_overrides[deps.get_places_breaker] = lambda: breaker
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()

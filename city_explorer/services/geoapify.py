from typing import Any, Dict, List, Literal, Optional, Sequence
import logging
import time
import json
from datetime import datetime, timezone

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..config import CONFIG
from ..errors import GatewayError
from ..chat.models import GeocodeResult, LatLng, RoutePayload


MODE_MAP: Dict[str, str] = {
    "driving": "drive",
    "walking": "walk",
    "cycling": "bike",
}

PLACE_CATEGORIES = "tourism.sights,tourism.attraction"
PLACES_LIMIT = 20


class _GeocodeProperties(BaseModel):
    lat: float
    lon: float
    formatted: Optional[str] = None
    place_id: Optional[str] = None


class _GeocodeFeature(BaseModel):
    properties: _GeocodeProperties


class _GeocodeCollection(BaseModel):
    features: List[_GeocodeFeature]


class _RouteGeometry(BaseModel):
    type: Literal["LineString", "MultiLineString"]
    coordinates: Any


class _RouteProperties(BaseModel):
    distance: float
    time: float


class _RouteFeature(BaseModel):
    geometry: _RouteGeometry
    properties: _RouteProperties


class _RouteCollection(BaseModel):
    features: List[_RouteFeature]


def _log_call(fn: str, start_time: float, ok: bool, http_status: Optional[int]) -> None:
    latency_ms = (time.monotonic() - start_time) * 1000
    log_data = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "tool": "geoapify",
        "fn": fn,
        "latency_ms": f"{latency_ms:.2f}",
        "ok": ok,
        "http_status": http_status,
    }
    logging.info(json.dumps(log_data))


def _flatten_geometry(geometry: _RouteGeometry) -> List[LatLng]:
    if geometry.type == "LineString":
        lines = [geometry.coordinates]
    else:
        lines = geometry.coordinates
    points: List[LatLng] = []
    for line in lines:
        for pair in line:
            lng, lat = pair[0], pair[1]
            points.append(LatLng(lat=float(lat), lng=float(lng)))
    return points


class GeoapifyGateway:
    """Geocoding, routing and places lookups against the Geoapify API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> None:
        self._client = client
        self._api_key = api_key if api_key is not None else CONFIG.geoapify_key
        self._base = (base_url or CONFIG.geoapify_base).rstrip("/")

    async def _get(self, fn: str, path: str, params: Dict[str, Any]) -> Any:
        if not self._api_key:
            raise GatewayError("GEOAPIFY_KEY environment variable is not configured")
        start_time = time.monotonic()
        headers = {"User-Agent": CONFIG.user_agent}
        try:
            resp = await self._client.get(
                f"{self._base}{path}",
                params={**params, "apiKey": self._api_key},
                headers=headers,
            )
        except httpx.HTTPError as e:
            _log_call(fn, start_time, False, None)
            raise GatewayError(f"Geoapify {fn} request failed: {str(e)}")
        if resp.status_code != 200:
            _log_call(fn, start_time, False, resp.status_code)
            raise GatewayError(
                f"Geoapify {fn} failed: {resp.status_code} {resp.text}",
                status=resp.status_code,
            )
        _log_call(fn, start_time, True, resp.status_code)
        try:
            return resp.json()
        except ValueError:
            raise GatewayError(f"Geoapify {fn} returned invalid JSON", status=resp.status_code)

    async def _geocode_first(self, query: str) -> Optional[_GeocodeProperties]:
        data = await self._get("geocode", "/v1/geocode/search", {"text": query, "limit": 1})
        try:
            parsed = _GeocodeCollection.model_validate(data)
        except PydanticValidationError:
            raise GatewayError("Geoapify geocode response malformed")
        if not parsed.features:
            return None
        return parsed.features[0].properties

    async def geocode(self, query: str) -> Optional[GeocodeResult]:
        """First geocoding match for `query`, or None when nothing matches."""
        first = await self._geocode_first(query)
        if first is None:
            return None
        return GeocodeResult(lat=first.lat, lng=first.lon, formatted=first.formatted)

    async def route(self, waypoints: Sequence[LatLng], mode: str = "driving") -> RoutePayload:
        if len(waypoints) < 2:
            raise GatewayError("At least two waypoints are required to plan a route")
        params = {
            "waypoints": "|".join(f"{wp.lat},{wp.lng}" for wp in waypoints),
            "mode": MODE_MAP.get(mode, "drive"),
            "units": "metric",
            "lang": "en",
        }
        data = await self._get("route", "/v1/routing", params)
        try:
            parsed = _RouteCollection.model_validate(data)
        except PydanticValidationError:
            raise GatewayError("Geoapify routing response malformed")
        if not parsed.features:
            raise GatewayError("Geoapify returned no routes")
        first = parsed.features[0]
        try:
            coordinates = _flatten_geometry(first.geometry)
        except (TypeError, ValueError, IndexError):
            raise GatewayError("Geoapify routing geometry malformed")
        logging.info(
            "route planned: mode=%s waypoints=%d points=%d distance_m=%.0f duration_s=%.0f",
            mode, len(waypoints), len(coordinates),
            first.properties.distance, first.properties.time,
        )
        return RoutePayload(
            coordinates=coordinates,
            distanceMeters=first.properties.distance,
            durationSeconds=first.properties.time,
        )

    async def places(self, query: str) -> List[Dict[str, Any]]:
        """Tourist sights and attractions inside the place `query` geocodes to."""
        first = await self._geocode_first(query)
        if first is None or not first.place_id:
            raise GatewayError("Place ID not found", status=404)
        data = await self._get(
            "places",
            "/v2/places",
            {
                "categories": PLACE_CATEGORIES,
                "filter": f"place:{first.place_id}",
                "limit": PLACES_LIMIT,
            },
        )
        features = data.get("features") if isinstance(data, dict) else None
        if not isinstance(features, list):
            raise GatewayError("Geoapify places response malformed")
        return [f for f in features if isinstance(f, dict)]

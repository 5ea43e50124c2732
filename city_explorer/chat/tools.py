import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence

from pydantic import ValidationError as PydanticValidationError

from ..errors import GatewayError, ResolutionError, ValidationError
from .models import (
    Coords,
    GeocodeResult,
    LatLng,
    LocationRef,
    Message,
    PlanRouteArgs,
    RoutePayload,
    ToolCall,
    ToolResultEvent,
)


PLAN_ROUTE = "plan_route"

_LOCATION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "description": "Either coordinates (lat and lng together) or a free-text place query.",
    "properties": {
        "lat": {"type": "number"},
        "lng": {"type": "number"},
        "query": {"type": "string", "description": "Place name or address to geocode"},
    },
}

PLAN_ROUTE_TOOL: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": PLAN_ROUTE,
        "description": (
            "Plan a route between two or more locations and return its path, "
            "distance and duration. Give either `waypoints` in travel order or "
            "`start`, optional `via` stops and `end`."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "waypoints": {"type": "array", "items": _LOCATION_SCHEMA, "minItems": 2},
                "start": _LOCATION_SCHEMA,
                "via": {"type": "array", "items": _LOCATION_SCHEMA},
                "end": _LOCATION_SCHEMA,
                "mode": {"type": "string", "enum": ["driving", "walking", "cycling"]},
            },
        },
    },
}


class GeoGateway(Protocol):
    async def geocode(self, query: str) -> Optional[GeocodeResult]: ...

    async def route(self, waypoints: Sequence[LatLng], mode: str = "driving") -> RoutePayload: ...


@dataclass
class ToolOutcome:
    message: Message
    event: ToolResultEvent

    @property
    def ok(self) -> bool:
        return self.event.error is None


def _format_loc(loc) -> str:
    out = ""
    for part in loc:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out += f".{part}" if out else str(part)
    return out


def _describe_validation(e: PydanticValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = _format_loc(err.get("loc", ()))
        msg = str(err.get("msg", "invalid value")).removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "Invalid plan_route arguments: " + "; ".join(parts)


def parse_plan_route_arguments(raw: str) -> PlanRouteArgs:
    try:
        data = json.loads(raw or "")
    except json.JSONDecodeError as e:
        raise ValidationError(f"Tool arguments are not valid JSON: {e.msg}")
    if not isinstance(data, dict):
        raise ValidationError("Tool arguments must be a JSON object")
    try:
        return PlanRouteArgs.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(_describe_validation(e))


class ToolOrchestrator:
    """
    Executes the tool calls of one model turn. Every call produces exactly one
    `tool` message (a route payload or an `{error}` object) and one
    tool-result event; a failing call never stops the rest of the batch.
    """

    def __init__(self, geo: GeoGateway) -> None:
        self.geo = geo

    @property
    def tools(self) -> List[Dict[str, Any]]:
        return [PLAN_ROUTE_TOOL]

    async def resolve(self, calls: Sequence[ToolCall]) -> AsyncIterator[ToolOutcome]:
        for call in calls:
            yield await self.run_call(call)

    async def run_call(self, call: ToolCall) -> ToolOutcome:
        name = call.function.name
        if name != PLAN_ROUTE:
            return self._failure(call, f"Unknown tool: {name}")
        try:
            args = parse_plan_route_arguments(call.function.arguments)
            payload = await self._plan_route(args)
        except (ValidationError, ResolutionError, GatewayError) as e:
            logging.warning("tool call %s (%s) failed: %s", call.id, name, e.message)
            return self._failure(call, e.message)
        logging.info(
            "tool call %s (%s) ok: %d stops, mode=%s",
            call.id, name, payload["waypointCount"], payload["mode"],
        )
        return ToolOutcome(
            message=Message(role="tool", tool_call_id=call.id, content=json.dumps(payload)),
            event=ToolResultEvent(tool=name, data=payload),
        )

    async def _plan_route(self, args: PlanRouteArgs) -> Dict[str, Any]:
        locations = args.locations()
        stops = [await self._resolve_stop(i, ref) for i, ref in enumerate(locations)]
        if len(stops) < 2:
            raise ValidationError("At least two waypoints are required to plan a route")
        route = await self.geo.route(
            [LatLng(lat=s["lat"], lng=s["lng"]) for s in stops],
            args.mode,
        )
        payload = route.to_wire()
        payload.update(
            {
                "stops": stops,
                "start": stops[0],
                "end": stops[-1],
                "waypointCount": len(stops),
                "mode": args.mode,
            }
        )
        return payload

    async def _resolve_stop(self, position: int, ref: LocationRef) -> Dict[str, Any]:
        if isinstance(ref, Coords):
            return {
                "position": position,
                "label": ref.label or f"{ref.lat:.5f}, {ref.lng:.5f}",
                "lat": ref.lat,
                "lng": ref.lng,
            }
        try:
            result = await self.geo.geocode(ref.query)
        except GatewayError as e:
            raise ResolutionError(position, f'could not geocode "{ref.query}": {e.message}')
        if result is None:
            raise ResolutionError(position, f'no results found for "{ref.query}"')
        return {
            "position": position,
            "label": result.formatted or ref.query,
            "lat": result.lat,
            "lng": result.lng,
            "query": ref.query,
        }

    @staticmethod
    def _failure(call: ToolCall, error: str) -> ToolOutcome:
        return ToolOutcome(
            message=Message(role="tool", tool_call_id=call.id, content=json.dumps({"error": error})),
            event=ToolResultEvent(tool=call.function.name, error=error),
        )

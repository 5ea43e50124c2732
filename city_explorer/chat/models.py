import math
from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator


Role = Literal["user", "assistant", "tool"]
RouteMode = Literal["driving", "walking", "cycling"]


class FunctionCall(BaseModel):
    name: str
    arguments: str = ""


class ToolCall(BaseModel):
    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


class Message(BaseModel):
    role: Role
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ChatSession(BaseModel):
    conversation_id: str
    history: List[Message] = Field(default_factory=list)
    user_message: Message


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    message: Optional[str] = None


# --- plan_route arguments ---


class Coords(BaseModel):
    kind: Literal["coords"] = "coords"
    lat: float
    lng: float
    label: Optional[str] = None


class Place(BaseModel):
    kind: Literal["place"] = "place"
    query: str


LocationRef = Union[Coords, Place]


def _is_finite_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def parse_location(value: Any) -> LocationRef:
    """
    Turn a raw location entry into a Coords or Place. A complete, finite
    lat/lng pair wins; otherwise a non-empty query is geocoded later.
    """
    if isinstance(value, (Coords, Place)):
        return value
    if not isinstance(value, dict):
        raise ValueError("location must be an object with lat/lng or query")
    lat, lng = value.get("lat"), value.get("lng")
    query = value.get("query")
    label = query.strip() if isinstance(query, str) and query.strip() else None
    if _is_finite_number(lat) and _is_finite_number(lng):
        return Coords(lat=float(lat), lng=float(lng), label=label)
    if label:
        return Place(query=label)
    if lat is not None or lng is not None:
        if lat is None or lng is None:
            raise ValueError("lat and lng must be provided together")
        raise ValueError("lat and lng must be finite numbers")
    raise ValueError("location needs either lat/lng or a non-empty query")


# Element-level validation keeps the entry index in the error location.
Location = Annotated[LocationRef, BeforeValidator(parse_location)]


class PlanRouteArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    waypoints: Optional[List[Location]] = None
    start: Optional[Location] = None
    via: List[Location] = Field(default_factory=list)
    end: Optional[Location] = None
    mode: RouteMode = "driving"

    @field_validator("via", mode="before")
    @classmethod
    def _no_via(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: Any) -> Any:
        if value is None:
            return "driving"
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @model_validator(mode="after")
    def _check_shape(self) -> "PlanRouteArgs":
        if self.waypoints is not None:
            if len(self.waypoints) < 2:
                raise ValueError("waypoints must contain at least two locations")
        elif self.start is None or self.end is None:
            raise ValueError("provide either waypoints or both start and end")
        return self

    def locations(self) -> List[LocationRef]:
        if self.waypoints is not None:
            return list(self.waypoints)
        return [self.start, *self.via, self.end]


# --- routing / geocoding results ---


class LatLng(BaseModel):
    lat: float
    lng: float


class GeocodeResult(BaseModel):
    lat: float
    lng: float
    formatted: Optional[str] = None


class RoutePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    coordinates: List[LatLng]
    distance_meters: float = Field(alias="distanceMeters")
    duration_seconds: float = Field(alias="durationSeconds")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


# --- push channel events ---


@dataclass
class TokenEvent:
    content: str
    event: str = field(default="token", init=False)

    def payload(self) -> Dict[str, Any]:
        return {"content": self.content}


@dataclass
class ToolResultEvent:
    tool: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    event: str = field(default="tool-result", init=False)

    def payload(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"tool": self.tool}
        if self.error is not None:
            out["error"] = self.error
        else:
            out["data"] = self.data
        return out


@dataclass
class DoneEvent:
    event: str = field(default="done", init=False)

    def payload(self) -> Dict[str, Any]:
        return {}


@dataclass
class ErrorEvent:
    message: str
    event: str = field(default="error", init=False)

    def payload(self) -> Dict[str, Any]:
        return {"message": self.message}


StreamEvent = Union[TokenEvent, ToolResultEvent, DoneEvent, ErrorEvent]

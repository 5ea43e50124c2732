from typing import List, Optional
import logging
import math

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from ..chat.models import LatLng
from ..deps import get_geo_gateway
from ..errors import GatewayError
from ..services.geoapify import MODE_MAP, GeoapifyGateway


router = APIRouter()


def parse_point(raw: str, label: str) -> LatLng:
    lat_str, _, lng_str = raw.partition(",")
    try:
        lat = float(lat_str)
        lng = float(lng_str)
    except ValueError:
        raise ValueError(f'{label} must contain numeric "lat,lng"')
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise ValueError(f'{label} must contain numeric "lat,lng"')
    return LatLng(lat=lat, lng=lng)


def parse_point_list(raw: Optional[str], label: str) -> List[LatLng]:
    if not raw or not raw.strip():
        return []
    return [parse_point(segment.strip(), f"{label}[{idx}]") for idx, segment in enumerate(raw.split("|"))]


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


@router.get("")
async def plan_route(
    waypoints: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    via: Optional[str] = None,
    mode: Optional[str] = None,
    geo: GeoapifyGateway = Depends(get_geo_gateway),
):
    try:
        if waypoints and waypoints.strip():
            points = parse_point_list(waypoints, "waypoints")
        else:
            if start is None:
                raise ValueError('start must be provided as "lat,lng"')
            if end is None:
                raise ValueError('end must be provided as "lat,lng"')
            points = [parse_point(start, "start"), *parse_point_list(via, "via"), parse_point(end, "end")]
    except ValueError as e:
        return _bad_request(str(e))

    if len(points) < 2:
        return _bad_request("At least two waypoints are required")

    route_mode = (mode or "driving").strip().lower()
    if route_mode not in MODE_MAP:
        return _bad_request(f"mode must be one of {', '.join(MODE_MAP)}")

    logging.info("/route planning: %d waypoints, mode=%s", len(points), route_mode)
    try:
        payload = await geo.route(points, route_mode)
    except GatewayError as e:
        logging.error("/route request failed: %s", e.message)
        return _bad_request(e.message)
    return payload.to_wire()

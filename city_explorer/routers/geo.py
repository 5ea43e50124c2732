import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..chat.models import GeocodeResult
from ..deps import get_geo_gateway
from ..errors import GatewayError
from ..services.geoapify import GeoapifyGateway


router = APIRouter()


class GeocodeRequest(BaseModel):
    query: str = Field(..., min_length=1)


@router.post("/geocode", response_model=GeocodeResult)
async def geocode(req: GeocodeRequest, geo: GeoapifyGateway = Depends(get_geo_gateway)) -> GeocodeResult:
    try:
        result = await geo.geocode(req.query.strip())
    except GatewayError as e:
        logging.error("geocode failed for %r: %s", req.query, e.message)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=e.message,
        )
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No results")
    return result

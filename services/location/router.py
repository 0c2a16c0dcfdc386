"""
services/location/router.py
Server-side reverse geocoding so the Maps API key never ships to clients.
"""

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from config.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/location", tags=["Location"])


def parse_address(result: dict) -> dict:
    """Reduce one Google geocoding result to the fields of the address form."""
    house_number = street = area = pincode = ""
    city = settings.DEFAULT_CITY
    state = settings.DEFAULT_STATE

    for comp in result.get("address_components", []):
        types = comp.get("types", [])
        name = comp.get("long_name", "")
        if "premise" in types or "subpremise" in types:
            house_number = name
        elif "route" in types:
            street = name
        elif "sublocality_level_1" in types or "sublocality" in types:
            area = name
        elif "postal_code" in types:
            pincode = name
        elif "locality" in types:
            city = name
        elif "administrative_area_level_1" in types:
            state = name

    return {
        "line1": ", ".join(p for p in (house_number, street, area) if p),
        "pincode": pincode,
        "city": city,
        "state": state,
    }


async def _fetch_geocode(lat: float, lng: float) -> dict:
    async with httpx.AsyncClient(timeout=settings.GEOCODE_TIMEOUT_SECONDS) as client:
        response = await client.get(
            settings.GEOCODE_URL,
            params={"latlng": f"{lat},{lng}", "key": settings.GOOGLE_MAPS_API_KEY},
        )
        return response.json()


@router.get("/reverse-geocode")
async def reverse_geocode(
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
):
    """
    Proxy to the Google Geocoding API. The provider payload is returned
    as-is, with a parsed `address` added when a result was found.
    """
    if lat is None or lng is None:
        return JSONResponse(
            status_code=400,
            content={"status": "INVALID_REQUEST", "message": "Missing lat/lng"},
        )
    if not settings.GOOGLE_MAPS_API_KEY:
        logger.error("GOOGLE_MAPS_API_KEY is not configured")
        return JSONResponse(
            status_code=500,
            content={"status": "ERROR", "message": "API key missing"},
        )

    try:
        data = await _fetch_geocode(lat, lng)
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Server-side geocode error: {e}")
        return JSONResponse(status_code=500, content={"status": "ERROR", "message": str(e)})

    if data.get("status") == "OK" and data.get("results"):
        data["address"] = parse_address(data["results"][0])
    return data

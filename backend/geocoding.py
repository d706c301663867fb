"""
Geocoding Connector — OpenStreetMap lookups for the location flows.

Nominatim resolves coordinates to a place; Overpass lists nearby shops
and amenities. Lookup failures are logged and reported as "nothing
found" (None / empty list) so callers can degrade gracefully.
"""
from __future__ import annotations

import math
import re
import structlog
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import GeocodingConfig, get_settings

logger = structlog.get_logger()

EARTH_RADIUS_KM = 6371.0
ANALYSIS_COMPETITOR_LIMIT = 10
_SAFE_TAG_VALUE = re.compile(r"^[a-z0-9_]+$")


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def competition_level(count: int) -> str:
    if count < 5:
        return "Low"
    if count < 15:
        return "Medium"
    return "High"


def format_address(tags: dict[str, Any]) -> str:
    parts = [tags.get("addr:street"), tags.get("addr:housenumber"), tags.get("addr:city")]
    return ", ".join(p for p in parts if p) or "Address not available"


def analyze_competition(places: list[dict[str, Any]], location_name: Optional[str], radius_m: int) -> dict[str, Any]:
    """Summarize competitor density from a distance-sorted place list."""
    count = len(places)
    level = competition_level(count)
    nearest = places[0] if places else None
    recommendation = (
        "Great location! Low competition detected."
        if count < 5
        else "Moderate to high competition. Focus on unique value proposition."
    )
    radius_km = radius_m / 1000
    return {
        "analysis": {
            "location": location_name or "Unknown",
            "competitor_count": count,
            "competition_level": level,
            "nearest_competitor": {
                "name": nearest["name"],
                "distance": f"{nearest['distance']:.2f} km",
            } if nearest else None,
            "recommendation": recommendation,
        },
        "competitors": places[:ANALYSIS_COMPETITOR_LIMIT],
        "summary": f"Found {count} similar businesses within {radius_km:g}km. {recommendation}",
    }


class GeocodingClient:

    def __init__(self, config: GeocodingConfig = None, transport: httpx.AsyncBaseTransport = None):
        self.config = config or get_settings().geocoding
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                headers={"User-Agent": self.config.user_agent},
                timeout=self.config.timeout_seconds,
                transport=self._transport,
            )
        return self.client

    async def close(self):
        if self.client and not self.client.is_closed:
            await self.client.aclose()

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=10),
    )
    async def _request(self, method: str, url: str, **kwargs) -> Any:
        client = await self._get_client()
        response = await client.request(method, url, **kwargs)
        response.raise_for_status()
        return response.json()

    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[dict[str, Any]]:
        """Resolve coordinates to a named place (city, state, country)."""
        try:
            data = await self._request(
                "GET", self.config.reverse_url,
                params={"lat": latitude, "lon": longitude, "format": "json"},
            )
        except Exception as e:
            logger.error("reverse_geocode_failed", latitude=latitude, longitude=longitude, error=str(e))
            return None
        if not data or "error" in data:
            return None
        address = data.get("address", {})
        return {
            "city": address.get("city") or address.get("town") or address.get("village"),
            "state": address.get("state"),
            "country": address.get("country"),
            "display_name": data.get("display_name"),
        }

    def _overpass_query(self, latitude: float, longitude: float, radius: int, business_type: Optional[str]) -> str:
        around = f"(around:{radius},{latitude},{longitude})"
        kind = (business_type or "").strip().lower().replace(" ", "_")
        if kind and _SAFE_TAG_VALUE.match(kind):
            selectors = [f'["shop"="{kind}"]', f'["amenity"="{kind}"]']
        else:
            selectors = ['["shop"]', '["amenity"]']
        body = "".join(
            f"{element}{selector}{around};"
            for selector in selectors
            for element in ("node", "way")
        )
        return f"[out:json];({body});out center;"

    async def search_nearby(
        self,
        latitude: float,
        longitude: float,
        business_type: Optional[str] = None,
        radius: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Nearby shops and amenities, nearest first."""
        radius = radius or self.config.nearby_radius_m
        query = self._overpass_query(latitude, longitude, radius, business_type)
        try:
            data = await self._request(
                "POST", self.config.overpass_url,
                content=query, headers={"Content-Type": "text/plain"},
            )
        except Exception as e:
            logger.error("nearby_search_failed", latitude=latitude, longitude=longitude, error=str(e))
            return []

        places = []
        for element in data.get("elements", []):
            tags = element.get("tags", {})
            lat = element.get("lat", element.get("center", {}).get("lat"))
            lon = element.get("lon", element.get("center", {}).get("lon"))
            if lat is None or lon is None:
                continue
            places.append({
                "name": tags.get("name", "Unnamed Business"),
                "type": tags.get("shop") or tags.get("amenity"),
                "latitude": lat,
                "longitude": lon,
                "address": format_address(tags),
                "distance": haversine_km(latitude, longitude, lat, lon),
            })

        places.sort(key=lambda p: p["distance"])
        logger.info("nearby_search_done", count=len(places), radius=radius, business_type=business_type)
        return places[:self.config.max_results]

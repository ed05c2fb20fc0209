# Overview: Distance lookups for delivery fees; haversine on coordinates, maps provider otherwise.

from __future__ import annotations

import math

import httpx
from flask import current_app

from ..errors import UpstreamError


EARTH_RADIUS_KM = 6371.0


def parse_coordinates(value) -> tuple[float, float] | None:
    """Accept {"lat", "lng"} dicts or "lat,lng" strings."""
    if isinstance(value, dict):
        try:
            return float(value["lat"]), float(value["lng"])
        except (KeyError, TypeError, ValueError):
            return None
    if isinstance(value, str) and "," in value:
        lat, _, lng = value.partition(",")
        try:
            return float(lat), float(lng)
        except ValueError:
            return None
    return None


def haversine_km(a: tuple[float, float], b: tuple[float, float]) -> float:
    lat1, lng1 = map(math.radians, a)
    lat2, lng2 = map(math.radians, b)
    d_lat = lat2 - lat1
    d_lng = lng2 - lng1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


class MapsClient:
    def __init__(self, *, api_key: str, base_url: str, timeout: float = 15.0,
                 transport: httpx.BaseTransport | None = None):
        self.api_key = api_key
        self.base_url = base_url
        self._http = httpx.Client(timeout=timeout, transport=transport)

    @classmethod
    def from_config(cls, config) -> "MapsClient":
        return cls(
            api_key=config["MAPS_API_KEY"],
            base_url=config["MAPS_BASE_URL"],
            timeout=config["HTTP_TIMEOUT_SECONDS"],
        )

    def distance_km(self, origin: str, destination: str) -> float:
        try:
            response = self._http.get(self.base_url, params={
                "origins": origin,
                "destinations": destination,
                "key": self.api_key,
            })
            response.raise_for_status()
            element = response.json()["rows"][0]["elements"][0]
            return element["distance"]["value"] / 1000.0
        except (httpx.HTTPError, KeyError, IndexError, TypeError) as exc:
            raise UpstreamError("Failed to calculate delivery distance") from exc

    def close(self) -> None:
        self._http.close()


def _address_text(address) -> str | None:
    if isinstance(address, str):
        return address
    if isinstance(address, dict):
        return address.get("formattedAddress") or address.get("address")
    return None


def distance_between(customer_address, store_address) -> float | None:
    """
    Distance in km between a customer address and a store address.

    Uses coordinates when both sides have them, the maps provider when both
    sides have address text, and None when neither works.
    """
    origin = parse_coordinates((customer_address or {}).get("coordinates") if isinstance(customer_address, dict) else customer_address)
    dest = parse_coordinates((store_address or {}).get("coordinates") if isinstance(store_address, dict) else store_address)
    if origin and dest:
        return haversine_km(origin, dest)

    origin_text = _address_text(customer_address)
    dest_text = _address_text(store_address)
    maps = current_app.extensions.get("maps_client")
    if origin_text and dest_text and maps is not None and maps.api_key:
        return maps.distance_km(origin_text, dest_text)
    return None


def find_nearest_store(customer_address, stores: list[dict]) -> dict | None:
    """Nearest store whose deliveryRange (km) covers the customer's coordinates."""
    origin = parse_coordinates((customer_address or {}).get("coordinates") if isinstance(customer_address, dict) else customer_address)
    if origin is None:
        return None

    best = None
    best_distance = None
    for store_doc in stores:
        coords = parse_coordinates(((store_doc.get("address") or {}).get("coordinates")))
        if coords is None:
            continue
        distance = haversine_km(origin, coords)
        if distance > float(store_doc.get("deliveryRange") or 0):
            continue
        if best_distance is None or distance < best_distance:
            best, best_distance = store_doc, distance
    return best

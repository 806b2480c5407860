from __future__ import annotations

import math
from typing import Iterable, List, Optional, Tuple, TypeVar

from ..schemas import Coordinates, ResolvedOrigin


EARTH_RADIUS_KM = 6371.0
MIN_RADIUS_KM = 1.0
MAX_RADIUS_KM = 200.0

LOCATION_DENIED_MESSAGE = "Location access denied. Enable location for better matches."

T = TypeVar("T")


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lng / 2) ** 2
    )
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_from(
    origin: Optional[Coordinates], lat: Optional[float], lng: Optional[float]
) -> Optional[float]:
    if origin is None or lat is None or lng is None:
        return None
    return haversine_km(origin.lat, origin.lng, lat, lng)


def clamp_radius(radius_km: Optional[float], default: float) -> float:
    if radius_km is None:
        return default
    try:
        value = float(radius_km)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(value):
        return default
    return min(MAX_RADIUS_KM, max(MIN_RADIUS_KM, value))


def annotate_distances(rows: Iterable[T], origin: Optional[Coordinates]) -> List[T]:
    """Copy rows with ``distance_km`` measured from ``origin``.

    Rows need ``location_lat`` / ``location_lng`` attributes. Without an
    origin or row coordinates the distance is ``None``.
    """
    annotated = []
    for row in rows:
        distance = distance_from(
            origin, getattr(row, "location_lat", None), getattr(row, "location_lng", None)
        )
        annotated.append(row.model_copy(update={"distance_km": distance}))
    return annotated


def within_radius(rows: Iterable[T], radius_km: float) -> List[T]:
    """Unknown distances are kept; radius filtering never hides them."""
    return [
        row
        for row in rows
        if getattr(row, "distance_km", None) is None or row.distance_km <= radius_km
    ]


def coordinates_or_none(lat: Optional[float], lng: Optional[float]) -> Optional[Coordinates]:
    if lat is None or lng is None:
        return None
    try:
        return Coordinates(lat=lat, lng=lng)
    except ValueError:
        return None


def resolve_origin(
    *,
    listing: Optional[Tuple[Optional[float], Optional[float]]] = None,
    profile: Optional[Tuple[Optional[float], Optional[float]]] = None,
    browser: Optional[Tuple[Optional[float], Optional[float]]] = None,
) -> Tuple[Optional[ResolvedOrigin], Optional[str]]:
    """Pick the first usable position: listing, then profile, then browser."""
    for source, pair in (("listing", listing), ("profile", profile), ("browser", browser)):
        if not pair:
            continue
        coords = coordinates_or_none(*pair)
        if coords is not None:
            return ResolvedOrigin(coordinates=coords, source=source), None
    return None, LOCATION_DENIED_MESSAGE

"""Map pins and viewport for the discover page map widget."""

from __future__ import annotations

from typing import Iterable, List, Optional

from ..schemas import Coordinates, MapPin, MapViewport, ProduceListing


CATEGORY_COLORS = {
    "fruit": "#ef4444",
    "vegetable": "#22c55e",
    "legume": "#f97316",
    "grain": "#eab308",
    "cash_crop": "#f59e0b",
    "poultry": "#8b5cf6",
    "other": "#10b981",
}

DEFAULT_CENTER = Coordinates(lat=0.3476, lng=32.5825)
ZOOM_WITH_USER = 11
ZOOM_DEFAULT = 8
ZOOM_FOCUS = 14


def category_color(category: Optional[str]) -> str:
    return CATEGORY_COLORS.get((category or "").lower(), CATEGORY_COLORS["other"])


def maps_link(lat: float, lng: float) -> str:
    return f"https://maps.google.com/?q={lat},{lng}"


def build_pins(rows: Iterable[ProduceListing]) -> List[MapPin]:
    """One pin per listing with coordinates; rows without them are skipped."""
    pins = []
    for row in rows:
        if row.location_lat is None or row.location_lng is None:
            continue
        pins.append(
            MapPin(
                id=row.id,
                crop_name=row.crop_name,
                crop_category=row.crop_category,
                variety=row.variety,
                quality=row.quality,
                quantity=row.quantity,
                unit=row.unit,
                price_per_unit=row.price_per_unit,
                farmer_name=row.farmer_name,
                farmer_location=row.farmer_location,
                lat=row.location_lat,
                lng=row.location_lng,
                google_maps_link=row.google_maps_link
                or maps_link(row.location_lat, row.location_lng),
                color=category_color(row.crop_category),
                distance_km=row.distance_km,
            )
        )
    return pins


def viewport(
    user: Optional[Coordinates],
    *,
    focus: Optional[Coordinates] = None,
    fallback: Coordinates = DEFAULT_CENTER,
) -> MapViewport:
    """Pin click or my-location focus wins, then the user's position."""
    if focus is not None:
        return MapViewport(center=focus, zoom=ZOOM_FOCUS)
    if user is not None:
        return MapViewport(center=user, zoom=ZOOM_WITH_USER)
    return MapViewport(center=fallback, zoom=ZOOM_DEFAULT)

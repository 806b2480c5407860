from __future__ import annotations

from .geo import annotate_distances, clamp_radius, haversine_km, resolve_origin, within_radius
from .listings import filter_listings, sort_listings
from .normalizers import normalize_demand, normalize_listing, normalize_order, safe_number
from .realtime_sync import apply_change, apply_detail_change


__all__ = [
    "annotate_distances",
    "apply_change",
    "apply_detail_change",
    "clamp_radius",
    "filter_listings",
    "haversine_km",
    "normalize_demand",
    "normalize_listing",
    "normalize_order",
    "resolve_origin",
    "safe_number",
    "sort_listings",
    "within_radius",
]

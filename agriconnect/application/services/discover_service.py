from __future__ import annotations

from typing import Optional

from ...domain.geo import annotate_distances, clamp_radius, coordinates_or_none, within_radius
from ...domain.listings import filter_listings
from ...domain.map_view import build_pins, viewport
from ...infra.backend_client import BackendClient
from ...infra.backend_errors import BackendError
from ...infra.config import get_config
from ...observability.logging_utils import log_event, log_failure
from ...schemas import Coordinates, DiscoverPage, ListingCriteria
from .listing_service import load_available


DEFAULT_RADIUS_KM = 20.0
LOCATION_UNAVAILABLE = "Unable to get location. Using default view."


async def discover(
    backend: BackendClient,
    criteria: ListingCriteria,
    *,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius_km: Optional[float] = None,
    focus_lat: Optional[float] = None,
    focus_lng: Optional[float] = None,
) -> DiscoverPage:
    """Map page state: pins within the radius of the browser position.

    Without a browser position every listing with coordinates is shown and
    the map falls back to the configured default centre.
    """
    cfg = get_config()
    radius = clamp_radius(radius_km, DEFAULT_RADIUS_KM)
    user = coordinates_or_none(lat, lng)
    fallback = Coordinates(lat=cfg.default_map_lat, lng=cfg.default_map_lng)
    view = viewport(user, focus=coordinates_or_none(focus_lat, focus_lng), fallback=fallback)
    location_error = None if user is not None else LOCATION_UNAVAILABLE

    try:
        rows = await load_available(backend, with_coordinates=True)
    except BackendError as exc:
        log_failure("discover_failed", kind=exc.kind.value, error=exc.message)
        return DiscoverPage(
            success=False,
            message=exc.message,
            location_error=location_error,
            radius_km=radius,
            viewport=view,
        )

    rows = annotate_distances(rows, user)
    if user is not None:
        rows = within_radius(rows, radius)
    if criteria.sort == "newest" and user is not None:
        criteria = criteria.model_copy(update={"sort": "distance"})
    pins = build_pins(filter_listings(rows, criteria))
    log_event("discover", pins=len(pins), radius_km=radius, located=user is not None)
    return DiscoverPage(
        location_error=location_error,
        radius_km=radius,
        viewport=view,
        pins=pins,
        count=len(pins),
    )

"""Farmer side of the marketplace: match open buyer demands and send offers."""

from __future__ import annotations

import math
from typing import List, Optional, Sequence

from ...domain.geo import clamp_radius, distance_from, resolve_origin
from ...domain.normalizers import normalize_demand, normalize_listing
from ...domain.stats import full_name
from ...infra.backend_client import BackendClient
from ...infra.backend_errors import BackendError
from ...observability.logging_utils import log_event, log_failure
from ...schemas import (
    Account,
    AuthSession,
    BuyerDemand,
    DemandMatch,
    DemandOffer,
    FormResult,
    MarketplacePage,
    ProduceListing,
    ResolvedOrigin,
)


DEFAULT_RADIUS_KM = 30.0
LOAD_FAILED = "Failed to load marketplace data"
SELECT_LISTING = "Please select a listing first"
OFFER_SENT = "Offer sent successfully!"
OFFER_FAILED = "Failed to send offer"


def _demand_matches_query(demand: BuyerDemand, query: str) -> bool:
    needle = (query or "").strip().lower()
    if not needle:
        return True
    return (
        needle in demand.crop_name.lower()
        or needle in demand.buyer_name.lower()
        or needle in (demand.location_text or "").lower()
    )


def match_demands(
    demands: Sequence[BuyerDemand],
    listings: Sequence[ProduceListing],
    origin: Optional[ResolvedOrigin],
    *,
    query: str = "",
    radius_km: float = DEFAULT_RADIUS_KM,
) -> List[DemandMatch]:
    """Demands near ``origin`` for crops the farmer lists, nearest first.

    The crop filter is skipped for a farmer with no listings; demands with
    an unknown distance always pass the radius check and sort last.
    """
    coords = origin.coordinates if origin else None
    crops = {listing.crop_name.lower() for listing in listings}
    matches = []
    for demand in demands:
        distance = distance_from(coords, demand.location_lat, demand.location_lng)
        if not _demand_matches_query(demand, query):
            continue
        if distance is not None and distance > radius_km:
            continue
        if crops and demand.crop_name.lower() not in crops:
            continue
        matches.append(DemandMatch(demand=demand, distance_km=distance))
    matches.sort(key=lambda match: math.inf if match.distance_km is None else match.distance_km)
    return matches


def select_listing(
    listings: Sequence[ProduceListing], listing_id: Optional[str]
) -> Optional[ProduceListing]:
    for listing in listings:
        if listing.id == listing_id:
            return listing
    return listings[0] if listings else None


def build_offer(
    demand_id: str, listing: ProduceListing, farmer_id: str, farmer_name: str = ""
) -> DemandOffer:
    return DemandOffer(
        demand_id=demand_id,
        listing_id=listing.id,
        farmer_id=farmer_id,
        farmer_name=farmer_name or "Farmer",
        crop_name=listing.crop_name,
        offered_quantity=listing.quantity,
        offered_price_per_unit=listing.price_per_unit,
    )


async def load_farmer_listings(
    backend: BackendClient, session: AuthSession
) -> List[ProduceListing]:
    query = (
        backend.table("farm_produce")
        .select("*")
        .eq("farmer_id", session.user.id)
        .eq("is_available", True)
        .order("listed_at", ascending=False)
    )
    rows = await backend.fetch(query, access_token=session.access_token)
    return [normalize_listing(row) for row in rows]


async def load_open_demands(
    backend: BackendClient, *, access_token: Optional[str] = None
) -> List[BuyerDemand]:
    query = (
        backend.table("buyer_demands")
        .select("*")
        .eq("status", "open")
        .order("created_at", ascending=False)
    )
    rows = await backend.fetch(query, access_token=access_token)
    return [normalize_demand(row) for row in rows]


async def marketplace(
    backend: BackendClient,
    session: Optional[AuthSession],
    account: Optional[Account],
    *,
    listing_id: Optional[str] = None,
    query: str = "",
    radius_km: Optional[float] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
) -> MarketplacePage:
    radius = clamp_radius(radius_km, DEFAULT_RADIUS_KM)
    token = session.access_token if session else None
    try:
        listings = await load_farmer_listings(backend, session) if session else []
        demands = await load_open_demands(backend, access_token=token)
    except BackendError as exc:
        log_failure("marketplace_failed", kind=exc.kind.value, error=exc.message)
        return MarketplacePage(
            success=False, message=LOAD_FAILED, signed_in=session is not None, radius_km=radius
        )

    selected = select_listing(listings, listing_id)
    origin, location_error = resolve_origin(
        listing=(selected.location_lat, selected.location_lng) if selected else None,
        profile=(account.location_lat, account.location_lng) if account else None,
        browser=(lat, lng),
    )
    matches = match_demands(demands, listings, origin, query=query, radius_km=radius)
    log_event(
        "marketplace",
        listings=len(listings),
        demands=len(demands),
        matches=len(matches),
        origin=origin.source if origin else None,
    )
    return MarketplacePage(
        signed_in=session is not None,
        listings=listings,
        selected_listing_id=selected.id if selected else None,
        origin=origin,
        location_error=location_error,
        radius_km=radius,
        demands=matches,
    )


async def send_offer(
    backend: BackendClient,
    session: Optional[AuthSession],
    account: Optional[Account],
    demand_id: str,
    listing_id: Optional[str],
) -> FormResult:
    """Insert a ``demand_offers`` row; repeated sends create repeated offers."""
    if session is None:
        return FormResult(success=False, message="Please login to send offers", redirect="/login")
    try:
        listings = await load_farmer_listings(backend, session)
    except BackendError as exc:
        log_failure("offer_listing_lookup_failed", kind=exc.kind.value)
        return FormResult(success=False, message=OFFER_FAILED)
    listing = select_listing(listings, listing_id)
    if listing is None or (listing_id and listing.id != listing_id):
        return FormResult(success=False, message=SELECT_LISTING)

    offer = build_offer(demand_id, listing, session.user.id, full_name(account))
    try:
        await backend.insert(
            "demand_offers", [offer.model_dump()], access_token=session.access_token
        )
    except BackendError as exc:
        log_failure("offer_failed", demand_id=demand_id, kind=exc.kind.value)
        return FormResult(success=False, message=OFFER_FAILED)
    log_event("offer_sent", demand_id=demand_id, listing_id=listing.id)
    return FormResult(success=True, message=OFFER_SENT, data={"offer": offer.model_dump()})

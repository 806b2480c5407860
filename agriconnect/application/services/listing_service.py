"""Listing pages: browse, product detail, favourites and the farmer's add-produce form."""

from __future__ import annotations

import secrets
import time
from datetime import datetime
from typing import List, Optional

from ...domain import messages
from ...domain.contact import contact_links
from ...domain.formatting import format_price, listed_labels, relative_date
from ...domain.geo import annotate_distances
from ...domain.listings import filter_listings
from ...domain.normalizers import normalize_listing
from ...domain.stats import full_name, safe_role
from ...domain.validation import (
    gps_location_text,
    parse_distance,
    validate_image,
    validate_listing,
)
from ...infra.backend_client import BackendClient
from ...infra.backend_errors import BackendError
from ...infra.config import get_config
from ...infra.favorites_store import FavoritesStore
from ...observability.logging_utils import log_event, log_failure
from ...schemas import (
    Account,
    AuthSession,
    Coordinates,
    FormResult,
    ImageUpload,
    ListingCriteria,
    ListingDetailPage,
    ListingForm,
    ListingsPage,
    ProduceCategory,
    ProduceListing,
)


LISTING_TABLE = "farm_produce"
SIMILAR_LIMIT = 4
LOAD_FAILED = "Failed to load products."
NOT_FOUND = "Product not found or has been removed"
DELETED = "Product has been deleted"


def google_maps_link(lat: Optional[float], lng: Optional[float]) -> Optional[str]:
    if lat is None or lng is None:
        return None
    return f"https://www.google.com/maps?q={lat},{lng}"


def image_path(farmer_id: str, filename: str, *, now_ms: Optional[int] = None) -> str:
    ext = (filename.rsplit(".", 1)[-1] if "." in filename else "jpg").lower() or "jpg"
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{farmer_id}/produce_{millis}_{secrets.token_hex(6)}.{ext}"


async def load_available(
    backend: BackendClient,
    *,
    limit: Optional[int] = None,
    with_coordinates: bool = False,
) -> List[ProduceListing]:
    query = (
        backend.table(LISTING_TABLE)
        .select("*")
        .eq("is_available", True)
        .order("listed_at", ascending=False)
    )
    if with_coordinates:
        query.not_null("location_lat").not_null("location_lng")
    if limit:
        query.limit(limit)
    rows = await backend.fetch(query)
    return [normalize_listing(row) for row in rows]


async def browse(
    backend: BackendClient,
    criteria: ListingCriteria,
    *,
    origin: Optional[Coordinates] = None,
    limit: Optional[int] = None,
) -> ListingsPage:
    """Home/products page state: available rows, newest first, then filtered."""
    limit = limit or get_config().home_listing_limit
    try:
        rows = await load_available(backend, limit=limit)
    except BackendError as exc:
        log_failure("browse_failed", kind=exc.kind.value, error=exc.message)
        return ListingsPage(success=False, message=exc.message or LOAD_FAILED, criteria=criteria)
    if origin is not None:
        rows = annotate_distances(rows, origin)
    listings = filter_listings(rows, criteria)
    log_event("browse", total=len(rows), shown=len(listings), sort=criteria.sort)
    return ListingsPage(
        criteria=criteria,
        listings=listings,
        count=len(listings),
        listed_ago=listed_labels(listings),
    )


async def fetch_listing(backend: BackendClient, listing_id: str) -> Optional[ProduceListing]:
    row = await backend.fetch_one(backend.table(LISTING_TABLE).select("*").eq("id", listing_id))
    return normalize_listing(row) if row else None


async def similar_listings(backend: BackendClient, listing: ProduceListing) -> List[ProduceListing]:
    query = (
        backend.table(LISTING_TABLE)
        .select("*")
        .eq("is_available", True)
        .eq("crop_category", listing.crop_category)
        .neq("id", listing.id)
        .order("listed_at", ascending=False)
        .limit(SIMILAR_LIMIT)
    )
    rows = await backend.fetch(query)
    return [normalize_listing(row) for row in rows if str(row.get("id")) != listing.id]


def detail_page(
    listing: Optional[ProduceListing],
    similar: List[ProduceListing],
    *,
    is_favorite: bool = False,
    now: Optional[datetime] = None,
) -> ListingDetailPage:
    if listing is None:
        return ListingDetailPage(success=False, message=NOT_FOUND)
    return ListingDetailPage(
        listing=listing,
        similar=similar,
        contact=contact_links(listing.farmer_phone, get_config().default_country_code),
        is_favorite=is_favorite,
        listed_relative=relative_date(listing.listed_at, now),
        price_label=f"{format_price(listing.price_per_unit)}/{listing.unit}",
        in_stock=listing.is_available and listing.quantity > 0,
    )


async def detail(
    backend: BackendClient,
    listing_id: str,
    *,
    favorites: Optional[FavoritesStore] = None,
    owner_id: Optional[str] = None,
) -> ListingDetailPage:
    try:
        listing = await fetch_listing(backend, listing_id)
    except BackendError as exc:
        log_failure("detail_failed", listing_id=listing_id, kind=exc.kind.value)
        listing = None
    if listing is None:
        return detail_page(None, [])
    try:
        similar = await similar_listings(backend, listing)
    except BackendError as exc:
        log_failure("similar_failed", listing_id=listing_id, kind=exc.kind.value)
        similar = []
    is_favorite = bool(
        favorites is not None and owner_id and favorites.contains(owner_id, listing.id)
    )
    return detail_page(listing, similar, is_favorite=is_favorite)


def toggle_favorite(favorites: FavoritesStore, owner_id: str, listing_id: str) -> bool:
    state = favorites.toggle(owner_id, listing_id)
    log_event("favorite_toggled", listing_id=listing_id, favorite=state)
    return state


async def favorite_listings(
    backend: BackendClient, favorites: FavoritesStore, owner_id: str
) -> ListingsPage:
    wanted = set(favorites.list(owner_id))
    if not wanted:
        return ListingsPage()
    try:
        rows = await load_available(backend, limit=get_config().home_listing_limit)
    except BackendError as exc:
        return ListingsPage(success=False, message=exc.message or LOAD_FAILED)
    listings = [row for row in rows if row.id in wanted]
    return ListingsPage(
        listings=listings, count=len(listings), listed_ago=listed_labels(listings)
    )


async def load_categories(backend: BackendClient) -> List[ProduceCategory]:
    query = (
        backend.table("produce_categories")
        .select("id,name,description,is_active")
        .eq("is_active", True)
        .order("name")
    )
    rows = await backend.fetch(query)
    return [ProduceCategory.model_validate(row) for row in rows]


async def upload_image(
    backend: BackendClient, session: AuthSession, image: ImageUpload
) -> str:
    path = image_path(session.user.id, image.filename)
    bucket = backend.settings.produce_bucket
    await backend.upload(
        bucket,
        path,
        image.data,
        content_type=image.content_type or "image/jpeg",
        upsert=True,
        access_token=session.access_token,
    )
    return backend.public_url(bucket, path)


def build_record(
    form: ListingForm,
    account: Account,
    farmer_id: str,
    quantity: float,
    price: float,
    photo: Optional[str],
) -> dict:
    record = {
        "farmer_id": farmer_id,
        "farmer_name": full_name(account),
        "farmer_location": form.farmer_location.strip(),
        "farmer_phone": account.phone_number,
        "crop_name": form.crop_name.strip(),
        "variety": form.variety.strip() or None,
        "quality": form.quality,
        "quantity": round(quantity, 2),
        "unit": form.unit,
        "price_per_unit": price,
        "distance_km": parse_distance(form.distance_km)[1],
        "location_lat": form.location_lat,
        "location_lng": form.location_lng,
        "google_maps_link": google_maps_link(form.location_lat, form.location_lng),
        "available_from": form.available_from.isoformat() if form.available_from else None,
        "is_available": True,
        "photo": photo,
        "description": form.description.strip() or None,
    }
    if form.category_id is not None:
        record["category_id"] = form.category_id
    return record


async def create_listing(
    backend: BackendClient,
    session: Optional[AuthSession],
    account: Optional[Account],
    form: ListingForm,
    image: Optional[ImageUpload] = None,
) -> FormResult:
    if session is None or account is None:
        return FormResult(success=False, message="User not authenticated. Please sign in again.")
    if safe_role(account.role) != "farmer":
        return FormResult(success=False, message="Only farmers can add products.")

    if not form.farmer_location.strip():
        form = form.model_copy(
            update={"farmer_location": gps_location_text(form.location_lat, form.location_lng)}
        )
    error, quantity, price = validate_listing(form)
    if error:
        return FormResult(success=False, message=error)
    if image is not None:
        image_error = validate_image(image, get_config().max_image_bytes)
        if image_error:
            return FormResult(success=False, message=image_error)

    try:
        photo = await upload_image(backend, session, image) if image is not None else None
        record = build_record(form, account, session.user.id, quantity, price, photo)
        try:
            rows = await backend.insert(
                LISTING_TABLE, [record], access_token=session.access_token
            )
        except BackendError as exc:
            log_failure("listing_insert_failed", kind=exc.kind.value, code=exc.code)
            return FormResult(success=False, message=messages.listing_error_message(exc))
    except Exception as exc:
        log_failure("listing_create_unexpected", error=str(exc))
        return FormResult(
            success=False,
            message=messages.unexpected_error_message(exc, "Failed to save product"),
        )

    log_event("listing_created", crop=record["crop_name"], has_photo=photo is not None)
    return FormResult(
        success=True,
        message="Product added successfully",
        data={"listing": rows[0] if rows else record},
    )


async def set_availability(
    backend: BackendClient,
    session: Optional[AuthSession],
    listing_id: str,
    available: bool,
) -> FormResult:
    if session is None:
        return FormResult(success=False, message="User not authenticated. Please sign in again.")
    query = (
        backend.table(LISTING_TABLE)
        .eq("id", listing_id)
        .eq("farmer_id", session.user.id)
    )
    try:
        rows = await backend.update(
            query, {"is_available": available}, access_token=session.access_token
        )
    except BackendError as exc:
        return FormResult(success=False, message=messages.listing_error_message(exc))
    if not rows:
        return FormResult(success=False, message=NOT_FOUND)
    return FormResult(success=True, data={"listing": rows[0]})

from __future__ import annotations

from typing import List, Optional

from ...domain.normalizers import normalize_listing, normalize_order
from ...domain.stats import display_name, full_name, initials, profile_stats, safe_role
from ...infra.backend_client import BackendClient
from ...infra.backend_errors import BackendError
from ...observability.logging_utils import log_event, log_failure
from ...schemas import Account, AuthSession, OrderMatch, ProduceListing, ProfilePage
from .auth_service import fetch_account_by_email
from .listing_service import load_categories


PROFILE_NOT_FOUND = "Profile not found. Please contact support."
NO_EMAIL = "No email found in session."
PRODUCTS_FAILED = "Failed to load products. Please try again."
ORDERS_FAILED = "Failed to load your orders."
BUYER_ORDER_LIMIT = 300


async def load_account(
    backend: BackendClient, session: Optional[AuthSession]
) -> Optional[Account]:
    """Profile row for the signed-in user, or ``None`` for guests and lookups that fail."""
    email = ((session.user.email if session else None) or "").strip().lower()
    if not email:
        return None
    try:
        return await fetch_account_by_email(backend, email, access_token=session.access_token)
    except BackendError as exc:
        log_failure("account_lookup_failed", kind=exc.kind.value)
        return None


async def _farmer_listings(backend: BackendClient, session: AuthSession) -> List[ProduceListing]:
    query = (
        backend.table("farm_produce")
        .select("*")
        .eq("farmer_id", session.user.id)
        .order("listed_at", ascending=False)
    )
    rows = await backend.fetch(query, access_token=session.access_token)
    return [normalize_listing(row) for row in rows]


async def _farmer_orders(
    backend: BackendClient, session: AuthSession, farmer_name: str
) -> List[OrderMatch]:
    # farmer_orders has no farmer_id column
    query = (
        backend.table("farmer_orders")
        .select("*")
        .eq("farmer_name", farmer_name)
        .order("created_at", ascending=False)
    )
    rows = await backend.fetch(query, access_token=session.access_token)
    return [normalize_order(row) for row in rows]


async def _buyer_orders(backend: BackendClient, session: AuthSession) -> List[OrderMatch]:
    query = (
        backend.table("market_matches")
        .select(
            "id,listing_id,buyer_id,buyer_name,farmer_name,crop_name,quantity_kg,"
            "agreed_price_per_kg,distance_km,quality,status,created_at"
        )
        .eq("buyer_id", session.user.id)
        .order("created_at", ascending=False)
        .limit(BUYER_ORDER_LIMIT)
    )
    rows = await backend.fetch(query, access_token=session.access_token)
    return [normalize_order(row) for row in rows]


async def profile(backend: BackendClient, session: Optional[AuthSession]) -> ProfilePage:
    try:
        categories = await load_categories(backend)
    except BackendError as exc:
        log_failure("categories_failed", kind=exc.kind.value)
        categories = []

    if session is None:
        return ProfilePage(categories=categories)
    if not (session.user.email or "").strip():
        return ProfilePage(success=False, message=NO_EMAIL, signed_in=True, categories=categories)

    account = await load_account(backend, session)
    if account is None:
        return ProfilePage(
            success=False,
            message=PROFILE_NOT_FOUND,
            signed_in=True,
            categories=categories,
        )

    role = safe_role(account.role)
    page = ProfilePage(
        signed_in=True,
        account=account,
        role=role,
        display_name=display_name(account, role),
        initials=initials(account),
        categories=categories,
        message="Data loaded",
    )
    if role == "farmer":
        try:
            page.listings = await _farmer_listings(backend, session)
        except BackendError as exc:
            log_failure("profile_listings_failed", kind=exc.kind.value)
            page.success, page.message = False, PRODUCTS_FAILED
        try:
            page.farmer_orders = await _farmer_orders(backend, session, full_name(account))
        except BackendError as exc:
            log_failure("profile_farmer_orders_failed", kind=exc.kind.value)
    elif role == "buyer":
        try:
            page.buyer_orders = await _buyer_orders(backend, session)
        except BackendError as exc:
            log_failure("profile_orders_failed", kind=exc.kind.value)
            page.success, page.message = False, ORDERS_FAILED

    page.stats = profile_stats(page.listings, page.buyer_orders)
    log_event("profile", role=role, listings=len(page.listings))
    return page

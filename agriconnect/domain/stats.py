"""Leaderboards for the trending page and the profile page totals."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence

from ..schemas import (
    Account,
    BuyerDemand,
    CountStat,
    OrderMatch,
    ProduceListing,
    ProfileStats,
    TrendingSnapshot,
)
from .normalizers import safe_number


CATEGORY_ICONS = {
    "fruit": "🍎",
    "vegetable": "🥦",
    "grain": "🌾",
    "poultry": "🐔",
    "cash_crop": "💰",
    "legume": "🥜",
    "other": "🌱",
}

ROLES = ("admin", "farmer", "buyer", "logistics", "finance", "guest")
TIME_RANGES = ("24h", "7d", "30d")

NEW_ARRIVAL_WINDOW = timedelta(days=7)
NEW_ARRIVALS_LIMIT = 8
PREMIUM_LIMIT = 8
TOP_CATEGORIES_LIMIT = 6
TOP_FARMERS_LIMIT = 5
TOP_CROPS_LIMIT = 6
TOP_DEMANDS_LIMIT = 6


def category_icon(category: Optional[str]) -> str:
    return CATEGORY_ICONS.get((category or "").lower(), CATEGORY_ICONS["other"])


def count_top(keys: Iterable[str], limit: int) -> List[CountStat]:
    """Descending by count; ties keep the order keys were first seen."""
    counts = Counter(key for key in keys if key)
    # Counter preserves insertion order and sorted() is stable
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [CountStat(key=key, count=count) for key, count in ranked[:limit]]


def build_trending(
    listings: Sequence[ProduceListing],
    demands: Sequence[BuyerDemand],
    *,
    now: Optional[datetime] = None,
    time_range: str = "7d",
) -> TrendingSnapshot:
    current = now or datetime.now(timezone.utc)
    cutoff = current - NEW_ARRIVAL_WINDOW
    arrivals = [
        row for row in listings if row.listed_at is not None and row.listed_at > cutoff
    ]
    premium = [row for row in listings if row.quality == "top"]
    categories = [
        stat.model_copy(update={"icon": category_icon(stat.key)})
        for stat in count_top((row.crop_category for row in listings), TOP_CATEGORIES_LIMIT)
    ]
    open_demands = (row.crop_name for row in demands if row.status == "open")
    return TrendingSnapshot(
        time_range=time_range if time_range in TIME_RANGES else "7d",
        new_arrivals=arrivals[:NEW_ARRIVALS_LIMIT],
        premium=premium[:PREMIUM_LIMIT],
        top_categories=categories,
        top_farmers=count_top((row.farmer_name for row in listings), TOP_FARMERS_LIMIT),
        top_crops=count_top((row.crop_name for row in listings), TOP_CROPS_LIMIT),
        top_demands=count_top(open_demands, TOP_DEMANDS_LIMIT),
    )


def safe_role(role: Optional[str]) -> str:
    value = str(role or "guest").strip().lower()
    return value if value in ROLES else "guest"


def full_name(account: Optional[Account]) -> str:
    if account is None:
        return ""
    first = (account.first_name or "").strip()
    last = (account.last_name or "").strip()
    return f"{first} {last}".strip()


def display_name(account: Optional[Account], role: str) -> str:
    return full_name(account) or ("Guest" if role == "guest" else "Unnamed user")


def initials(account: Optional[Account]) -> str:
    if account is None:
        return "G"
    first = (account.first_name or "").strip()[:1]
    last = (account.last_name or "").strip()[:1]
    out = (first + last).upper()
    return out or (account.email or "").strip()[:1].upper() or "G"


def profile_stats(
    listings: Sequence[ProduceListing], buyer_orders: Sequence[OrderMatch]
) -> ProfileStats:
    total_value = sum(
        safe_number(row.price_per_unit) * safe_number(row.quantity) for row in listings
    )
    total_quantity = sum(safe_number(row.quantity) for row in listings)
    spend = sum(
        safe_number(order.quantity_kg) * safe_number(order.agreed_price_per_kg)
        for order in buyer_orders
    )
    return ProfileStats(
        total_value=total_value,
        active_listings=sum(1 for row in listings if row.is_available),
        average_price=total_value / total_quantity if total_quantity else 0.0,
        buyer_spend=spend,
    )

import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..schemas import BuyerDemand, OrderMatch, ProduceListing


def safe_number(value: Any, fallback: Optional[float] = 0.0) -> Optional[float]:
    """Coerce to a finite float, otherwise return ``fallback``."""
    if value is None or isinstance(value, bool):
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    return number if math.isfinite(number) else fallback


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def timestamp_key(value: Optional[datetime]) -> float:
    """Epoch seconds for sorting; missing timestamps sort as the epoch."""
    if value is None:
        return 0.0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _text(value: Any, default: Optional[str]) -> Optional[str]:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def _lower(value: Any, default: str) -> str:
    text = _text(value, None)
    return text.lower() if text else default


def _optional_float(value: Any) -> Optional[float]:
    return safe_number(value, None)


def normalize_listing(row: Dict[str, Any]) -> ProduceListing:
    """Apply defaults to a raw farm_produce row.

    Nullable text fields get display defaults, quality and category are
    lower-cased and numbers that fail to parse become zero.
    """
    category_id = row.get("category_id")
    try:
        category_id = int(category_id) if category_id is not None else None
    except (TypeError, ValueError):
        category_id = None
    return ProduceListing(
        id=str(row.get("id")),
        farmer_id=_text(row.get("farmer_id"), None),
        farmer_name=_text(row.get("farmer_name"), "Unknown Farmer"),
        farmer_location=_text(row.get("farmer_location"), "Uganda"),
        farmer_phone=_text(row.get("farmer_phone"), None),
        crop_name=_text(row.get("crop_name"), "Produce"),
        crop_category=_lower(row.get("crop_category"), "other"),
        category_id=category_id,
        variety=_text(row.get("variety"), None),
        quality=_lower(row.get("quality"), "standard"),
        quantity=safe_number(row.get("quantity"), 0.0),
        unit=_text(row.get("unit"), "kg"),
        price_per_unit=safe_number(row.get("price_per_unit"), 0.0),
        distance_km=_optional_float(row.get("distance_km")),
        location_lat=_optional_float(row.get("location_lat")),
        location_lng=_optional_float(row.get("location_lng")),
        google_maps_link=_text(row.get("google_maps_link"), None),
        available_from=_text(row.get("available_from"), None),
        is_available=bool(row.get("is_available")),
        listed_at=parse_timestamp(row.get("listed_at")),
        photo=_text(row.get("photo"), None),
        description=_text(row.get("description"), None),
    )


def normalize_demand(row: Dict[str, Any]) -> BuyerDemand:
    return BuyerDemand(
        id=str(row.get("id")),
        buyer_id=_text(row.get("buyer_id"), None),
        buyer_name=_text(row.get("buyer_name"), "Buyer"),
        crop_name=_text(row.get("crop_name"), ""),
        preferred_quality=_text(row.get("preferred_quality"), None),
        quantity=safe_number(row.get("quantity"), 0.0),
        unit=_text(row.get("unit"), "kg"),
        target_price_per_unit=safe_number(row.get("target_price_per_unit"), 0.0),
        radius_km=_optional_float(row.get("radius_km")),
        location_text=_text(row.get("location_text"), None),
        location_lat=_optional_float(row.get("location_lat")),
        location_lng=_optional_float(row.get("location_lng")),
        notes=_text(row.get("notes"), None),
        status=_lower(row.get("status"), "open"),
        created_at=parse_timestamp(row.get("created_at")),
    )


def normalize_order(row: Dict[str, Any]) -> OrderMatch:
    return OrderMatch(
        id=str(row.get("id")),
        listing_id=_text(row.get("listing_id"), None),
        buyer_id=_text(row.get("buyer_id"), None),
        buyer_name=_text(row.get("buyer_name"), ""),
        farmer_name=_text(row.get("farmer_name"), ""),
        crop_name=_text(row.get("crop_name"), ""),
        quantity_kg=safe_number(row.get("quantity_kg"), 0.0),
        agreed_price_per_kg=safe_number(row.get("agreed_price_per_kg"), 0.0),
        distance_km=_optional_float(row.get("distance_km")),
        quality=_text(row.get("quality"), None),
        status=_lower(row.get("status"), "pending"),
        created_at=parse_timestamp(row.get("created_at")),
        total_price=_optional_float(row.get("total_price")),
    )

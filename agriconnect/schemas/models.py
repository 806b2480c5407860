from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


Role = Literal["farmer", "buyer", "guest", "admin", "logistics", "finance"]
Quality = Literal["top", "standard", "fair"]
Unit = Literal["kg", "bag", "bunch", "piece"]
Language = Literal["en", "sw"]
SortKey = Literal["newest", "price_low", "price_high", "distance", "name"]


class BackendRow(BaseModel):
    """Base for rows read from the backend data API."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class Account(BackendRow):
    """Profile row created by the signup trigger (accounts_user)."""

    id: str
    auth_user_id: Optional[str] = None
    email: str = ""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    role: Optional[str] = "guest"
    preferred_language: Optional[str] = "en"
    location: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None


class ProduceListing(BackendRow):
    """A farmer's produce-for-sale record (farm_produce)."""

    id: str
    farmer_id: Optional[str] = None
    farmer_name: str = "Unknown Farmer"
    farmer_location: str = "Uganda"
    farmer_phone: Optional[str] = None
    crop_name: str = "Produce"
    crop_category: str = "other"
    category_id: Optional[int] = None
    variety: Optional[str] = None
    quality: str = "standard"
    quantity: float = 0.0
    unit: str = "kg"
    price_per_unit: float = 0.0
    distance_km: Optional[float] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    google_maps_link: Optional[str] = None
    available_from: Optional[str] = None
    is_available: bool = False
    listed_at: Optional[datetime] = None
    photo: Optional[str] = None
    description: Optional[str] = None


class BuyerDemand(BackendRow):
    """A buyer's standing request for a crop (buyer_demands)."""

    id: str
    buyer_id: Optional[str] = None
    buyer_name: str = "Buyer"
    crop_name: str = ""
    preferred_quality: Optional[str] = None
    quantity: float = 0.0
    unit: str = "kg"
    target_price_per_unit: float = 0.0
    radius_km: Optional[float] = None
    location_text: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    notes: Optional[str] = None
    status: str = "open"
    created_at: Optional[datetime] = None


class OrderMatch(BackendRow):
    """Aggregated order row (market_matches / farmer_orders)."""

    id: str
    listing_id: Optional[str] = None
    buyer_id: Optional[str] = None
    buyer_name: str = ""
    farmer_name: str = ""
    crop_name: str = ""
    quantity_kg: float = 0.0
    agreed_price_per_kg: float = 0.0
    distance_km: Optional[float] = None
    quality: Optional[str] = None
    status: str = "pending"
    created_at: Optional[datetime] = None
    total_price: Optional[float] = None


class ProduceCategory(BackendRow):
    id: int
    name: str
    description: Optional[str] = None
    is_active: Optional[bool] = None


class DemandOffer(BaseModel):
    """Offer linking one of the farmer's listings to a buyer demand."""

    demand_id: str
    listing_id: str
    farmer_id: str
    farmer_name: str
    crop_name: str
    offered_quantity: float
    offered_price_per_unit: float
    status: str = "sent"


class ChangeType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """Row-level change pushed by the backend change feed."""

    type: ChangeType
    table: str
    schema_name: str = "public"
    new: Dict[str, Any] = Field(default_factory=dict)
    old: Dict[str, Any] = Field(default_factory=dict)
    commit_timestamp: Optional[str] = None

    @property
    def row_id(self) -> Optional[str]:
        source = self.old if self.type == ChangeType.DELETE else self.new
        value = source.get("id")
        return None if value is None else str(value)


class AuthUser(BaseModel):
    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)


class AuthSession(BaseModel):
    """Tokens issued by the auth service for one signed-in user."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    user: AuthUser


class SignUpResult(BaseModel):
    user: Optional[AuthUser] = None
    session: Optional[AuthSession] = None


class ListingCriteria(BaseModel):
    """UI-selected search/filter/sort state for listing pages."""

    query: str = ""
    category: str = "all"
    quality: str = "all"
    max_price: Optional[float] = None
    sort: str = "newest"

    @field_validator("category", "quality", mode="before")
    @classmethod
    def normalize_choice(cls, value: Any) -> Any:
        if value is None:
            return "all"
        return str(value).strip().lower() or "all"

    @field_validator("sort", mode="before")
    @classmethod
    def normalize_sort(cls, value: Any) -> Any:
        if value is None:
            return "newest"
        text = str(value).strip().lower().replace("-", "_")
        return text or "newest"


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)


class ResolvedOrigin(BaseModel):
    """Where distances are measured from, and which source supplied it."""

    coordinates: Coordinates
    source: Literal["listing", "profile", "browser"]


class ContactLinks(BaseModel):
    phone: Optional[str] = None
    tel: Optional[str] = None
    whatsapp: Optional[str] = None


class SignUpForm(BaseModel):
    email: str = ""
    password: str = ""
    password2: str = ""
    first_name: str = ""
    last_name: str = ""
    phone_number: str = ""
    location: str = ""
    preferred_language: Language = "en"
    role: Literal["farmer", "buyer", "guest"] = "guest"


class SignInForm(BaseModel):
    email: str = ""
    password: str = ""


class ListingForm(BaseModel):
    """Fields of the farmer's add-produce modal."""

    crop_name: str = ""
    variety: str = ""
    quality: Quality = "standard"
    quantity: str = ""
    unit: Unit = "kg"
    price_per_unit: str = ""
    available_from: Optional[date] = None
    category_id: Optional[int] = None
    description: str = ""
    farmer_location: str = ""
    distance_km: str = ""
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None


class ImageUpload(BaseModel):
    filename: str
    content_type: str = ""
    data: bytes


class FormResult(BaseModel):
    """Outcome of a form submission: banner text, field errors, next route."""

    success: bool
    message: Optional[str] = None
    errors: Dict[str, str] = Field(default_factory=dict)
    redirect: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class ListingsPage(BaseModel):
    success: bool = True
    message: Optional[str] = None
    criteria: ListingCriteria = Field(default_factory=ListingCriteria)
    listings: List[ProduceListing] = Field(default_factory=list)
    count: int = 0
    listed_ago: Dict[str, str] = Field(default_factory=dict)


class ListingDetailPage(BaseModel):
    success: bool = True
    message: Optional[str] = None
    listing: Optional[ProduceListing] = None
    similar: List[ProduceListing] = Field(default_factory=list)
    contact: ContactLinks = Field(default_factory=ContactLinks)
    is_favorite: bool = False
    listed_relative: Optional[str] = None
    price_label: Optional[str] = None
    in_stock: bool = False


class MapPin(BaseModel):
    id: str
    crop_name: str
    crop_category: str
    variety: Optional[str] = None
    quality: str
    quantity: float
    unit: str
    price_per_unit: float
    farmer_name: str
    farmer_location: str
    lat: float
    lng: float
    google_maps_link: str
    color: str
    distance_km: Optional[float] = None


class MapViewport(BaseModel):
    center: Coordinates
    zoom: int


class DiscoverPage(BaseModel):
    success: bool = True
    message: Optional[str] = None
    location_error: Optional[str] = None
    radius_km: float = 20.0
    viewport: MapViewport
    pins: List[MapPin] = Field(default_factory=list)
    count: int = 0


class CountStat(BaseModel):
    key: str
    count: int
    icon: Optional[str] = None


class TrendingSnapshot(BaseModel):
    success: bool = True
    message: Optional[str] = None
    time_range: str = "7d"
    new_arrivals: List[ProduceListing] = Field(default_factory=list)
    premium: List[ProduceListing] = Field(default_factory=list)
    top_categories: List[CountStat] = Field(default_factory=list)
    top_farmers: List[CountStat] = Field(default_factory=list)
    top_crops: List[CountStat] = Field(default_factory=list)
    top_demands: List[CountStat] = Field(default_factory=list)


class DemandMatch(BaseModel):
    demand: BuyerDemand
    distance_km: Optional[float] = None


class MarketplacePage(BaseModel):
    success: bool = True
    message: Optional[str] = None
    signed_in: bool = False
    listings: List[ProduceListing] = Field(default_factory=list)
    selected_listing_id: Optional[str] = None
    origin: Optional[ResolvedOrigin] = None
    location_error: Optional[str] = None
    radius_km: float = 30.0
    demands: List[DemandMatch] = Field(default_factory=list)


class ProfileStats(BaseModel):
    total_value: float = 0.0
    active_listings: int = 0
    average_price: float = 0.0
    buyer_spend: float = 0.0


class ProfilePage(BaseModel):
    success: bool = True
    message: Optional[str] = None
    signed_in: bool = False
    account: Optional[Account] = None
    role: str = "guest"
    display_name: str = "Guest"
    initials: str = "G"
    listings: List[ProduceListing] = Field(default_factory=list)
    buyer_orders: List[OrderMatch] = Field(default_factory=list)
    farmer_orders: List[OrderMatch] = Field(default_factory=list)
    categories: List[ProduceCategory] = Field(default_factory=list)
    stats: ProfileStats = Field(default_factory=ProfileStats)


class ResendRequest(BaseModel):
    email: str = ""


class OfferRequest(BaseModel):
    demand_id: str
    listing_id: Optional[str] = None


class AvailabilityUpdate(BaseModel):
    available: bool


class FavoriteState(BaseModel):
    listing_id: str
    favorite: bool


class SessionState(BaseModel):
    signed_in: bool = False
    user: Optional[AuthUser] = None
    role: str = "guest"
    redirect: Optional[str] = None

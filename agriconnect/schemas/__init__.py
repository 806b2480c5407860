from .models import (
    Account,
    AuthSession,
    AuthUser,
    AvailabilityUpdate,
    BuyerDemand,
    ChangeEvent,
    ChangeType,
    ContactLinks,
    Coordinates,
    CountStat,
    DemandMatch,
    DemandOffer,
    DiscoverPage,
    FavoriteState,
    FormResult,
    ImageUpload,
    ListingCriteria,
    ListingDetailPage,
    ListingForm,
    ListingsPage,
    MapPin,
    MapViewport,
    MarketplacePage,
    OfferRequest,
    OrderMatch,
    ProduceCategory,
    ProduceListing,
    ProfilePage,
    ProfileStats,
    ResendRequest,
    ResolvedOrigin,
    SessionState,
    SignInForm,
    SignUpForm,
    SignUpResult,
    TrendingSnapshot,
    Language,
    Quality,
    Role,
    SortKey,
    Unit,
)

__all__ = [
    "Account",
    "AuthSession",
    "AuthUser",
    "AvailabilityUpdate",
    "BuyerDemand",
    "ChangeEvent",
    "ChangeType",
    "ContactLinks",
    "Coordinates",
    "CountStat",
    "DemandMatch",
    "DemandOffer",
    "DiscoverPage",
    "FavoriteState",
    "FormResult",
    "ImageUpload",
    "ListingCriteria",
    "ListingDetailPage",
    "ListingForm",
    "ListingsPage",
    "MapPin",
    "MapViewport",
    "MarketplacePage",
    "OfferRequest",
    "OrderMatch",
    "ProduceCategory",
    "ProduceListing",
    "ProfilePage",
    "ProfileStats",
    "ResendRequest",
    "ResolvedOrigin",
    "SessionState",
    "SignInForm",
    "SignUpForm",
    "SignUpResult",
    "TrendingSnapshot",
    "Language",
    "Quality",
    "Role",
    "SortKey",
    "Unit",
]

import importlib.util
import json
import sys
import tempfile
import unittest
from datetime import date
from pathlib import Path
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

_MISSING_DEPS = any(
    importlib.util.find_spec(name) is None
    for name in ("httpx", "pydantic", "pydantic_settings")
)

if not _MISSING_DEPS:
    import httpx

    from agriconnect.application.services import listing_service, marketplace_service
    from agriconnect.domain import messages
    from agriconnect.domain.geo import resolve_origin
    from agriconnect.domain.normalizers import normalize_demand, normalize_listing
    from agriconnect.infra.backend_client import BackendClient, BackendSettings
    from agriconnect.infra.favorites_store import MemoryFavoritesStore, SqliteFavoritesStore
    from agriconnect.infra.session_store import MemorySessionStore, SqliteSessionStore
    from agriconnect.schemas import (
        Account,
        AuthSession,
        AuthUser,
        ImageUpload,
        ListingCriteria,
        ListingForm,
    )


def _backend(handler, requests):
    def record(request):
        requests.append(request)
        return handler(request)

    settings = BackendSettings(url="http://backend.test", anon_key="anon")
    return BackendClient(settings, transport=httpx.MockTransport(record))


def _session():
    return AuthSession(
        access_token="farmer-token",
        refresh_token="r",
        user=AuthUser(id="farmer-1", email="amina@example.com"),
    )


def _farmer(**fields):
    base = dict(
        id="1",
        email="amina@example.com",
        first_name="Amina",
        last_name="Nakato",
        phone_number="0712345678",
        role="farmer",
    )
    base.update(fields)
    return Account(**base)


def _form(**fields):
    base = dict(
        crop_name="Beans",
        quantity="12.5",
        price_per_unit="3500",
        available_from=date(2025, 3, 1),
        farmer_location="Mbale",
    )
    base.update(fields)
    return ListingForm(**base)


@unittest.skipUnless(not _MISSING_DEPS, "httpx/pydantic are not installed")
class CreateListingTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.requests = []

    async def test_requires_signed_in_farmer(self) -> None:
        backend = _backend(lambda request: httpx.Response(500), self.requests)
        async with backend:
            anonymous = await listing_service.create_listing(backend, None, None, _form())
            buyer = await listing_service.create_listing(
                backend, _session(), _farmer(role="buyer"), _form()
            )
        self.assertEqual(anonymous.message, "User not authenticated. Please sign in again.")
        self.assertEqual(buyer.message, "Only farmers can add products.")
        self.assertEqual(self.requests, [])

    async def test_gps_fills_missing_location(self) -> None:
        backend = _backend(lambda request: httpx.Response(201, json=[{"id": "9"}]), self.requests)
        async with backend:
            result = await listing_service.create_listing(
                backend,
                _session(),
                _farmer(),
                _form(farmer_location="", location_lat=0.34761, location_lng=32.58249),
            )
        self.assertTrue(result.success)
        record = json.loads(self.requests[0].content)[0]
        self.assertEqual(record["farmer_location"], "0.3476, 32.5825")
        self.assertEqual(record["google_maps_link"], "https://www.google.com/maps?q=0.34761,32.58249")

    async def test_validation_message_blocks_insert(self) -> None:
        backend = _backend(lambda request: httpx.Response(500), self.requests)
        async with backend:
            result = await listing_service.create_listing(
                backend, _session(), _farmer(), _form(price_per_unit="-1")
            )
        self.assertEqual(result.message, "Price per unit must be a valid number greater than 0.")
        self.assertEqual(self.requests, [])

    async def test_bad_distance_stops_before_photo_upload(self) -> None:
        backend = _backend(lambda request: httpx.Response(200, json={}), self.requests)
        image = ImageUpload(filename="beans.png", content_type="image/png", data=b"png")
        async with backend:
            result = await listing_service.create_listing(
                backend, _session(), _farmer(), _form(distance_km="abc"), image
            )
        self.assertFalse(result.success)
        self.assertEqual(
            result.message, "Distance must be a valid number of kilometres (0 or more)."
        )
        self.assertEqual(self.requests, [])

    async def test_bad_image_type(self) -> None:
        backend = _backend(lambda request: httpx.Response(500), self.requests)
        image = ImageUpload(filename="notes.txt", content_type="text/plain", data=b"x")
        async with backend:
            result = await listing_service.create_listing(
                backend, _session(), _farmer(), _form(), image
            )
        self.assertEqual(
            result.message, "Please select a valid image file (JPEG, PNG, WebP, or GIF)."
        )

    async def test_row_level_security_message(self) -> None:
        backend = _backend(
            lambda request: httpx.Response(
                403,
                json={"code": "42501", "message": "new row violates row-level security policy"},
            ),
            self.requests,
        )
        async with backend:
            result = await listing_service.create_listing(backend, _session(), _farmer(), _form())
        self.assertFalse(result.success)
        self.assertEqual(result.message, messages.PERMISSION_DENIED_LISTING)

    async def test_other_database_errors_are_prefixed(self) -> None:
        backend = _backend(
            lambda request: httpx.Response(400, json={"code": "22P02", "message": "bad input"}),
            self.requests,
        )
        async with backend:
            result = await listing_service.create_listing(backend, _session(), _farmer(), _form())
        self.assertEqual(result.message, "Database Error: bad input")

    async def test_success_uploads_photo_then_inserts(self) -> None:
        def handler(request):
            if request.url.path.startswith("/storage/"):
                return httpx.Response(200, json={"Key": "ok"})
            return httpx.Response(201, json=[{"id": "42"}])

        backend = _backend(handler, self.requests)
        image = ImageUpload(filename="beans.PNG", content_type="image/png", data=b"png")
        async with backend:
            result = await listing_service.create_listing(
                backend, _session(), _farmer(), _form(variety="  ", category_id=3), image
            )

        self.assertTrue(result.success)
        self.assertEqual(result.message, "Product added successfully")
        self.assertEqual(result.data["listing"], {"id": "42"})
        upload, insert = self.requests
        self.assertTrue(upload.url.path.startswith("/storage/v1/object/produce-photos/farmer-1/produce_"))
        self.assertTrue(upload.url.path.endswith(".png"))
        self.assertEqual(upload.headers["Authorization"], "Bearer farmer-token")
        record = json.loads(insert.content)[0]
        self.assertEqual(record["farmer_id"], "farmer-1")
        self.assertEqual(record["farmer_name"], "Amina Nakato")
        self.assertEqual(record["farmer_phone"], "0712345678")
        self.assertEqual(record["quantity"], 12.5)
        self.assertEqual(record["price_per_unit"], 3500.0)
        self.assertIsNone(record["variety"])
        self.assertEqual(record["category_id"], 3)
        self.assertTrue(record["is_available"])
        self.assertTrue(record["photo"].startswith("http://backend.test/storage/v1/object/public/produce-photos/"))

    def test_image_path_shape(self) -> None:
        path = listing_service.image_path("u1", "photo.JPEG", now_ms=1700000000000)
        prefix, _, ext = path.rpartition(".")
        self.assertTrue(prefix.startswith("u1/produce_1700000000000_"))
        self.assertEqual(ext, "jpeg")
        self.assertTrue(listing_service.image_path("u1", "blob").endswith(".jpg"))


@unittest.skipUnless(not _MISSING_DEPS, "httpx/pydantic are not installed")
class ListingPageTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.requests = []

    async def test_detail_with_similar_and_favourite(self) -> None:
        main = {
            "id": "1",
            "crop_name": "Beans",
            "crop_category": "legume",
            "farmer_phone": "0712345678",
            "quantity": 5,
            "price_per_unit": 3500,
            "is_available": True,
        }

        def handler(request):
            if request.url.params.get("limit") == "1":
                return httpx.Response(200, json=[main])
            return httpx.Response(200, json=[{"id": "2", "crop_category": "legume"}, main])

        favorites = MemoryFavoritesStore()
        favorites.add("browser-1", "1")
        backend = _backend(handler, self.requests)
        async with backend:
            page = await listing_service.detail(
                backend, "1", favorites=favorites, owner_id="browser-1"
            )
        self.assertTrue(page.success)
        self.assertEqual([row.id for row in page.similar], ["2"])
        self.assertTrue(page.is_favorite)
        self.assertTrue(page.in_stock)
        self.assertEqual(page.price_label, "UGX 3,500/kg")
        self.assertEqual(page.contact.whatsapp, "https://wa.me/256712345678")
        similar_request = self.requests[1]
        self.assertEqual(similar_request.url.params["id"], "neq.1")
        self.assertEqual(similar_request.url.params["limit"], "4")

    async def test_missing_detail(self) -> None:
        backend = _backend(lambda request: httpx.Response(200, json=[]), self.requests)
        async with backend:
            page = await listing_service.detail(backend, "404")
        self.assertFalse(page.success)
        self.assertEqual(page.message, "Product not found or has been removed")

    async def test_browse_failure_keeps_criteria(self) -> None:
        backend = _backend(
            lambda request: httpx.Response(500, json={"message": "db down"}), self.requests
        )
        async with backend:
            page = await listing_service.browse(
                backend, ListingCriteria(query="beans"), limit=10
            )
        self.assertFalse(page.success)
        self.assertEqual(page.message, "db down")
        self.assertEqual(page.criteria.query, "beans")

    async def test_browse_filters_available_newest_first(self) -> None:
        rows = [
            {"id": "1", "crop_name": "Beans", "is_available": True},
            {"id": "2", "crop_name": "Maize", "is_available": True},
        ]
        backend = _backend(lambda request: httpx.Response(200, json=rows), self.requests)
        async with backend:
            page = await listing_service.browse(
                backend, ListingCriteria(query="maize"), limit=10
            )
        self.assertEqual([row.id for row in page.listings], ["2"])
        params = self.requests[0].url.params
        self.assertEqual(params["is_available"], "eq.true")
        self.assertEqual(params["order"], "listed_at.desc")
        self.assertEqual(params["limit"], "10")

    async def test_availability_is_scoped_to_owner(self) -> None:
        backend = _backend(lambda request: httpx.Response(200, json=[]), self.requests)
        async with backend:
            result = await listing_service.set_availability(backend, _session(), "5", False)
        self.assertFalse(result.success)
        params = self.requests[0].url.params
        self.assertEqual(params["id"], "eq.5")
        self.assertEqual(params["farmer_id"], "eq.farmer-1")
        self.assertEqual(json.loads(self.requests[0].content), {"is_available": False})


@unittest.skipUnless(not _MISSING_DEPS, "httpx/pydantic are not installed")
class MarketplaceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.requests = []
        self.listing = normalize_listing(
            {
                "id": "L1",
                "crop_name": "Beans",
                "quantity": 100,
                "price_per_unit": 3200,
                "location_lat": 0.3476,
                "location_lng": 32.5825,
                "is_available": True,
            }
        )

    def test_match_demands_filters_and_sorts(self) -> None:
        demands = [
            normalize_demand({"id": "far", "crop_name": "Beans", "location_lat": 2.77, "location_lng": 32.3}),
            normalize_demand({"id": "unknown", "crop_name": "beans"}),
            normalize_demand({"id": "near", "crop_name": "Beans", "location_lat": 0.35, "location_lng": 32.59}),
            normalize_demand({"id": "maize", "crop_name": "Maize", "location_lat": 0.35, "location_lng": 32.59}),
        ]
        origin, _ = resolve_origin(listing=(0.3476, 32.5825))
        matches = marketplace_service.match_demands(demands, [self.listing], origin, radius_km=30)
        self.assertEqual([m.demand.id for m in matches], ["near", "unknown"])
        self.assertIsNone(matches[1].distance_km)

    def test_farmer_without_listings_sees_every_crop(self) -> None:
        demands = [normalize_demand({"id": "maize", "crop_name": "Maize"})]
        self.assertEqual(len(marketplace_service.match_demands(demands, [], None)), 1)

    def test_offer_shape(self) -> None:
        offer = marketplace_service.build_offer("d1", self.listing, "farmer-1")
        self.assertEqual(
            offer.model_dump(),
            {
                "demand_id": "d1",
                "listing_id": "L1",
                "farmer_id": "farmer-1",
                "farmer_name": "Farmer",
                "crop_name": "Beans",
                "offered_quantity": 100.0,
                "offered_price_per_unit": 3200.0,
                "status": "sent",
            },
        )

    async def test_send_offer_requires_login(self) -> None:
        backend = _backend(lambda request: httpx.Response(500), self.requests)
        async with backend:
            result = await marketplace_service.send_offer(backend, None, None, "d1", "L1")
        self.assertEqual(result.message, "Please login to send offers")
        self.assertEqual(result.redirect, "/login")

    async def test_send_offer_with_unknown_listing(self) -> None:
        backend = _backend(
            lambda request: httpx.Response(200, json=[{"id": "L1", "is_available": True}]),
            self.requests,
        )
        async with backend:
            result = await marketplace_service.send_offer(
                backend, _session(), _farmer(), "d1", "other"
            )
        self.assertEqual(result.message, "Please select a listing first")
        self.assertEqual(len(self.requests), 1)

    async def test_send_offer_inserts_row(self) -> None:
        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, json=[{"id": "L1", "crop_name": "Beans", "quantity": 100, "price_per_unit": 3200, "is_available": True}])
            return httpx.Response(201, json=[{"id": "o1"}])

        backend = _backend(handler, self.requests)
        async with backend:
            result = await marketplace_service.send_offer(
                backend, _session(), _farmer(), "d1", None
            )
        self.assertTrue(result.success)
        self.assertEqual(result.message, "Offer sent successfully!")
        insert = self.requests[-1]
        self.assertEqual(insert.url.path, "/rest/v1/demand_offers")
        row = json.loads(insert.content)[0]
        self.assertEqual(row["farmer_name"], "Amina Nakato")
        self.assertEqual(row["listing_id"], "L1")


@unittest.skipUnless(not _MISSING_DEPS, "httpx/pydantic are not installed")
class StoreTests(unittest.TestCase):
    def test_memory_favourites_toggle(self) -> None:
        store = MemoryFavoritesStore()
        self.assertTrue(store.toggle("b1", "5"))
        self.assertTrue(store.toggle("b1", "6"))
        self.assertFalse(store.toggle("b1", "5"))
        self.assertEqual(store.list("b1"), ["6"])
        self.assertEqual(store.list("b2"), [])

    def test_sqlite_favourites_persist(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "favorites.sqlite3"
            store = SqliteFavoritesStore(path)
            store.add("b1", "5")
            store.add("b1", "5")
            store.add("b1", "7")
            reopened = SqliteFavoritesStore(path)
            self.assertEqual(reopened.list("b1"), ["5", "7"])
            self.assertFalse(reopened.toggle("b1", "5"))
            self.assertEqual(reopened.list("b1"), ["7"])

    def test_sqlite_sessions_round_trip_and_delete(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = SqliteSessionStore(Path(tmp) / "sessions.sqlite3", ttl_seconds=60)
            store.set("sid", _session())
            self.assertEqual(store.get("sid").user.id, "farmer-1")
            store.delete("sid")
            self.assertIsNone(store.get("sid"))
            self.assertIsNone(store.get("never"))

    def test_sessions_expire_after_ttl(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            stores = [
                MemorySessionStore(ttl_seconds=60),
                SqliteSessionStore(Path(tmp) / "sessions.sqlite3", ttl_seconds=60),
            ]
            for store in stores:
                with patch("agriconnect.infra.session_store.time.time", return_value=1000.0):
                    store.set("sid", _session())
                with patch("agriconnect.infra.session_store.time.time", return_value=1059.0):
                    self.assertEqual(store.get("sid").access_token, "farmer-token")
                with patch("agriconnect.infra.session_store.time.time", return_value=1060.0):
                    self.assertIsNone(store.get("sid"))


if __name__ == "__main__":
    unittest.main()
